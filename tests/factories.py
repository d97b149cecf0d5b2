"""Builders for declared task sets used across tests."""

from __future__ import annotations

from dataclasses import dataclass

from converge.awstasks import LoadBalancer, LoadBalancerListener, TargetGroup
from converge.task import Lifecycle

LB_NAME = "api.k8s.example.com"
TG_NAME = "tcp-443.k8s.example.com"
LISTENER_NAME = "api.k8s.example.com-443"


@dataclass
class Stack:
    load_balancer: LoadBalancer
    target_group: TargetGroup
    listener: LoadBalancerListener

    @property
    def tasks(self) -> list:
        return [self.load_balancer, self.target_group, self.listener]


def make_stack(
    *,
    scheme: str = "internet-facing",
    subnets: tuple[str, ...] = ("subnet-b", "subnet-a"),
    certificate: str = "",
    lb_lifecycle: Lifecycle = Lifecycle.CREATE_OR_UPDATE,
) -> Stack:
    """An API load balancer forwarding port 443 to one target group."""
    lb = LoadBalancer(
        name=LB_NAME,
        lifecycle=lb_lifecycle,
        load_balancer_name="api-k8s",
        scheme=scheme,
        subnets=list(subnets),
    )
    tg = TargetGroup(
        name=TG_NAME,
        target_group_name="tcp-443",
        vpc_id="vpc-1",
        port=443,
    )
    listener = LoadBalancerListener(
        name=LISTENER_NAME,
        load_balancer=lb,
        port=443,
        target_group=tg,
        ssl_certificate_id=certificate,
    )
    return Stack(lb, tg, listener)
