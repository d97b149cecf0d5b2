"""Network load balancer listener task.

A listener has no tags of its own: it is scoped to its load balancer and
identified by port.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, cast

from botocore.exceptions import BotoCoreError, ClientError

from ..cloud import backend_mutation
from ..errors import AmbiguousMatchError, BackendQueryError, MissingDependency
from ..task import ConvergeContext, Delta, DeltaKind, ObservedRef, Task
from .load_balancer import LoadBalancer
from .target_group import TargetGroup

if TYPE_CHECKING:
    from ..targets.live import LiveTarget
    from ..targets.terraform import TerraformTarget

logger = logging.getLogger(__name__)

# Policy ELBv2 applies to a TLS listener created without one
DEFAULT_SSL_POLICY = "ELBSecurityPolicy-2016-08"

# Listeners per load balancer are few; one page normally covers them all
LISTENER_PAGE_SIZE = 20


@dataclass(kw_only=True, eq=False)
class LoadBalancerListener(Task):
    kind = "listener"
    terraform_type = "aws_lb_listener"
    compared_fields = ("port", "target_group", "ssl_certificate_id", "ssl_policy")
    immutable_fields = frozenset({"port", "ssl_certificate_id"})
    required_fields = ("target_group",)

    load_balancer: LoadBalancer | None = None
    port: int = 0
    target_group: TargetGroup | ObservedRef | None = None
    ssl_certificate_id: str = ""
    ssl_policy: str = ""

    def dependencies(self) -> list[Task]:
        return [t for t in (self.load_balancer, self.target_group) if isinstance(t, Task)]

    @property
    def protocol(self) -> str:
        return "TLS" if self.ssl_certificate_id else "TCP"

    def find(self, context: ConvergeContext) -> LoadBalancerListener | None:
        cloud = context.require_cloud()
        lb_arn = self.require_dependency(self.load_balancer, "load_balancer")

        matches: list[dict[str, Any]] = []
        try:
            for page in cloud.listeners.list_pages(LISTENER_PAGE_SIZE, LoadBalancerArn=lb_arn):
                matches.extend(item for item in page if int(item.get("Port", 0)) == self.port)
        except (ClientError, BotoCoreError) as e:
            raise BackendQueryError(f"listing listeners of {lb_arn!r}: {e}") from e

        if not matches:
            return None
        if len(matches) > 1:
            raise AmbiguousMatchError(
                f"found {len(matches)} listeners on port {self.port} of {lb_arn!r}"
            )

        listener = matches[0]
        arn = cloud.listeners.identifier(listener)

        target_group: ObservedRef | None = None
        for action in listener.get("DefaultActions", []):
            if action.get("TargetGroupArn"):
                target_group = ObservedRef(action["TargetGroupArn"])
                break

        certificates = listener.get("Certificates") or [{}]
        actual = dataclasses.replace(
            self,
            port=int(listener.get("Port", 0)),
            target_group=target_group,
            ssl_certificate_id=certificates[0].get("CertificateArn", ""),
            ssl_policy=listener.get("SslPolicy", ""),
            arn=arn,
        )
        self.ref.set(arn)

        logger.debug("Found listener", extra={"task": self.name, "arn": arn, "port": self.port})
        return actual

    def normalize(self, state: Task) -> LoadBalancerListener:
        if not isinstance(state, LoadBalancerListener):
            raise TypeError(f"expected LoadBalancerListener, got {type(state).__name__}")
        if state.ssl_certificate_id:
            ssl_policy = state.ssl_policy or DEFAULT_SSL_POLICY
        else:
            ssl_policy = ""
        return dataclasses.replace(state, ssl_policy=ssl_policy)

    def _forward_actions(self) -> list[dict[str, str]]:
        target_group = self.target_group if isinstance(self.target_group, Task) else None
        return [
            {
                "Type": "forward",
                "TargetGroupArn": self.dependency_id(target_group, "target_group"),
            }
        ]

    def render_live(self, target: LiveTarget, actual: Task | None, delta: Delta) -> None:
        api = target.cloud.listeners

        if delta.kind is DeltaKind.RECREATE and actual is not None:
            logger.warning(
                "Deleting listener for required changes",
                extra={"task": self.name, "arn": actual.arn, "fields": delta.fields},
            )
            with backend_mutation(f"deleting listener {actual.arn!r}"):
                api.delete(actual.arn)
            self.ref.clear()
            actual = None

        if actual is None:
            request: dict[str, Any] = {
                "LoadBalancerArn": self.dependency_id(self.load_balancer, "load_balancer"),
                "Port": self.port,
                "Protocol": self.protocol,
                "DefaultActions": self._forward_actions(),
            }
            if self.ssl_certificate_id:
                request["Certificates"] = [{"CertificateArn": self.ssl_certificate_id}]
                request["SslPolicy"] = self.ssl_policy

            logger.info(
                "Creating listener",
                extra={"task": self.name, "port": self.port, "protocol": self.protocol},
            )
            with backend_mutation(f"creating listener {self.name!r}"):
                created = api.create(request)
            self.ref.set(api.identifier(created))
            return

        request = {}
        if "ssl_policy" in delta.changes:
            request["SslPolicy"] = self.ssl_policy
        if "target_group" in delta.changes:
            request["DefaultActions"] = self._forward_actions()

        logger.info(
            "Updating listener",
            extra={"task": self.name, "arn": actual.arn, "fields": delta.fields},
        )
        with backend_mutation(f"updating listener {actual.arn!r}"):
            api.update(actual.arn, request)

    def terraform_name(self) -> str:
        if self.load_balancer is None:
            raise MissingDependency(f"listener {self.name!r}: field 'load_balancer' is required")
        return f"{self.load_balancer.terraform_name()}-{self.port}"

    def render_terraform(self, target: TerraformTarget, delta: Delta) -> None:
        tf_name = self.terraform_name()
        load_balancer = cast(LoadBalancer, self.load_balancer)
        if not isinstance(self.target_group, TargetGroup):
            raise MissingDependency(f"listener {self.name!r}: field 'target_group' is required")

        fields: dict[str, Any] = {
            "load_balancer_arn": load_balancer.terraform_link(target),
            "port": self.port,
            "protocol": self.protocol,
            "default_action": [
                {"type": "forward", "target_group_arn": self.target_group.terraform_link(target)}
            ],
        }
        if self.ssl_certificate_id:
            fields["certificate_arn"] = self.ssl_certificate_id
            fields["ssl_policy"] = self.ssl_policy

        target.render_resource(self.terraform_type, tf_name, fields)
