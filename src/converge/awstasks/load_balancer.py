"""Network load balancer task."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..cloud import backend_mutation
from ..enumerator import list_resources
from ..errors import AmbiguousMatchError
from ..tags import dict_to_tags
from ..task import ConvergeContext, Delta, DeltaKind, Task

if TYPE_CHECKING:
    from ..targets.live import LiveTarget
    from ..targets.terraform import TerraformTarget

logger = logging.getLogger(__name__)

DEFAULT_SCHEME = "internet-facing"


@dataclass(kw_only=True, eq=False)
class LoadBalancer(Task):
    """A network load balancer.

    The existing load balancer is found by its Name tag, because tag values
    are (more or less) unrestricted while LoadBalancerName is limited to 32
    characters.
    """

    kind = "load-balancer"
    terraform_type = "aws_lb"
    compared_fields = ("load_balancer_name", "scheme", "subnets", "tags")
    immutable_fields = frozenset({"load_balancer_name", "scheme"})
    required_fields = ("load_balancer_name", "subnets")

    load_balancer_name: str = ""
    scheme: str = ""
    subnets: list[str] = field(default_factory=list)
    tags: dict[str, str] = field(default_factory=dict)

    dns_name: str = field(default="", repr=False)

    def find(self, context: ConvergeContext) -> LoadBalancer | None:
        cloud = context.require_cloud()

        matches = [
            info
            for info in list_resources(
                cloud.load_balancers, cloud.tags(), batch_limit=context.tag_batch_limit
            )
            if info.name_tag() == self.name
        ]
        if not matches:
            return None
        if len(matches) > 1:
            raise AmbiguousMatchError(
                f"found {len(matches)} load balancers tagged Name={self.name!r}: "
                f"{sorted(m.arn for m in matches)}"
            )

        info = matches[0]
        lb = info.obj
        live_tags = info.tag_dict()

        actual = dataclasses.replace(
            self,
            load_balancer_name=lb.get("LoadBalancerName", ""),
            scheme=lb.get("Scheme", ""),
            subnets=[az["SubnetId"] for az in lb.get("AvailabilityZones", []) if "SubnetId" in az],
            # Only tags we declare are managed; others on the object are left alone
            tags={k: live_tags[k] for k in self.tags if k in live_tags},
            arn=info.arn,
            dns_name=lb.get("DNSName", ""),
        )
        self.ref.set(info.arn)

        logger.debug("Found load balancer", extra={"task": self.name, "arn": info.arn})
        return actual

    def normalize(self, state: Task) -> LoadBalancer:
        if not isinstance(state, LoadBalancer):
            raise TypeError(f"expected LoadBalancer, got {type(state).__name__}")
        return dataclasses.replace(
            state,
            scheme=state.scheme or DEFAULT_SCHEME,
            subnets=sorted(state.subnets),
        )

    def render_live(self, target: LiveTarget, actual: Task | None, delta: Delta) -> None:
        api = target.cloud.load_balancers

        if delta.kind is DeltaKind.RECREATE and actual is not None:
            logger.warning(
                "Deleting load balancer for required changes",
                extra={"task": self.name, "arn": actual.arn, "fields": delta.fields},
            )
            with backend_mutation(f"deleting load balancer {actual.arn!r}"):
                api.delete(actual.arn)
            self.ref.clear()
            actual = None

        if actual is None:
            request = {
                "Name": self.load_balancer_name,
                "Subnets": list(self.subnets),
                "Scheme": self.scheme,
                "Type": "network",
                "Tags": dict_to_tags(target.resource_tags(self.name, self.tags)),
            }
            logger.info("Creating load balancer", extra={"task": self.name})
            with backend_mutation(f"creating load balancer {self.name!r}"):
                created = api.create(request)
            self.ref.set(api.identifier(created))
            return

        request: dict[str, object] = {}
        if "subnets" in delta.changes:
            request["Subnets"] = list(self.subnets)
        if "tags" in delta.changes:
            request["Tags"] = dict_to_tags(self.tags)

        logger.info(
            "Updating load balancer",
            extra={"task": self.name, "arn": actual.arn, "fields": delta.fields},
        )
        with backend_mutation(f"updating load balancer {actual.arn!r}"):
            api.update(actual.arn, request)

    def render_terraform(self, target: TerraformTarget, delta: Delta) -> None:
        target.render_resource(
            self.terraform_type,
            self.terraform_name(),
            {
                "name": self.load_balancer_name,
                "internal": self.scheme == "internal",
                "load_balancer_type": "network",
                "subnets": list(self.subnets),
                "tags": target.resource_tags(self.name, self.tags),
            },
        )
