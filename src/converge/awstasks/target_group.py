"""Target group task."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..cloud import backend_mutation
from ..enumerator import list_resources
from ..errors import AmbiguousMatchError
from ..tags import dict_to_tags
from ..task import ConvergeContext, Delta, DeltaKind, Task

if TYPE_CHECKING:
    from ..targets.live import LiveTarget
    from ..targets.terraform import TerraformTarget

logger = logging.getLogger(__name__)

# Health check defaults ELBv2 applies to TCP target groups of an NLB
DEFAULT_HEALTH_CHECK_INTERVAL = 30
DEFAULT_HEALTHY_THRESHOLD = 5
DEFAULT_UNHEALTHY_THRESHOLD = 2

# Field name -> ModifyTargetGroup parameter
_HEALTH_CHECK_PARAMETERS = {
    "health_check_interval": "HealthCheckIntervalSeconds",
    "healthy_threshold": "HealthyThresholdCount",
    "unhealthy_threshold": "UnhealthyThresholdCount",
}


@dataclass(kw_only=True, eq=False)
class TargetGroup(Task):
    kind = "target-group"
    terraform_type = "aws_lb_target_group"
    compared_fields = (
        "target_group_name",
        "vpc_id",
        "port",
        "protocol",
        "health_check_interval",
        "healthy_threshold",
        "unhealthy_threshold",
        "tags",
    )
    immutable_fields = frozenset({"target_group_name", "vpc_id", "port", "protocol"})
    required_fields = ("target_group_name", "vpc_id", "port")

    target_group_name: str = ""
    vpc_id: str = ""
    port: int = 0
    protocol: str = "TCP"
    health_check_interval: int | None = None
    healthy_threshold: int | None = None
    unhealthy_threshold: int | None = None
    tags: dict[str, str] = field(default_factory=dict)

    def find(self, context: ConvergeContext) -> TargetGroup | None:
        cloud = context.require_cloud()

        matches = [
            info
            for info in list_resources(
                cloud.target_groups, cloud.tags(), batch_limit=context.tag_batch_limit
            )
            if info.name_tag() == self.name
        ]
        if not matches:
            return None
        if len(matches) > 1:
            raise AmbiguousMatchError(
                f"found {len(matches)} target groups tagged Name={self.name!r}: "
                f"{sorted(m.arn for m in matches)}"
            )

        info = matches[0]
        tg = info.obj
        live_tags = info.tag_dict()

        actual = dataclasses.replace(
            self,
            target_group_name=tg.get("TargetGroupName", ""),
            vpc_id=tg.get("VpcId", ""),
            port=int(tg.get("Port", 0)),
            protocol=tg.get("Protocol", ""),
            health_check_interval=tg.get("HealthCheckIntervalSeconds"),
            healthy_threshold=tg.get("HealthyThresholdCount"),
            unhealthy_threshold=tg.get("UnhealthyThresholdCount"),
            tags={k: live_tags[k] for k in self.tags if k in live_tags},
            arn=info.arn,
        )
        self.ref.set(info.arn)

        logger.debug("Found target group", extra={"task": self.name, "arn": info.arn})
        return actual

    def normalize(self, state: Task) -> TargetGroup:
        if not isinstance(state, TargetGroup):
            raise TypeError(f"expected TargetGroup, got {type(state).__name__}")
        return dataclasses.replace(
            state,
            protocol=state.protocol.upper(),
            health_check_interval=state.health_check_interval or DEFAULT_HEALTH_CHECK_INTERVAL,
            healthy_threshold=state.healthy_threshold or DEFAULT_HEALTHY_THRESHOLD,
            unhealthy_threshold=state.unhealthy_threshold or DEFAULT_UNHEALTHY_THRESHOLD,
        )

    def render_live(self, target: LiveTarget, actual: Task | None, delta: Delta) -> None:
        api = target.cloud.target_groups

        if delta.kind is DeltaKind.RECREATE and actual is not None:
            logger.warning(
                "Deleting target group for required changes",
                extra={"task": self.name, "arn": actual.arn, "fields": delta.fields},
            )
            with backend_mutation(f"deleting target group {actual.arn!r}"):
                api.delete(actual.arn)
            self.ref.clear()
            actual = None

        if actual is None:
            request: dict[str, Any] = {
                "Name": self.target_group_name,
                "Protocol": self.protocol,
                "Port": self.port,
                "VpcId": self.vpc_id,
                "TargetType": "instance",
                "HealthCheckProtocol": "TCP",
                "Tags": dict_to_tags(target.resource_tags(self.name, self.tags)),
            }
            for name, parameter in _HEALTH_CHECK_PARAMETERS.items():
                request[parameter] = getattr(self, name)

            logger.info("Creating target group", extra={"task": self.name, "port": self.port})
            with backend_mutation(f"creating target group {self.name!r}"):
                created = api.create(request)
            self.ref.set(api.identifier(created))
            return

        request = {
            parameter: delta.changes[name]
            for name, parameter in _HEALTH_CHECK_PARAMETERS.items()
            if name in delta.changes
        }
        if "tags" in delta.changes:
            request["Tags"] = dict_to_tags(self.tags)

        logger.info(
            "Updating target group",
            extra={"task": self.name, "arn": actual.arn, "fields": delta.fields},
        )
        with backend_mutation(f"updating target group {actual.arn!r}"):
            api.update(actual.arn, request)

    def render_terraform(self, target: TerraformTarget, delta: Delta) -> None:
        target.render_resource(
            self.terraform_type,
            self.terraform_name(),
            {
                "name": self.target_group_name,
                "port": self.port,
                "protocol": self.protocol,
                "vpc_id": self.vpc_id,
                "health_check": {
                    "protocol": "TCP",
                    "interval": self.health_check_interval,
                    "healthy_threshold": self.healthy_threshold,
                    "unhealthy_threshold": self.unhealthy_threshold,
                },
                "tags": target.resource_tags(self.name, self.tags),
            },
        )
