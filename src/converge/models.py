"""Pydantic models for the declarations file.

These models provide:
1. Type-safe YAML parsing
2. Validation at the boundary (fail fast, fail loudly)
3. The declared values the task graph is built from
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator

from .task import Lifecycle

# ELBv2 limits the LoadBalancerName and TargetGroupName to 32 characters
MAX_ELBV2_NAME_LENGTH = 32

Port = Annotated[int, Field(ge=1, le=65535)]
Threshold = Annotated[int, Field(ge=2, le=10)]


class BaseDeclaration(BaseModel):
    """Fields common to every declared resource."""

    model_config = {"extra": "ignore"}

    # Logical name, also written as the Name tag
    name: Annotated[str, Field(min_length=1, max_length=255)]
    lifecycle: Lifecycle = Lifecycle.CREATE_OR_UPDATE


class LoadBalancerSpec(BaseDeclaration):
    """Network load balancer declaration."""

    load_balancer_name: Annotated[
        str, Field(min_length=1, max_length=MAX_ELBV2_NAME_LENGTH, alias="loadBalancerName")
    ]
    scheme: Literal["internet-facing", "internal"] = "internet-facing"
    subnets: list[str] = Field(default_factory=list)
    tags: dict[str, str] = Field(default_factory=dict)


class HealthCheckSpec(BaseModel):
    model_config = {"extra": "ignore"}

    interval_seconds: Annotated[int, Field(ge=10, le=300)] | None = Field(
        None, alias="intervalSeconds"
    )
    healthy_threshold: Threshold | None = Field(None, alias="healthyThreshold")
    unhealthy_threshold: Threshold | None = Field(None, alias="unhealthyThreshold")


class TargetGroupSpec(BaseDeclaration):
    """Target group declaration."""

    target_group_name: Annotated[
        str, Field(min_length=1, max_length=MAX_ELBV2_NAME_LENGTH, alias="targetGroupName")
    ]
    vpc_id: str = Field("", alias="vpcId")
    port: Port
    protocol: str = "TCP"
    health_check: HealthCheckSpec = Field(default_factory=HealthCheckSpec, alias="healthCheck")
    tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("protocol")
    @classmethod
    def validate_protocol(cls, v: str) -> str:
        valid_protocols = {"TCP", "TLS", "UDP", "TCP_UDP"}
        if v.upper() not in valid_protocols:
            raise ValueError(f"protocol must be one of {sorted(valid_protocols)}")
        return v.upper()


class ListenerSpec(BaseDeclaration):
    """Listener declaration. References are by logical name."""

    load_balancer: Annotated[str, Field(min_length=1, alias="loadBalancer")]
    port: Port
    target_group: Annotated[str, Field(min_length=1, alias="targetGroup")]
    ssl_certificate_id: str = Field("", alias="sslCertificateId")
    ssl_policy: str = Field("", alias="sslPolicy")

    @field_validator("ssl_policy")
    @classmethod
    def validate_ssl_policy(cls, v: str) -> str:
        if v and not v.startswith("ELBSecurityPolicy"):
            raise ValueError("sslPolicy must name an ELBSecurityPolicy")
        return v


class DeclarationsSpec(BaseModel):
    """All resources declared for one cluster."""

    model_config = {"extra": "ignore"}

    load_balancers: list[LoadBalancerSpec] = Field(default_factory=list, alias="loadBalancers")
    target_groups: list[TargetGroupSpec] = Field(default_factory=list, alias="targetGroups")
    listeners: list[ListenerSpec] = Field(default_factory=list)
