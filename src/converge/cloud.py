"""Narrow capability interface over the cloud backend, with boto3 adapters.

Task logic never touches vendor SDK types directly. Each resource kind is
reached through a ResourceLister (read-only: list pages, describe tags) or
a ResourceAPI (adds create, update, delete). Request and response payloads
are plain dicts in the ELBv2 wire shape, so an in-memory fake can stand in
for the real backend in tests.

The engine itself never retries: botocore exceptions propagate to the
enumerator or to the task render, where they are wrapped into engine errors.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import BackendMutationError

logger = logging.getLogger(__name__)


@contextmanager
def backend_mutation(action: str) -> Iterator[None]:
    """Wrap SDK failures of a mutating call into BackendMutationError."""
    try:
        yield
    except (ClientError, BotoCoreError) as e:
        raise BackendMutationError(f"{action}: {e}") from e


class ResourceLister(ABC):
    """Read-only access to one kind of cloud resource."""

    kind: str = ""

    @abstractmethod
    def list_pages(self, page_size: int, **scope: Any) -> Iterator[list[dict[str, Any]]]:
        """Yield pages of raw objects until the listing is exhausted."""

    @abstractmethod
    def describe_tags(self, resource_ids: list[str]) -> list[dict[str, Any]]:
        """Return ``[{"ResourceArn": .., "Tags": [..]}]`` for the given ids."""

    @abstractmethod
    def identifier(self, obj: dict[str, Any]) -> str:
        """Return the opaque backend identifier of a raw object."""


class ResourceAPI(ResourceLister):
    """Full lifecycle access to one kind of cloud resource."""

    @abstractmethod
    def create(self, request: dict[str, Any]) -> dict[str, Any]:
        """Create an object and return its raw description."""

    @abstractmethod
    def update(self, resource_id: str, request: dict[str, Any]) -> None:
        """Apply the (already minimal) change set to an existing object."""

    @abstractmethod
    def delete(self, resource_id: str) -> None:
        """Delete an object by identifier."""


# =============================================================================
# ELBv2
# =============================================================================


class _Elbv2API(ResourceAPI):
    """Shared ELBv2 plumbing: paginators and DescribeTags."""

    list_operation = ""
    list_key = ""
    id_key = ""

    def __init__(self, client: Any) -> None:
        self._client = client

    def list_pages(self, page_size: int, **scope: Any) -> Iterator[list[dict[str, Any]]]:
        paginator = self._client.get_paginator(self.list_operation)
        for page in paginator.paginate(PaginationConfig={"PageSize": page_size}, **scope):
            yield page.get(self.list_key, [])

    def describe_tags(self, resource_ids: list[str]) -> list[dict[str, Any]]:
        response = self._client.describe_tags(ResourceArns=resource_ids)
        return response.get("TagDescriptions", [])

    def identifier(self, obj: dict[str, Any]) -> str:
        return obj.get(self.id_key, "")


class Elbv2LoadBalancers(_Elbv2API):
    kind = "load-balancer"
    list_operation = "describe_load_balancers"
    list_key = "LoadBalancers"
    id_key = "LoadBalancerArn"

    def create(self, request: dict[str, Any]) -> dict[str, Any]:
        response = self._client.create_load_balancer(**request)
        return response["LoadBalancers"][0]

    def update(self, resource_id: str, request: dict[str, Any]) -> None:
        if "Subnets" in request:
            self._client.set_subnets(LoadBalancerArn=resource_id, Subnets=request["Subnets"])
        if "Tags" in request:
            self._client.add_tags(ResourceArns=[resource_id], Tags=request["Tags"])

    def delete(self, resource_id: str) -> None:
        self._client.delete_load_balancer(LoadBalancerArn=resource_id)


class Elbv2TargetGroups(_Elbv2API):
    kind = "target-group"
    list_operation = "describe_target_groups"
    list_key = "TargetGroups"
    id_key = "TargetGroupArn"

    def create(self, request: dict[str, Any]) -> dict[str, Any]:
        response = self._client.create_target_group(**request)
        return response["TargetGroups"][0]

    def update(self, resource_id: str, request: dict[str, Any]) -> None:
        tags = request.get("Tags")
        modify = {k: v for k, v in request.items() if k != "Tags"}
        if modify:
            self._client.modify_target_group(TargetGroupArn=resource_id, **modify)
        if tags:
            self._client.add_tags(ResourceArns=[resource_id], Tags=tags)

    def delete(self, resource_id: str) -> None:
        self._client.delete_target_group(TargetGroupArn=resource_id)


class Elbv2Listeners(_Elbv2API):
    """Listeners are always listed within one load balancer.

    Scope: ``LoadBalancerArn=...``.
    """

    kind = "listener"
    list_operation = "describe_listeners"
    list_key = "Listeners"
    id_key = "ListenerArn"

    def create(self, request: dict[str, Any]) -> dict[str, Any]:
        response = self._client.create_listener(**request)
        return response["Listeners"][0]

    def update(self, resource_id: str, request: dict[str, Any]) -> None:
        self._client.modify_listener(ListenerArn=resource_id, **request)

    def delete(self, resource_id: str) -> None:
        self._client.delete_listener(ListenerArn=resource_id)


# =============================================================================
# EC2 (read-only, used by the status store)
# =============================================================================


class Ec2Volumes(ResourceLister):
    """EBS volumes, scoped with EC2 ``Filters``."""

    kind = "volume"

    def __init__(self, client: Any) -> None:
        self._client = client

    def list_pages(self, page_size: int, **scope: Any) -> Iterator[list[dict[str, Any]]]:
        # DescribeVolumes rejects page sizes below 5
        paginator = self._client.get_paginator("describe_volumes")
        config = {"PageSize": max(page_size, 5)}
        for page in paginator.paginate(PaginationConfig=config, **scope):
            yield page.get("Volumes", [])

    def describe_tags(self, resource_ids: list[str]) -> list[dict[str, Any]]:
        by_id: dict[str, list[dict[str, str]]] = {rid: [] for rid in resource_ids}
        paginator = self._client.get_paginator("describe_tags")
        filters = [{"Name": "resource-id", "Values": resource_ids}]
        for page in paginator.paginate(Filters=filters):
            for tag in page.get("Tags", []):
                by_id.setdefault(tag["ResourceId"], []).append(
                    {"Key": tag["Key"], "Value": tag.get("Value", "")}
                )
        return [{"ResourceArn": rid, "Tags": tags} for rid, tags in by_id.items()]

    def identifier(self, obj: dict[str, Any]) -> str:
        return obj.get("VolumeId", "")


class AWSCloud:
    """Entry point to every capability the engine needs for one cluster.

    Credentials come from boto3's default chain; loading them is not the
    engine's concern.
    """

    def __init__(
        self,
        region: str,
        ownership_tags: dict[str, str],
        *,
        load_balancers: ResourceAPI,
        target_groups: ResourceAPI,
        listeners: ResourceAPI,
        volumes: ResourceLister | None = None,
    ) -> None:
        self.region = region
        self._tags = dict(ownership_tags)
        self.load_balancers = load_balancers
        self.target_groups = target_groups
        self.listeners = listeners
        self.volumes = volumes

    def tags(self) -> dict[str, str]:
        """Ownership tags identifying the resources this cluster manages."""
        return dict(self._tags)

    @classmethod
    def from_session(
        cls,
        region: str,
        ownership_tags: dict[str, str],
        session: boto3.Session | None = None,
    ) -> AWSCloud:
        """Build boto3-backed capabilities for a region."""
        session = session or boto3.Session(region_name=region)
        elbv2 = session.client("elbv2", region_name=region)
        ec2 = session.client("ec2", region_name=region)

        logger.info("Created AWS clients", extra={"region": region})

        return cls(
            region,
            ownership_tags,
            load_balancers=Elbv2LoadBalancers(elbv2),
            target_groups=Elbv2TargetGroups(elbv2),
            listeners=Elbv2Listeners(elbv2),
            volumes=Ec2Volumes(ec2),
        )
