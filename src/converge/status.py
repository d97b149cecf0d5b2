"""Cluster status discovered by inspecting cloud objects.

The status store is read-only and independent of the convergence pass. It
answers two questions: which volumes back each etcd member, and where the
API server can be reached.

Etcd member volumes carry a tag ``k8s.io/etcd/<etcd-cluster>`` whose value
is ``<member>/<comma separated members>``, e.g. ``a/a,b,c``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from .cloud import AWSCloud
from .config import DEFAULT_TAG_BATCH_LIMIT
from .enumerator import list_resources
from .errors import ConvergeError
from .tags import ownership_tags

logger = logging.getLogger(__name__)

ETCD_TAG_PREFIX = "k8s.io/etcd/"

# Name tag prefix of the load balancer fronting the API server
API_LOAD_BALANCER_PREFIX = "api."


class EtcdMemberStatus(BaseModel):
    model_config = {"populate_by_name": True}

    # Name of the member within the etcd cluster
    name: str = ""
    # Cloud volume id holding the member's data
    volume_id: str = Field("", alias="volumeId")


class EtcdClusterStatus(BaseModel):
    """Status of one etcd cluster (main, events, ...)."""

    model_config = {"populate_by_name": True}

    name: str = ""
    members: list[EtcdMemberStatus] = Field(default_factory=list, alias="etcdMembers")


class ClusterStatus(BaseModel):
    model_config = {"populate_by_name": True}

    etcd_clusters: list[EtcdClusterStatus] = Field(default_factory=list, alias="etcdClusters")


class ApiIngressStatus(BaseModel):
    """An ingress point for the API server.

    ip is set for IP based load balancers, hostname for DNS based ones
    (AWS load balancers are DNS based).
    """

    model_config = {"populate_by_name": True}

    ip: str = ""
    hostname: str = ""


def to_json_dict(model: BaseModel) -> dict:
    """Serialize with the wire field names, omitting empty values."""
    return model.model_dump(by_alias=True, exclude_defaults=True)


class StatusStore(ABC):
    """Discovers cluster status from the cloud."""

    @abstractmethod
    def find_cluster_status(self, cluster_name: str) -> ClusterStatus:
        """Status of the cluster's etcd clusters."""

    @abstractmethod
    def get_api_ingress_status(self, cluster_name: str) -> list[ApiIngressStatus]:
        """Ingress points of the cluster's API server."""


class CloudStatusStore(StatusStore):
    """StatusStore backed by the cluster's tagged cloud objects."""

    def __init__(self, cloud: AWSCloud, tag_batch_limit: int = DEFAULT_TAG_BATCH_LIMIT) -> None:
        self._cloud = cloud
        self._tag_batch_limit = tag_batch_limit

    def find_cluster_status(self, cluster_name: str) -> ClusterStatus:
        if self._cloud.volumes is None:
            raise ConvergeError("no volume backend configured")

        volumes = list_resources(
            self._cloud.volumes,
            ownership_tags(cluster_name),
            batch_limit=self._tag_batch_limit,
        )

        clusters: dict[str, EtcdClusterStatus] = {}
        for info in volumes:
            for key, value in info.tag_dict().items():
                if not key.startswith(ETCD_TAG_PREFIX):
                    continue
                etcd_name = key[len(ETCD_TAG_PREFIX) :]
                member_name, sep, _ = value.partition("/")
                if not etcd_name or not member_name or not sep:
                    logger.warning(
                        "Ignoring malformed etcd volume tag",
                        extra={"volume_id": info.arn, "tag_key": key, "tag_value": value},
                    )
                    continue

                cluster = clusters.setdefault(etcd_name, EtcdClusterStatus(name=etcd_name))
                cluster.members.append(EtcdMemberStatus(name=member_name, volume_id=info.arn))

        for cluster in clusters.values():
            cluster.members.sort(key=lambda m: m.name)

        status = ClusterStatus(etcd_clusters=[clusters[name] for name in sorted(clusters)])
        logger.info(
            "Found cluster status",
            extra={
                "cluster": cluster_name,
                "etcd_clusters": [c.name for c in status.etcd_clusters],
            },
        )
        return status

    def get_api_ingress_status(self, cluster_name: str) -> list[ApiIngressStatus]:
        load_balancers = list_resources(
            self._cloud.load_balancers,
            ownership_tags(cluster_name),
            batch_limit=self._tag_batch_limit,
        )

        ingress = [
            ApiIngressStatus(hostname=info.obj.get("DNSName", ""))
            for info in load_balancers
            if info.name_tag().startswith(API_LOAD_BALANCER_PREFIX) and info.obj.get("DNSName")
        ]
        ingress.sort(key=lambda i: i.hostname)

        logger.info(
            "Found API ingress",
            extra={"cluster": cluster_name, "hostnames": [i.hostname for i in ingress]},
        )
        return ingress
