"""Tag-based identity matching.

Cloud-assigned names are length and charset restricted (an ELBv2 name is at
most 32 characters) and cannot carry the logical name, so ownership tags are
the durable correlation key across runs.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

TagInput = Mapping[str, str] | Iterable[Mapping[str, Any]] | None


def tags_to_dict(tags: TagInput) -> dict[str, str]:
    """Convert AWS ``[{"Key": .., "Value": ..}]`` tags (or a mapping) to a dict."""
    if tags is None:
        return {}
    if isinstance(tags, Mapping):
        return dict(tags)
    return {tag["Key"]: tag.get("Value", "") for tag in tags}


def dict_to_tags(tags: Mapping[str, str]) -> list[dict[str, str]]:
    """Convert a mapping to the AWS tag list shape, sorted by key."""
    return [{"Key": k, "Value": v} for k, v in sorted(tags.items())]


def matches_tags(ownership_tags: TagInput, candidate_tags: TagInput) -> bool:
    """Check whether a candidate belongs to the managed set.

    Every required (key, value) pair must be present on the candidate.
    Extra tags on the candidate are ignored.

    Args:
        ownership_tags: Tags that identify resources we own.
        candidate_tags: Tags found on the live object.

    Returns:
        True if ownership_tags is a subset of candidate_tags.
    """
    candidate = tags_to_dict(candidate_tags)
    for key, value in tags_to_dict(ownership_tags).items():
        if key not in candidate or candidate[key] != value:
            return False
    return True


def ownership_tags(cluster_name: str) -> dict[str, str]:
    """Tags every resource managed for a cluster carries."""
    return {
        "KubernetesCluster": cluster_name,
        f"kubernetes.io/cluster/{cluster_name}": "owned",
    }
