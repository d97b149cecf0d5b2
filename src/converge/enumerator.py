"""Resource enumeration with batched tag correlation.

ELBv2 returns base objects and their tags from separate APIs, and
DescribeTags accepts at most 20 ARNs per call. The enumerator pages through
the listing with the page size set to the tag batch limit, issues one tag
lookup per page (chunked to the limit if the backend returns an oversized
page anyway) and merges tags back onto each object by identifier.

Fetching is strictly sequential: tag correlation depends on page
boundaries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from .cloud import ResourceLister
from .config import DEFAULT_TAG_BATCH_LIMIT
from .errors import BackendQueryError, InternalConsistencyError
from .tags import TagInput, matches_tags

logger = logging.getLogger(__name__)


@dataclass
class ResourceInfo:
    """A live object together with its resolved tags.

    Attributes:
        arn: Opaque backend identifier.
        obj: Raw object as returned by the listing call.
        tags: Tags in AWS list shape, merged from the tag lookup.
    """

    arn: str
    obj: dict[str, Any]
    tags: list[dict[str, str]] = field(default_factory=list)

    def name_tag(self) -> str:
        """Return the value of the tag with the key "Name"."""
        value, _ = self.get_tag("Name")
        return value

    def get_tag(self, key: str) -> tuple[str, bool]:
        """Return the value of the tag with the given key and whether it was set."""
        for tag in self.tags:
            if tag.get("Key") == key:
                return tag.get("Value", ""), True
        return "", False

    def tag_dict(self) -> dict[str, str]:
        return {tag["Key"]: tag.get("Value", "") for tag in self.tags}


def _chunks(items: list[str], size: int) -> list[list[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def list_resources(
    lister: ResourceLister,
    ownership_tags: TagInput = None,
    *,
    batch_limit: int = DEFAULT_TAG_BATCH_LIMIT,
    **scope: Any,
) -> list[ResourceInfo]:
    """List every resource of a kind with its tags.

    Args:
        lister: Backend capability for the resource kind.
        ownership_tags: If given, only resources carrying all of these tags
            are returned.
        batch_limit: Maximum identifiers per tag lookup.
        **scope: Extra listing arguments passed through to the backend.

    Returns:
        Resources in listing order, tags merged.

    Raises:
        BackendQueryError: If the listing or a tag lookup fails. Nothing
            from the failed pass is returned.
        InternalConsistencyError: If a tag response names an identifier
            that was not requested in that batch.
    """
    logger.debug("Listing resources", extra={"kind": lister.kind, "batch_limit": batch_limit})

    by_id: dict[str, ResourceInfo] = {}
    tag_calls = 0

    try:
        for page in lister.list_pages(page_size=batch_limit, **scope):
            if not page:
                continue

            page_ids: list[str] = []
            for obj in page:
                resource_id = lister.identifier(obj)
                by_id[resource_id] = ResourceInfo(arn=resource_id, obj=obj)
                page_ids.append(resource_id)

            for batch in _chunks(page_ids, batch_limit):
                tag_calls += 1
                requested = set(batch)
                for description in lister.describe_tags(batch):
                    resource_id = description.get("ResourceArn", "")
                    if resource_id not in requested:
                        logger.critical(
                            "Tag lookup returned a resource that was not requested",
                            extra={"kind": lister.kind, "resource_id": resource_id},
                        )
                        raise InternalConsistencyError(
                            f"found tags for {lister.kind} we didn't ask for: {resource_id!r}"
                        )
                    by_id[resource_id].tags.extend(description.get("Tags", []))
    except (ClientError, BotoCoreError) as e:
        raise BackendQueryError(f"listing {lister.kind} resources: {e}") from e

    results = [
        info
        for info in by_id.values()
        if ownership_tags is None or matches_tags(ownership_tags, info.tags)
    ]

    logger.debug(
        "Listed resources",
        extra={
            "kind": lister.kind,
            "listed": len(by_id),
            "owned": len(results),
            "tag_calls": tag_calls,
        },
    )
    return results
