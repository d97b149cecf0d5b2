"""Render target strategy interface.

A target is selected once per run and applied uniformly to every task in
dependency order. render() is the single place where the target kind is
dispatched on; task logic never branches on it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..task import Delta, Task


class RenderTarget(ABC):
    """Mutation sink for a convergence pass."""

    name: str = ""

    # Whether the live state lookup must succeed before rendering to this
    # target. When False the lookup is best effort.
    requires_actual_state: bool = True

    def __init__(self, ownership_tags: dict[str, str]) -> None:
        self.ownership_tags = dict(ownership_tags)

    def resource_tags(self, name: str, extra: dict[str, str] | None = None) -> dict[str, str]:
        """Full tag set for a managed resource: ownership, Name, then user tags."""
        tags = dict(self.ownership_tags)
        tags["Name"] = name
        tags.update(extra or {})
        return tags

    @abstractmethod
    def render(self, task: Task, actual: Task | None, delta: Delta) -> None:
        """Render one task's delta."""

    def finish(self, success: bool) -> None:
        """Called once after every task has reached a terminal state."""
