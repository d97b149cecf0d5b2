"""Live target: converges by calling the cloud API directly."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .base import RenderTarget

if TYPE_CHECKING:
    from ..cloud import AWSCloud
    from ..task import Delta, Task

logger = logging.getLogger(__name__)


class LiveTarget(RenderTarget):
    """Applies deltas with create, update and delete calls.

    Mutations are not rolled back by the engine once issued; a failed pass
    is resumed by running it again.
    """

    name = "live"
    requires_actual_state = True

    def __init__(self, cloud: AWSCloud) -> None:
        super().__init__(cloud.tags())
        self.cloud = cloud

    def render(self, task: Task, actual: Task | None, delta: Delta) -> None:
        logger.debug(
            "Rendering to live backend",
            extra={"task": task.name, "kind": task.kind, "delta": delta.kind.value},
        )
        task.render_live(self, actual, delta)
