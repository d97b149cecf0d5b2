"""Terraform target: converges by emitting a declarative artifact.

Nothing is written to the cloud. When a backend is configured tasks still
look up their live counterpart, and a resource that already matches emits
no block. Each remaining task contributes one resource block; references
to blocks in the output are written as symbolic Literal expressions
(``${aws_lb.api.arn}``) that Terraform resolves at apply time, references
to resources found but not rendered as their literal identifier.

The output is Terraform's JSON syntax, written once by finish() and only
when every task in the pass succeeded.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..errors import ConvergeError
from .base import RenderTarget

if TYPE_CHECKING:
    from ..task import Delta, Task

logger = logging.getLogger(__name__)

# Provider requirement written into every generated file
AWS_PROVIDER_SOURCE = "hashicorp/aws"
AWS_PROVIDER_VERSION = ">= 5.0"


class TerraformRenderError(ConvergeError):
    """Raised when a resource block cannot be emitted."""

    pass


@dataclass(frozen=True)
class Literal:
    """A field value written verbatim into the Terraform output.

    Attributes:
        expression: The string Terraform sees, possibly an interpolation.
    """

    expression: str

    @classmethod
    def reference(cls, resource_type: str, resource_name: str, prop: str) -> Literal:
        """Symbolic reference to another resource's attribute."""
        return cls(f"${{{resource_type}.{resource_name}.{prop}}}")

    @classmethod
    def from_value(cls, value: str) -> Literal:
        """A concrete value already known at render time."""
        return cls(value)

    @property
    def is_symbolic(self) -> bool:
        return self.expression.startswith("${")


def _to_json_value(value: Any) -> Any:
    if isinstance(value, Literal):
        return value.expression
    if isinstance(value, dict):
        return {k: _to_json_value(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_to_json_value(v) for v in value]
    return value


def _count_symbolic(value: Any) -> int:
    if isinstance(value, Literal):
        return int(value.is_symbolic)
    if isinstance(value, dict):
        return sum(_count_symbolic(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return sum(_count_symbolic(v) for v in value)
    return 0


class TerraformTarget(RenderTarget):
    """Collects resource blocks and writes them as ``*.tf.json``."""

    name = "terraform"
    requires_actual_state = False

    def __init__(self, output_path: Path, region: str, ownership_tags: dict[str, str]) -> None:
        super().__init__(ownership_tags)
        self.output_path = output_path
        self.region = region
        self._resources: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def render(self, task: Task, actual: Task | None, delta: Delta) -> None:
        task.render_terraform(self, delta)

    def render_resource(self, kind: str, name: str, fields: dict[str, Any]) -> None:
        """Append one resource block.

        Args:
            kind: Terraform resource type (e.g. ``aws_lb_listener``).
            name: Terraform resource name, unique per type.
            fields: Attribute values; Literal values are written verbatim and
                None values are omitted.

        Raises:
            TerraformRenderError: If the block was already emitted.
        """
        with self._lock:
            blocks = self._resources.setdefault(kind, {})
            if name in blocks:
                raise TerraformRenderError(f"duplicate terraform resource {kind}.{name}")
            blocks[name] = dict(fields)

        logger.debug(
            "Rendered terraform resource",
            extra={
                "resource_type": kind,
                "resource_name": name,
                "symbolic_references": _count_symbolic(fields),
            },
        )

    def has_resource(self, kind: str, name: str) -> bool:
        with self._lock:
            return name in self._resources.get(kind, {})

    @property
    def resources(self) -> dict[str, dict[str, dict[str, Any]]]:
        """Emitted blocks by type and name, values as passed to render_resource."""
        return self._resources

    def symbolic_reference_count(self) -> int:
        return _count_symbolic(self._resources)

    def to_document(self) -> dict[str, Any]:
        """Build the Terraform JSON document."""
        return {
            "terraform": {
                "required_providers": {
                    "aws": {"source": AWS_PROVIDER_SOURCE, "version": AWS_PROVIDER_VERSION}
                }
            },
            "provider": {"aws": {"region": self.region}},
            "resource": _to_json_value(self._resources),
        }

    def finish(self, success: bool) -> None:
        if not success:
            logger.error(
                "Not writing terraform output, some tasks failed",
                extra={"output_path": str(self.output_path)},
            )
            return

        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        self.output_path.write_text(
            json.dumps(self.to_document(), indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )
        logger.info(
            "Wrote terraform output",
            extra={
                "output_path": str(self.output_path),
                "resource_count": sum(len(v) for v in self._resources.values()),
            },
        )
