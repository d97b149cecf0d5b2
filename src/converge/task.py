"""Task nodes and the standard find → normalize → diff → check → render lifecycle.

A Task is one declared cloud resource. Each resource kind subclasses Task
and supplies:

- find(context): look up the live counterpart (None when absent)
- normalize(state): canonical, comparable copy (idempotent)
- check_changes(actual, expected, delta): reject illegal deltas
- render_live / render_terraform: the two target-specific renderings

run_task() drives one task through one pass and records the outcome in a
TaskResult; it never raises for task-level failures.

IDENTIFIER CELLS:
Each task owns a ResolvedRef holding its backend identifier. Only the
task's own find (on a match) or render (on create) writes it; dependents
read it. Copies made by normalize share the cell of the task they came
from, so a render through a normalized copy still resolves the declared
task.
"""

from __future__ import annotations

import dataclasses
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from .errors import (
    BackendQueryError,
    ConvergeError,
    DependencyNotReady,
    DisallowedChangeError,
    InternalConsistencyError,
    MissingDependency,
    ResourceNotFoundError,
)

if TYPE_CHECKING:
    from .cloud import AWSCloud
    from .targets.base import RenderTarget
    from .targets.live import LiveTarget
    from .targets.terraform import Literal, TerraformTarget

logger = logging.getLogger(__name__)


class Lifecycle(str, Enum):
    """How far the engine may go to converge a resource."""

    CREATE_ONLY = "create-only"  # Create when absent, never mutate
    CREATE_OR_UPDATE = "create-or-update"  # Full convergence
    EXISTS_AND_IMMUTABLE = "exists-and-immutable"  # Must exist, must match


class DeltaKind(str, Enum):
    """What a render has to do."""

    NO_OP = "no-op"
    CREATE = "create"
    UPDATE = "update"
    RECREATE = "recreate"


class TaskState(str, Enum):
    """Per-pass state of a task."""

    UNRESOLVED = "unresolved"
    FOUND = "found"
    ABSENT = "absent"
    NORMALIZED = "normalized"
    NO_OP = "no-op"
    PENDING_CREATE = "pending-create"
    PENDING_UPDATE = "pending-update"
    PENDING_RECREATE = "pending-recreate"
    RENDERED = "rendered"
    FAILED = "failed"
    SKIPPED = "skipped"  # Not started: dependency failed or pass cancelled


_PENDING_STATES: dict[DeltaKind, TaskState] = {
    DeltaKind.NO_OP: TaskState.NO_OP,
    DeltaKind.CREATE: TaskState.PENDING_CREATE,
    DeltaKind.UPDATE: TaskState.PENDING_UPDATE,
    DeltaKind.RECREATE: TaskState.PENDING_RECREATE,
}

TERMINAL_SUCCESS_STATES = frozenset({TaskState.NO_OP, TaskState.RENDERED})


@dataclass(frozen=True)
class Delta:
    """Difference between actual and declared state.

    Attributes:
        kind: What the render must do.
        changes: Changed field name -> declared value.
    """

    kind: DeltaKind
    changes: dict[str, Any] = field(default_factory=dict)

    @property
    def fields(self) -> list[str]:
        return sorted(self.changes)


class ResolvedRef:
    """Write-once cell for a task's backend identifier within one pass."""

    def __init__(self, owner: str = "") -> None:
        self.owner = owner
        self._value: str | None = None

    @property
    def value(self) -> str | None:
        return self._value

    @property
    def is_resolved(self) -> bool:
        return bool(self._value)

    def set(self, value: str) -> None:
        """Record the identifier.

        Raises:
            InternalConsistencyError: If a different identifier was already
                recorded in this pass.
        """
        if self._value and self._value != value:
            raise InternalConsistencyError(
                f"identifier for {self.owner!r} already resolved to {self._value!r}, "
                f"refusing to overwrite with {value!r}"
            )
        self._value = value

    def clear(self) -> None:
        self._value = None

    def __repr__(self) -> str:
        return f"ResolvedRef({self.owner!r}, {self._value!r})"


@dataclass(frozen=True)
class ObservedRef:
    """Reference to another object as seen on a live object (identifier only)."""

    arn: str

    def resolved_id(self) -> str | None:
        return self.arn or None


def _comparable(value: Any) -> Any:
    resolve = getattr(value, "resolved_id", None)
    if callable(resolve):
        return resolve()
    return value


@dataclass(kw_only=True, eq=False)
class Task(ABC):
    """A declared resource plus its convergence lifecycle.

    Attributes:
        name: Logical name, unique within a run. Used for cross-task
            references and as the Name tag.
        lifecycle: How far the engine may go to converge the resource.
        arn: Backend identifier. Only set on actual values returned by find.
        ref: Identifier cell shared with normalized copies.
    """

    kind: ClassVar[str] = ""
    terraform_type: ClassVar[str] = ""
    compared_fields: ClassVar[tuple[str, ...]] = ()
    immutable_fields: ClassVar[frozenset[str]] = frozenset()
    required_fields: ClassVar[tuple[str, ...]] = ()

    name: str
    lifecycle: Lifecycle = Lifecycle.CREATE_OR_UPDATE
    arn: str = field(default="", repr=False)
    ref: ResolvedRef = field(default_factory=ResolvedRef, repr=False)

    def __post_init__(self) -> None:
        if not self.ref.owner:
            self.ref.owner = self.name

    # -- references ---------------------------------------------------------

    def dependencies(self) -> list[Task]:
        """Tasks this task references."""
        return []

    def resolved_id(self) -> str | None:
        return self.ref.value

    def require_dependency(self, dependency: Task | None, field_name: str) -> str:
        """Return a dependency's identifier for use during find.

        Raises:
            MissingDependency: If the reference is unset or unresolved.
        """
        if dependency is None:
            raise MissingDependency(f"{self.kind} {self.name!r}: field {field_name!r} is required")
        if not dependency.ref.is_resolved:
            raise MissingDependency(
                f"{self.kind} {self.name!r}: {dependency.kind} {dependency.name!r} "
                "has no identifier yet"
            )
        return dependency.ref.value or ""

    def dependency_id(self, dependency: Task | None, field_name: str) -> str:
        """Return a dependency's identifier for use during a live render.

        Raises:
            DependencyNotReady: If the reference is unset or not yet created.
        """
        if dependency is None:
            raise DependencyNotReady(f"{self.kind} {self.name!r}: field {field_name!r} is required")
        if not dependency.ref.is_resolved:
            raise DependencyNotReady(
                f"{dependency.kind} {dependency.name!r} not yet created (arn not set)"
            )
        return dependency.ref.value or ""

    # -- terraform naming ---------------------------------------------------

    def terraform_name(self) -> str:
        """Resource name in the Terraform output: dots become dashes."""
        tf_name = self.name.replace(".", "-").replace("/", "-")
        if not tf_name[:1].isalpha():
            tf_name = "r-" + tf_name
        return tf_name

    def terraform_link(self, target: TerraformTarget) -> Literal:
        """Reference to this task's identifier from another block.

        Symbolic when this task's block is part of the output. A resource
        that was found but not rendered in this pass is referenced by its
        literal identifier.
        """
        from .targets.terraform import Literal

        tf_name = self.terraform_name()
        if not target.has_resource(self.terraform_type, tf_name) and self.ref.is_resolved:
            return Literal.from_value(self.ref.value or "")
        return Literal.reference(self.terraform_type, tf_name, "arn")

    # -- lifecycle operations -----------------------------------------------

    @abstractmethod
    def find(self, context: ConvergeContext) -> Task | None:
        """Return the live counterpart of this task, or None when absent."""

    def normalize(self, state: Task) -> Task:
        """Return a canonical copy of state. Must be idempotent."""
        return dataclasses.replace(state)

    def check_changes(self, actual: Task | None, expected: Task, delta: Delta) -> None:
        """Reject deltas that cannot legally be rendered.

        Raises:
            DisallowedChangeError: Naming the offending field.
        """
        if delta.kind in (DeltaKind.CREATE, DeltaKind.RECREATE):
            for name in self.required_fields:
                if getattr(expected, name) in (None, "", [], {}):
                    raise DisallowedChangeError(
                        name, f"{self.kind} {self.name!r}: field {name!r} is required"
                    )

        if delta.kind is DeltaKind.UPDATE:
            for name in delta.fields:
                if name in self.immutable_fields:
                    raise DisallowedChangeError(
                        name,
                        f"{self.kind} {self.name!r}: field {name!r} cannot be changed in place, "
                        "the resource must be recreated",
                    )

    @abstractmethod
    def render_live(self, target: LiveTarget, actual: Task | None, delta: Delta) -> None:
        """Apply the delta through the cloud API."""

    @abstractmethod
    def render_terraform(self, target: TerraformTarget, delta: Delta) -> None:
        """Emit the declared resource as a Terraform block."""


@dataclass
class ConvergeContext:
    """What a task sees during a pass."""

    target: RenderTarget
    cloud: AWSCloud | None = None
    tag_batch_limit: int = 20

    def require_cloud(self) -> AWSCloud:
        if self.cloud is None:
            raise ConvergeError("no cloud backend configured for this pass")
        return self.cloud


def build_delta(actual: Task | None, expected: Task) -> Delta:
    """Compare actual and expected on the task's compared fields."""
    if actual is None:
        return Delta(
            DeltaKind.CREATE,
            {name: getattr(expected, name) for name in expected.compared_fields},
        )

    changes: dict[str, Any] = {}
    for name in expected.compared_fields:
        desired = getattr(expected, name)
        if _comparable(getattr(actual, name)) != _comparable(desired):
            changes[name] = desired

    if not changes:
        return Delta(DeltaKind.NO_OP)
    if changes.keys() & expected.immutable_fields:
        return Delta(DeltaKind.RECREATE, changes)
    return Delta(DeltaKind.UPDATE, changes)


@dataclass
class TaskResult:
    """Outcome of one task in one pass."""

    name: str
    kind: str
    state: TaskState = TaskState.UNRESOLVED
    delta: DeltaKind | None = None
    changed_fields: list[str] = field(default_factory=list)
    error: Exception | None = None

    @property
    def success(self) -> bool:
        return self.error is None and self.state in TERMINAL_SUCCESS_STATES

    @property
    def fatal(self) -> bool:
        return isinstance(self.error, InternalConsistencyError)


def _apply_lifecycle(task: Task, actual: Task | None, delta: Delta) -> Delta:
    if task.lifecycle is Lifecycle.EXISTS_AND_IMMUTABLE:
        if actual is None:
            raise ResourceNotFoundError(
                f"{task.kind} {task.name!r} is declared as existing but was not found"
            )
        if delta.changes:
            raise DisallowedChangeError(
                delta.fields[0],
                f"{task.kind} {task.name!r} is exists-and-immutable but differs in "
                f"{delta.fields}",
            )
        return delta

    if task.lifecycle is Lifecycle.CREATE_ONLY and actual is not None and delta.changes:
        logger.warning(
            "Create-only resource differs from declaration, leaving it unchanged",
            extra={"task": task.name, "kind": task.kind, "fields": delta.fields},
        )
        return Delta(DeltaKind.NO_OP)

    return delta


def _find_best_effort(task: Task, context: ConvergeContext) -> Task | None:
    """Look up the live counterpart, treating an unanswerable lookup as absent."""
    try:
        return task.find(context)
    except (MissingDependency, BackendQueryError) as e:
        logger.info(
            "Live lookup unavailable, rendering as absent",
            extra={
                "task": task.name,
                "kind": task.kind,
                "error": str(e),
                "error_type": type(e).__name__,
            },
        )
        return None


def run_task(task: Task, context: ConvergeContext) -> TaskResult:
    """Drive one task through one convergence pass.

    Errors are recorded on the returned result, never raised, so that the
    runner can keep converging independent subtrees.
    """
    result = TaskResult(name=task.name, kind=task.kind)
    target = context.target

    try:
        actual: Task | None = None
        if target.requires_actual_state or task.lifecycle is Lifecycle.EXISTS_AND_IMMUTABLE:
            actual = task.find(context)
        elif context.cloud is not None:
            actual = _find_best_effort(task, context)
        result.state = TaskState.FOUND if actual is not None else TaskState.ABSENT

        if actual is not None:
            actual = task.normalize(actual)
        expected = task.normalize(task)
        result.state = TaskState.NORMALIZED

        delta = build_delta(actual, expected)
        result.changed_fields = delta.fields
        delta = _apply_lifecycle(task, actual, delta)
        result.delta = delta.kind
        result.state = _PENDING_STATES[delta.kind]

        task.check_changes(actual, expected, delta)

        if delta.kind is not DeltaKind.NO_OP:
            target.render(expected, actual, delta)
            result.state = TaskState.RENDERED

        logger.info(
            "Task converged",
            extra={
                "task": task.name,
                "kind": task.kind,
                "target": target.name,
                "delta": delta.kind.value,
                "fields": delta.fields,
            },
        )
    except InternalConsistencyError as e:
        logger.critical(
            "Internal consistency violation",
            extra={"task": task.name, "kind": task.kind, "error": str(e)},
        )
        result.state = TaskState.FAILED
        result.error = e
    except ConvergeError as e:
        logger.error(
            "Task failed",
            extra={
                "task": task.name,
                "kind": task.kind,
                "error": str(e),
                "error_type": type(e).__name__,
            },
        )
        result.state = TaskState.FAILED
        result.error = e
    except Exception as e:
        logger.exception(
            "Task failed unexpectedly",
            extra={"task": task.name, "kind": task.kind, "error": str(e)},
        )
        result.state = TaskState.FAILED
        result.error = e

    return result
