"""Error taxonomy for a convergence pass.

Every error raised by the engine derives from ConvergeError so callers can
tell engine failures apart from programming errors. Backend SDK exceptions
are wrapped (``raise ... from e``) at the point where they cross into the
engine, never swallowed.

PROPAGATION:
- Enumeration and per-task errors propagate to the TaskRunner
- The runner records them per task and keeps converging independent subtrees
- InternalConsistencyError is the exception: it stops the whole pass
"""

from __future__ import annotations


class ConvergeError(Exception):
    """Base class for all convergence errors."""

    pass


class BackendQueryError(ConvergeError):
    """Raised when a listing or tag lookup call fails.

    The caller may retry the whole pass.
    """

    pass


class BackendMutationError(ConvergeError):
    """Raised when a create, update or delete call fails."""

    pass


class AmbiguousMatchError(ConvergeError):
    """Raised when more than one live object matches a declared resource.

    Never resolved automatically: mutating the wrong object could destroy
    infrastructure the engine does not own.
    """

    pass


class DisallowedChangeError(ConvergeError):
    """Raised when a delta tries to change a field it must not change."""

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message or f"change to field {field!r} is not allowed")


class DependencyNotReady(ConvergeError):
    """Raised when a referenced task has no resolved identifier yet."""

    pass


class MissingDependency(DependencyNotReady):
    """Raised by find when a required reference is unset or unresolved."""

    pass


class CyclicDependencyError(ConvergeError):
    """Raised when declared references form a cycle."""

    pass


class InternalConsistencyError(ConvergeError):
    """Raised when a backend response references an object never requested.

    Always fatal for the pass.
    """

    pass


class ResourceNotFoundError(ConvergeError):
    """Raised when a resource declared as existing is absent."""

    pass
