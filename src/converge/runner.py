"""Dependency ordering and execution of a convergence pass.

The task set forms a directed acyclic graph through the references tasks
hold to each other. The graph is validated (Kahn's algorithm) before any
rendering, then the TaskRunner starts one asyncio task per node in
topological order. A node first awaits the results of everything it
references, then runs find → normalize → diff → check → render in the
default executor.

CONCURRENCY:
- max_concurrency bounds how many nodes run at once (1 = sequential)
- Nodes of the same kind never overlap, so two nodes that could resolve to
  the same live object cannot race
- A failed node causes its dependents to be SKIPPED; independent subtrees
  keep converging
- An InternalConsistencyError stops the pass: no new node starts
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field

from .errors import ConvergeError, CyclicDependencyError, DependencyNotReady
from .task import ConvergeContext, Task, TaskResult, TaskState, run_task

logger = logging.getLogger(__name__)


def task_key(task: Task) -> str:
    """Unique key of a task within a run: ``<kind>/<name>``."""
    return f"{task.kind}/{task.name}"


@dataclass
class DependencyGraph:
    """Directed acyclic graph of tasks, keyed by task_key."""

    tasks: dict[str, Task] = field(default_factory=dict)
    depends_on: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def from_tasks(cls, tasks: Iterable[Task]) -> DependencyGraph:
        graph = cls()
        for task in tasks:
            graph.add_task(task)
        return graph

    def add_task(self, task: Task) -> None:
        """Add a task and, transitively, every task it references.

        Raises:
            ConvergeError: If a different task with the same key is present.
        """
        key = task_key(task)
        existing = self.tasks.get(key)
        if existing is task:
            return
        if existing is not None:
            raise ConvergeError(f"duplicate task {key!r}")

        self.tasks[key] = task
        self.depends_on[key] = []
        for dep in task.dependencies():
            self.depends_on[key].append(task_key(dep))
            self.add_task(dep)

    def validate(self) -> None:
        """Validate the graph for cycles.

        Raises:
            CyclicDependencyError: If a cycle is detected.
        """
        self.topological_sort()

    def topological_sort(self) -> list[Task]:
        """Return tasks in dependency order (dependencies first).

        Ties are broken by key so the order is deterministic.

        Raises:
            CyclicDependencyError: If a cycle is detected.
        """
        dependents: dict[str, list[str]] = {key: [] for key in self.tasks}
        in_degree: dict[str, int] = {key: 0 for key in self.tasks}

        for key, deps in self.depends_on.items():
            for dep in deps:
                dependents[dep].append(key)
                in_degree[key] += 1

        # Kahn's algorithm
        result: list[str] = []
        queue = [key for key, degree in in_degree.items() if degree == 0]

        while queue:
            queue.sort()
            current = queue.pop(0)
            result.append(current)

            for dependent in dependents[current]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)

        if len(result) != len(self.tasks):
            cycle_nodes = sorted(key for key, degree in in_degree.items() if degree > 0)
            raise CyclicDependencyError(f"Circular dependency detected involving: {cycle_nodes}")

        return [self.tasks[key] for key in result]


@dataclass
class ConvergenceResult:
    """Outcome of one pass over all tasks."""

    target: str
    results: dict[str, TaskResult] = field(default_factory=dict)
    fatal: bool = False
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return not self.fatal and all(r.success for r in self.results.values())

    @property
    def errors(self) -> dict[str, Exception]:
        return {key: r.error for key, r in self.results.items() if r.error is not None}

    def keys_in_state(self, state: TaskState) -> list[str]:
        return sorted(key for key, r in self.results.items() if r.state is state)

    def summary(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for r in self.results.values():
            counts[r.state.value] = counts.get(r.state.value, 0) + 1
        return counts


class TaskRunner:
    """Runs one convergence pass over a task set."""

    def __init__(
        self,
        tasks: Iterable[Task],
        context: ConvergeContext,
        *,
        max_concurrency: int = 1,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self._graph = DependencyGraph.from_tasks(tasks)
        self._context = context
        self._max_concurrency = max_concurrency
        self._shutdown_event = asyncio.Event()
        self._fatal_event = asyncio.Event()

    @property
    def graph(self) -> DependencyGraph:
        return self._graph

    def shutdown(self) -> None:
        """Stop the pass at the next task boundary.

        Renders already in flight complete; nothing is rolled back.
        """
        logger.info("Shutdown requested", extra={"target": self._context.target.name})
        self._shutdown_event.set()

    async def run(self) -> ConvergenceResult:
        """Converge every task once.

        Raises:
            CyclicDependencyError: Before any rendering, if references form a cycle.
        """
        order = self._graph.topological_sort()
        target = self._context.target
        started = time.monotonic()

        logger.info(
            "Starting convergence pass",
            extra={
                "target": target.name,
                "task_count": len(order),
                "max_concurrency": self._max_concurrency,
            },
        )

        # Identifiers resolved by a previous pass are stale
        for task in order:
            task.ref.clear()

        semaphore = asyncio.Semaphore(self._max_concurrency)
        kind_locks = {task.kind: asyncio.Lock() for task in order}

        nodes: dict[str, asyncio.Task[TaskResult]] = {}
        for task in order:
            key = task_key(task)
            deps = [nodes[dep] for dep in self._graph.depends_on[key]]
            nodes[key] = asyncio.create_task(
                self._run_node(task, deps, semaphore, kind_locks[task.kind]),
                name=key,
            )

        results = await asyncio.gather(*nodes.values())

        result = ConvergenceResult(
            target=target.name,
            results={task_key(task): r for task, r in zip(order, results)},
            fatal=self._fatal_event.is_set(),
            cancelled=self._shutdown_event.is_set(),
            duration_seconds=time.monotonic() - started,
        )

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, target.finish, result.success)

        log = logger.info if result.success else logger.error
        log(
            "Convergence pass complete",
            extra={
                "target": target.name,
                "success": result.success,
                "fatal": result.fatal,
                "cancelled": result.cancelled,
                "states": result.summary(),
                "duration_seconds": round(result.duration_seconds, 3),
            },
        )
        return result

    async def _run_node(
        self,
        task: Task,
        deps: list[asyncio.Task[TaskResult]],
        semaphore: asyncio.Semaphore,
        kind_lock: asyncio.Lock,
    ) -> TaskResult:
        failed: list[str] = []
        for dep in deps:
            dep_result = await dep
            if not dep_result.success:
                failed.append(f"{dep_result.kind}/{dep_result.name}")

        if failed:
            logger.warning(
                "Skipping task, dependencies did not converge",
                extra={"task": task.name, "kind": task.kind, "dependencies": failed},
            )
            return TaskResult(
                name=task.name,
                kind=task.kind,
                state=TaskState.SKIPPED,
                error=DependencyNotReady(f"{task_key(task)} depends on failed tasks {failed}"),
            )

        async with semaphore, kind_lock:
            if self._fatal_event.is_set() or self._shutdown_event.is_set():
                reason = "fatal error" if self._fatal_event.is_set() else "shutdown"
                logger.info(
                    "Not starting task, pass stopped",
                    extra={"task": task.name, "kind": task.kind, "reason": reason},
                )
                return TaskResult(
                    name=task.name,
                    kind=task.kind,
                    state=TaskState.SKIPPED,
                    error=ConvergeError(f"pass stopped by {reason} before {task_key(task)} started"),
                )

            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, run_task, task, self._context)
            if result.fatal:
                self._fatal_event.set()

        return result
