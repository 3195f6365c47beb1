"""
Executor - drives every task of a convergence pass from its actual state to
its desired state.

Scheduling model:
- the dependency graph gives each task an in-degree (number of dependencies);
- tasks with in-degree zero sit in a ready queue drained by a fixed number of
  worker coroutines;
- the blocking per-task pipeline (normalize → find → check_changes → render)
  runs in a worker thread, so provider calls never block the event loop;
- a success decrements the in-degree of each dependent and enqueues the ones
  that reach zero;
- a TryAgainLaterError re-queues the task after an exponential backoff until
  the attempt budget is spent;
- any other failure marks every transitive dependent as blocked.

Independent branches keep going when one branch fails; errors are aggregated
in the ConvergenceReport. Nothing that was applied is ever rolled back: the
next pass re-finds and re-diffs, retrying only what is still divergent.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from cloudup.changes import ChangeSet, build_changes
from cloudup.context import CloudupContext
from cloudup.deletions import DeletionCollector, DeletionResult
from cloudup.errors import (
    CloudupError,
    FindError,
    LifecycleError,
    RenderError,
    RetriesExhaustedError,
    TaskError,
    TryAgainLaterError,
    UnappliedChangesError,
    UnsupportedTargetError,
)
from cloudup.graph import DependencyGraph, index_tasks
from cloudup.report import ConvergenceReport, TaskResult, TaskStatus
from cloudup.settings import get_settings
from cloudup.targets.base import Target
from cloudup.tasks.base import Lifecycle, Task

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

SUCCEEDED = (TaskStatus.NO_OP, TaskStatus.CREATED, TaskStatus.UPDATED)


@dataclass
class _TaskRun:
    """Per-pass bookkeeping for one task.

    Normalize, find and check_changes results are cached so a retried task
    only repeats the steps that have not completed yet.
    """

    task: Task
    attempts: int = 0
    normalized: bool = False
    found: bool = False
    actual: Task | None = None
    changes: ChangeSet | None = None
    status: TaskStatus | None = None
    error: str | None = None
    retry_delays: list[float] = field(default_factory=list)
    started: float | None = None
    duration: float = 0.0

    @property
    def terminal(self) -> bool:
        return self.status is not None

    def to_result(self) -> TaskResult:
        return TaskResult(
            key=self.task.key,
            kind=self.task.kind,
            name=self.task.name,
            status=self.status or TaskStatus.BLOCKED,
            changes=self.changes.to_list() if self.changes else [],
            error=self.error,
            attempts=self.attempts,
            retry_delays=list(self.retry_delays),
            duration=self.duration,
        )


@dataclass
class _PassState:
    """Scheduler-owned shared state; mutated only under Executor._lock."""

    graph: DependencyGraph
    runs: dict[int, _TaskRun]
    queue: "asyncio.Queue[_TaskRun]"
    in_degree: dict[int, int]
    remaining: int
    done: asyncio.Event
    timers: set[asyncio.Task] = field(default_factory=set)


class Executor:
    """Runs a convergence pass over a set of tasks.

    Args:
        context: Context holding the target and shared pass data
        max_concurrency: Worker count (defaults to settings)
        max_attempts: Attempts per task for transient errors (defaults to settings)
        retry_backoff: Initial retry delay in seconds (defaults to settings)
        retry_max_backoff: Maximum retry delay in seconds (defaults to settings)
        dry_run: Compute and report changes without rendering or deleting
        sleep: Awaitable used to wait before a retry (asyncio.sleep by default)

    Example:
        executor = Executor(CloudupContext(target=APITarget(cloud)))
        report = await executor.run(tasks)
        if not report.success:
            print("\\n".join(report.errors))
    """

    def __init__(
        self,
        context: CloudupContext,
        max_concurrency: int | None = None,
        max_attempts: int | None = None,
        retry_backoff: float | None = None,
        retry_max_backoff: float | None = None,
        dry_run: bool = False,
        sleep: Sleep | None = None,
    ):
        settings = get_settings()

        self.context = context
        self.max_concurrency = max_concurrency or settings.max_concurrency
        self.max_attempts = max_attempts or settings.max_attempts
        self.retry_backoff = (
            settings.retry_backoff_seconds if retry_backoff is None else retry_backoff
        )
        self.retry_max_backoff = (
            settings.retry_max_backoff_seconds
            if retry_max_backoff is None
            else retry_max_backoff
        )
        self.dry_run = dry_run
        self._sleep = sleep or asyncio.sleep
        self._cancelled = False
        self._lock = asyncio.Lock()

    @property
    def target(self) -> Target:
        return self.context.target

    def cancel(self) -> None:
        """Stop dispatching new tasks; in-flight steps are allowed to finish.

        Tasks that were not dispatched yet are reported as blocked. Nothing is
        rolled back: the next pass reconciles whatever was partially applied.
        """
        if not self._cancelled:
            logger.warning("Cancellation requested - no new tasks will be dispatched")
        self._cancelled = True

    def backoff(self, attempt: int) -> float:
        """Delay before retry number attempt (1-based)."""
        return min(self.retry_backoff * (2 ** (attempt - 1)), self.retry_max_backoff)

    async def run(self, tasks: Iterable[Task]) -> ConvergenceReport:
        """Execute one convergence pass.

        Args:
            tasks: The fully constructed desired-state task set

        Returns:
            ConvergenceReport with one result per task and deletion outcomes

        Raises:
            DependencyCycleError: If the dependencies contain a cycle (nothing runs)
            ConfigurationError: On duplicate tasks or tasks outside the set
            UnsupportedTargetError: If a task cannot render against the target
        """
        graph = DependencyGraph.build(tasks)
        self._check_target_support(graph.tasks)
        self.context.tasks = index_tasks(graph.tasks)

        logger.info(
            f"Starting {'dry-run ' if self.dry_run else ''}convergence pass: "
            f"{len(graph)} tasks, target={self.target.kind.value}, "
            f"concurrency={self.max_concurrency}"
        )

        runs = {id(task): _TaskRun(task=task) for task in graph.tasks}
        await self._run_graph(graph, runs)

        order = graph.topological_order()
        deletions: list[DeletionResult] = []
        if not self.dry_run and self.target.process_deletions():
            collector = DeletionCollector()
            for task in order:
                if runs[id(task)].status in SUCCEEDED:
                    collector.collect(task, self.context)
            if collector:
                deletions = await collector.run(self.target, self.max_concurrency)

        if not self.dry_run:
            self.target.finish(order)

        report = ConvergenceReport(
            target=self.target.kind.value,
            dry_run=self.dry_run,
            results=[runs[id(task)].to_result() for task in order],
            deletions=deletions,
        )

        summary = report.summary()
        logger.info(
            f"Convergence pass complete: "
            f"+{summary['created']} ~{summary['updated']} ={summary['no-op']} "
            f"failed={summary['failed']} blocked={summary['blocked']}"
        )
        for error in report.deletion_errors:
            logger.warning(f"Deletion not completed: {error}")

        return report

    def _check_target_support(self, tasks: list[Task]) -> None:
        unsupported = [
            task.key
            for task in tasks
            if task.lifecycle is not Lifecycle.IGNORE
            and not type(task).supports(self.target.kind)
        ]
        if unsupported:
            raise UnsupportedTargetError(self.target.kind.value, unsupported)

    async def _run_graph(self, graph: DependencyGraph, runs: dict[int, _TaskRun]) -> None:
        if not runs:
            return

        state = _PassState(
            graph=graph,
            runs=runs,
            queue=asyncio.Queue(),
            in_degree=graph.in_degrees(),
            remaining=len(runs),
            done=asyncio.Event(),
        )
        for task in graph.roots():
            state.queue.put_nowait(runs[id(task)])

        workers = [
            asyncio.create_task(self._worker(state))
            for _ in range(min(self.max_concurrency, len(runs)))
        ]
        try:
            await state.done.wait()
        finally:
            pending = workers + list(state.timers)
            for pending_task in pending:
                pending_task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def _worker(self, state: _PassState) -> None:
        while True:
            run = await state.queue.get()
            try:
                await self._dispatch(run, state)
            finally:
                state.queue.task_done()

    async def _dispatch(self, run: _TaskRun, state: _PassState) -> None:
        if self._cancelled:
            async with self._lock:
                self._terminate(run, TaskStatus.BLOCKED, "pass cancelled", state)
                self._block_dependents(run, "pass cancelled", state)
                self._check_done(state)
            return

        run.attempts += 1
        if run.started is None:
            run.started = time.perf_counter()
        logger.debug(f"→ starting {run.task.key} (attempt {run.attempts})")

        try:
            status = await asyncio.to_thread(self._converge, run)
        except TryAgainLaterError as e:
            await self._retry_or_fail(run, e, state)
        except CloudupError as e:
            await self._fail(run, e, state)
        except Exception as e:
            logger.exception(f"Unexpected error converging {run.task.key}")
            await self._fail(run, TaskError(run.task.key, f"unexpected error: {e}"), state)
        else:
            await self._succeed(run, status, state)

    def _converge(self, run: _TaskRun) -> TaskStatus:
        """Blocking per-task pipeline, executed in a worker thread."""
        task = run.task

        if task.lifecycle is Lifecycle.IGNORE:
            logger.info(f"Skipping {task.key} (lifecycle {task.lifecycle.value})")
            return TaskStatus.NO_OP

        if not run.normalized:
            task.normalize(self.context)
            run.normalized = True

        if not run.found:
            run.actual = self._find(task)
            run.found = True
        actual = run.actual

        validating = self.target.supports_find and task.lifecycle in (
            Lifecycle.EXISTS_AND_VALIDATES,
            Lifecycle.EXISTS_AND_WARN_IF_CHANGES,
        )
        if validating and actual is None:
            raise LifecycleError(
                task.key,
                f"lifecycle {task.lifecycle.value} requires the resource to exist, but it was not found",
            )

        if run.changes is None:
            changes = build_changes(actual, task)
            task.check_changes(actual, task, changes)
            run.changes = changes

        # A missing resource is always rendered, even with no field changes
        if not run.changes and actual is not None:
            logger.debug(f"{task.key} is up to date")
            return TaskStatus.NO_OP

        if validating:
            fields = ", ".join(run.changes.names())
            if task.lifecycle is Lifecycle.EXISTS_AND_VALIDATES:
                raise LifecycleError(
                    task.key,
                    f"changes required but lifecycle is {task.lifecycle.value}: {fields}",
                )
            logger.warning(
                f"{task.key} differs from desired state but lifecycle is "
                f"{task.lifecycle.value}; not applying: {fields}"
            )
            return TaskStatus.NO_OP

        status = TaskStatus.CREATED if actual is None else TaskStatus.UPDATED
        if self.dry_run:
            logger.info(
                f"Would {'create' if actual is None else 'update'} {task.key}: "
                f"{', '.join(run.changes.names())}"
            )
            return status

        pending = run.changes.copy()
        try:
            task.render(self.target, actual, task, pending)
        except CloudupError:
            raise
        except Exception as e:
            raise RenderError(task.key, str(e)) from e

        if pending:
            raise UnappliedChangesError(task.key, pending.names())

        logger.info(f"✓ {'Created' if actual is None else 'Updated'} {task.key}")
        return status

    def _find(self, task: Task) -> Task | None:
        if not self.target.supports_find:
            return None
        try:
            actual = task.find(self.context)
        except CloudupError:
            raise
        except Exception as e:
            raise FindError(task.key, f"error finding resource: {e}") from e
        if actual is task:
            raise FindError(task.key, "find() must return a new instance, not the desired task")
        return actual

    async def _succeed(self, run: _TaskRun, status: TaskStatus, state: _PassState) -> None:
        async with self._lock:
            self._terminate(run, status, None, state)
            for dependent in state.graph.dependents(run.task):
                state.in_degree[id(dependent)] -= 1
                if state.in_degree[id(dependent)] == 0:
                    dependent_run = state.runs[id(dependent)]
                    if not dependent_run.terminal:
                        state.queue.put_nowait(dependent_run)
            self._check_done(state)

    async def _fail(self, run: _TaskRun, error: Exception, state: _PassState) -> None:
        async with self._lock:
            logger.error(f"✗ {run.task.key} failed: {error}")
            self._terminate(run, TaskStatus.FAILED, str(error), state)
            self._block_dependents(run, f"dependency {run.task.key} failed", state)
            self._check_done(state)

    async def _retry_or_fail(
        self, run: _TaskRun, error: TryAgainLaterError, state: _PassState
    ) -> None:
        if run.attempts >= self.max_attempts:
            await self._fail(
                run, RetriesExhaustedError(run.task.key, run.attempts, error), state
            )
            return

        delay = self.backoff(run.attempts)
        run.retry_delays.append(delay)
        logger.warning(
            f"{run.task.key} not ready ({error}); retrying in {delay:.1f}s "
            f"(attempt {run.attempts}/{self.max_attempts})"
        )
        async with self._lock:
            timer = asyncio.create_task(self._requeue_after(run, delay, state))
            state.timers.add(timer)
            timer.add_done_callback(state.timers.discard)

    async def _requeue_after(self, run: _TaskRun, delay: float, state: _PassState) -> None:
        await self._sleep(delay)
        state.queue.put_nowait(run)

    def _terminate(
        self, run: _TaskRun, status: TaskStatus, error: str | None, state: _PassState
    ) -> None:
        run.status = status
        run.error = error
        if run.started is not None:
            run.duration = time.perf_counter() - run.started
        state.remaining -= 1

    def _block_dependents(self, run: _TaskRun, reason: str, state: _PassState) -> None:
        for dependent in state.graph.transitive_dependents(run.task):
            dependent_run = state.runs[id(dependent)]
            if dependent_run.terminal:
                continue
            self._terminate(dependent_run, TaskStatus.BLOCKED, reason, state)
            logger.warning(f"⊘ {dependent.key} blocked: {reason}")

    def _check_done(self, state: _PassState) -> None:
        if state.remaining <= 0:
            state.done.set()
