"""
Deletions - deferred, best-effort cleanup operations surfaced by tasks.

Tasks discover cleanup work during Find (e.g. a target group still attached to
an autoscaling group although it is no longer desired) and expose it through
find_deletions(). Deletions sit outside the dependency graph: they run in a
second pass after every primary task reached a terminal state, and their
failures never fail the pass.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cloudup.context import CloudupContext
    from cloudup.targets.base import Target
    from cloudup.tasks.base import Task

logger = logging.getLogger(__name__)


class Deletion(ABC):
    """One idempotent cleanup action.

    Attributes:
        task_name: Kind of thing being cleaned up (shown to the operator)
        item: Human-readable identifier of the object being removed
        defer: True when the deletion must run after all primary tasks
    """

    task_name: str = "deletion"
    defer: bool = True

    @property
    @abstractmethod
    def item(self) -> str:
        """Identifier of the object this deletion removes."""

    @abstractmethod
    def delete(self, target: "Target") -> None:
        """Perform the cleanup. Must be safe to run more than once."""

    @property
    def key(self) -> str:
        return f"{self.task_name}/{self.item}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.key})"


@dataclass
class DeletionResult:
    """Outcome of one deletion."""

    task_name: str
    item: str
    deferred: bool
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_name": self.task_name,
            "item": self.item,
            "deferred": self.deferred,
            "success": self.success,
            "error": self.error,
        }


class DeletionCollector:
    """Gathers deletions from tasks and runs them after the primary pass."""

    def __init__(self):
        self._deletions: list[Deletion] = []
        self._seen: set[str] = set()

    def add(self, deletion: Deletion) -> bool:
        """Add a deletion; duplicates (same key) are ignored."""
        if deletion.key in self._seen:
            logger.debug(f"Skipping duplicate deletion {deletion.key}")
            return False
        self._seen.add(deletion.key)
        self._deletions.append(deletion)
        return True

    def collect(self, task: "Task", context: "CloudupContext") -> int:
        """Ask a task for its deletions; returns how many were added."""
        added = 0
        for deletion in task.find_deletions(context):
            if self.add(deletion):
                added += 1
        if added:
            logger.info(f"{task.key} surfaced {added} deletion(s)")
        return added

    @property
    def deletions(self) -> list[Deletion]:
        return list(self._deletions)

    def __len__(self) -> int:
        return len(self._deletions)

    async def run(self, target: "Target", concurrency: int = 10) -> list[DeletionResult]:
        """Run all deletions: immediate ones first, then deferred ones.

        Deletions inside each group run concurrently with no ordering
        guarantee. Failures are recorded in the results, never raised.
        """
        semaphore = asyncio.Semaphore(max(1, concurrency))
        results: list[DeletionResult] = []

        for deferred in (False, True):
            group = [d for d in self._deletions if d.defer is deferred]
            if not group:
                continue
            logger.info(
                f"Running {len(group)} {'deferred' if deferred else 'immediate'} deletion(s)"
            )
            results.extend(
                await asyncio.gather(
                    *(self._run_one(deletion, target, semaphore) for deletion in group)
                )
            )

        return results

    async def _run_one(
        self, deletion: Deletion, target: "Target", semaphore: asyncio.Semaphore
    ) -> DeletionResult:
        result = DeletionResult(
            task_name=deletion.task_name, item=deletion.item, deferred=deletion.defer
        )
        async with semaphore:
            try:
                await asyncio.to_thread(deletion.delete, target)
                logger.info(f"  ✓ Deleted {deletion.key}")
            except Exception as e:
                result.error = str(e)
                logger.error(f"  ✗ Deletion {deletion.key} failed: {e}")
        return result
