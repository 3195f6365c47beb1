"""Convergence report - per-task outcome of one pass."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from cloudup.deletions import DeletionResult


class TaskStatus(str, Enum):
    """Terminal state of a task after a pass."""
    NO_OP = "no-op"        # Nothing to change (or lifecycle says leave it alone)
    CREATED = "created"    # Resource did not exist and was rendered
    UPDATED = "updated"    # Resource existed and changes were rendered
    FAILED = "failed"      # Fatal error for this task
    BLOCKED = "blocked"    # Never attempted: a dependency failed or the pass was cancelled


@dataclass
class TaskResult:
    """Outcome of one task."""

    key: str
    kind: str
    name: str
    status: TaskStatus
    changes: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None
    attempts: int = 0
    retry_delays: list[float] = field(default_factory=list)
    duration: float = 0.0

    def is_success(self) -> bool:
        return self.status not in (TaskStatus.FAILED, TaskStatus.BLOCKED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind,
            "name": self.name,
            "status": self.status.value,
            "changes": self.changes,
            "error": self.error,
            "attempts": self.attempts,
            "retry_delays": self.retry_delays,
            "duration": self.duration,
        }


@dataclass
class ConvergenceReport:
    """Everything the caller needs for display and exit status.

    Attributes:
        target: Kind of target the pass rendered against
        dry_run: True when changes were computed but not rendered
        results: One TaskResult per task, in dependency order
        deletions: One DeletionResult per deletion that ran
    """

    target: str
    dry_run: bool = False
    results: list[TaskResult] = field(default_factory=list)
    deletions: list[DeletionResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """False if any task failed or was blocked. Deletion failures do not count."""
        return all(result.is_success() for result in self.results)

    @property
    def errors(self) -> list[str]:
        """Unresolved errors of failed and blocked tasks."""
        return [
            f"{result.key}: {result.error}"
            for result in self.results
            if not result.is_success() and result.error
        ]

    @property
    def deletion_errors(self) -> list[str]:
        return [
            f"{result.task_name}/{result.item}: {result.error}"
            for result in self.deletions
            if not result.success
        ]

    def result_for(self, key: str) -> TaskResult | None:
        for result in self.results:
            if result.key == key:
                return result
        return None

    def by_status(self, status: TaskStatus) -> list[TaskResult]:
        return [result for result in self.results if result.status == status]

    def summary(self) -> dict[str, int]:
        """Count of tasks per status."""
        counts = {status.value: 0 for status in TaskStatus}
        for result in self.results:
            counts[result.status.value] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "dry_run": self.dry_run,
            "success": self.success,
            "summary": self.summary(),
            "results": [result.to_dict() for result in self.results],
            "deletions": [result.to_dict() for result in self.deletions],
            "errors": self.errors,
            "deletion_errors": self.deletion_errors,
        }
