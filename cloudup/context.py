"""Execution context handed to every task during a convergence pass."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cloudup.targets.base import Target
    from cloudup.tasks.base import Task


@dataclass
class CloudupContext:
    """State shared by the tasks of one pass.

    Attributes:
        target: Backend the pass renders against
        cluster_tags: Tags every taggable resource inherits during normalize()
        tasks: All tasks of the pass, keyed by task key (filled in by the executor)
    """

    target: "Target"
    cluster_tags: dict[str, str] = field(default_factory=dict)
    tasks: dict[str, "Task"] = field(default_factory=dict)

    @property
    def cloud(self) -> Any:
        """Provider client of the target (None for offline targets)."""
        return self.target.cloud
