"""Base target class - the backend a task renders against."""

import logging
from abc import ABC
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cloudup.tasks.base import Task

logger = logging.getLogger(__name__)


class TargetKind(str, Enum):
    """Closed set of execution backends."""
    API = "api"    # Live cloud API mutation
    IAC = "iac"    # Infrastructure-as-code document emission


class Target(ABC):
    """Base target class - every target inherits from this.

    The set of targets is closed: each task supplies one render method per
    TargetKind (``render_api``, ``render_iac``), chosen by ``kind``.

    Attributes:
        kind: Which render method tasks use against this target
        cloud: Provider client handed to tasks (None when rendering offline)
    """

    kind: TargetKind
    cloud: Any = None

    @property
    def supports_find(self) -> bool:
        """Whether actual state is read from the provider before diffing."""
        return True

    def process_deletions(self) -> bool:
        """Whether deletions surfaced by tasks should be executed."""
        return True

    def finish(self, tasks: list["Task"]) -> None:
        """Called once after every task of the pass reached a terminal state."""
        logger.debug(f"{type(self).__name__} finished ({len(tasks)} tasks)")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value})"
