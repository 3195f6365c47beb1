"""
Cloudup - task-based reconciliation of cloud infrastructure.

Every infrastructure object is a typed task with a uniform lifecycle
(normalize → find → check changes → render). Cloudup builds the dependency
graph between tasks, executes it with bounded concurrency and renders each
task either against the live cloud API or into an infrastructure-as-code
document.

Passes are idempotent: converging twice against an unchanged world reports
no changes the second time.
"""

from .context import CloudupContext
from .core import CloudupCore
from .executor import Executor
from .graph import DependencyGraph
from .report import ConvergenceReport, TaskResult, TaskStatus
from .settings import CloudupSettings, get_settings, reload_settings
from .tasks import Lifecycle, Task

__version__ = "0.1.0"
__all__ = [
    "CloudupContext",
    "CloudupCore",
    "CloudupSettings",
    "ConvergenceReport",
    "DependencyGraph",
    "Executor",
    "Lifecycle",
    "Task",
    "TaskResult",
    "TaskStatus",
    "get_settings",
    "reload_settings",
]
