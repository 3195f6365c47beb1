"""
Cloudup Core - task-based reconciliation of cloud infrastructure.

Apply Pipeline: Load tasks → Build graph → Converge against the live API
Render Pipeline: Load tasks → Build graph → Emit an infrastructure-as-code document
Graph Pipeline: Load tasks → Build graph
"""

import importlib.util
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .context import CloudupContext
from .errors import ConfigurationError
from .executor import Executor
from .graph import DependencyGraph
from .report import ConvergenceReport
from .settings import get_settings
from .targets import APITarget, IaCTarget, TerraformJsonSink
from .tasks.base import Task

logger = logging.getLogger(__name__)


@dataclass
class DesiredState:
    """Everything a desired-state module declares.

    Attributes:
        tasks: Every task of the pass, including tasks only reachable through references
        cloud: Provider client for the API target (module global ``cloud``)
        cluster_tags: Tags inherited by taggable tasks (module global ``cluster_tags``)
    """

    tasks: list[Task]
    cloud: Any = None
    cluster_tags: dict[str, str] = field(default_factory=dict)


class CloudupCore:
    """Main coordinator for the Cloudup pipeline."""

    def __init__(
        self,
        max_concurrency: int | None = None,
        max_attempts: int | None = None,
    ):
        """
        Initialize CloudupCore.

        Args:
            max_concurrency: Worker count (overrides settings/.env)
            max_attempts: Attempts per task for transient errors (overrides settings/.env)
        """
        settings = get_settings()

        self.max_concurrency = max_concurrency or settings.max_concurrency
        self.max_attempts = max_attempts or settings.max_attempts

        logger.info("CloudupCore initialized")

    async def apply(
        self, main_file: Path, dry_run: bool = False, cloud: Any = None
    ) -> ConvergenceReport:
        """
        Full pipeline: load → graph → converge against the live API.

        Args:
            main_file: Python file declaring the desired state
            dry_run: If True, only compute and report changes
            cloud: Provider client (overrides the module's ``cloud`` global)

        Returns:
            ConvergenceReport of the pass
        """
        logger.info(f"Starting Cloudup apply pipeline for: {main_file}")

        state = self.load(main_file)
        cloud = cloud if cloud is not None else state.cloud
        if cloud is None:
            raise ConfigurationError(
                f"{main_file} does not define a 'cloud' provider client"
            )

        context = CloudupContext(target=APITarget(cloud), cluster_tags=state.cluster_tags)
        report = await self._executor(context, dry_run=dry_run).run(state.tasks)

        logger.info("Cloudup apply pipeline complete")
        return report

    async def plan(self, main_file: Path, cloud: Any = None) -> ConvergenceReport:
        """Plan mode: find and diff every task without rendering."""
        return await self.apply(main_file, dry_run=True, cloud=cloud)

    async def render(
        self, main_file: Path, output: Path | None = None
    ) -> ConvergenceReport:
        """
        Render pipeline: load → graph → emit a Terraform JSON document.

        Args:
            main_file: Python file declaring the desired state
            output: Destination file (defaults to settings.iac_output)

        Returns:
            ConvergenceReport of the pass
        """
        logger.info(f"Starting Cloudup render pipeline for: {main_file}")

        state = self.load(main_file)
        output = output or Path(get_settings().iac_output)
        target = IaCTarget(sink=TerraformJsonSink(output))

        context = CloudupContext(target=target, cluster_tags=state.cluster_tags)
        report = await self._executor(context).run(state.tasks)

        logger.info("Cloudup render pipeline complete")
        return report

    def graph(self, main_file: Path) -> DependencyGraph:
        """Load the desired state and return its dependency graph."""
        return DependencyGraph.build(self.load(main_file).tasks)

    def _executor(self, context: CloudupContext, dry_run: bool = False) -> Executor:
        return Executor(
            context,
            max_concurrency=self.max_concurrency,
            max_attempts=self.max_attempts,
            dry_run=dry_run,
        )

    def load(self, main_file: Path) -> DesiredState:
        """
        Load the desired state from a Python file by executing it.

        Module-level Task instances (also inside lists, tuples and dicts) are
        the desired state; tasks they reference are added automatically.

        Args:
            main_file: Path to the desired-state module

        Returns:
            DesiredState

        Raises:
            FileNotFoundError: If main_file does not exist
            ImportError: If the file cannot be loaded as a module
            ConfigurationError: If the module declares no tasks
        """
        if not main_file.exists():
            raise FileNotFoundError(f"File not found: {main_file}")

        # Load the module dynamically
        spec = importlib.util.spec_from_file_location("cloudup_desired_state", main_file)
        if spec is None or spec.loader is None:
            raise ImportError(f"Could not load {main_file}")

        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)

        declared: list[Task] = []
        for name, obj in vars(module).items():
            if name.startswith("_"):
                continue
            for task in _tasks_in(obj):
                declared.append(task)
                logger.debug(f"Found task: {name} ({task.key})")

        if not declared:
            raise ConfigurationError(f"No tasks found in {main_file}")

        tasks = self._flatten_tasks(declared)
        logger.info(f"Loaded {len(tasks)} tasks ({len(declared)} declared)")

        return DesiredState(
            tasks=tasks,
            cloud=getattr(module, "cloud", None),
            cluster_tags=dict(getattr(module, "cluster_tags", None) or {}),
        )

    def _flatten_tasks(self, tasks: list[Task]) -> list[Task]:
        """Add every task reachable through references, keeping declaration order.

        Example:
            # Given: asg references subnet_a and template, only asg is declared
            # Returns: [asg, subnet_a, template]
        """
        seen: set[int] = set()
        flattened: list[Task] = []
        pending = list(tasks)
        by_key = {task.key: task for task in tasks}

        while pending:
            task = pending.pop(0)
            if id(task) in seen:
                continue
            seen.add(id(task))
            flattened.append(task)
            for dependency in task.get_dependencies(by_key):
                if id(dependency) not in seen:
                    logger.debug(f"Adding referenced task {dependency.key}")
                    pending.append(dependency)

        return flattened


def _tasks_in(value: Any) -> list[Task]:
    if isinstance(value, Task):
        return [value]
    if isinstance(value, (list, tuple)):
        return [item for item in value if isinstance(item, Task)]
    if isinstance(value, dict):
        return [item for item in value.values() if isinstance(item, Task)]
    return []
