"""
Dependency graph builder for a set of tasks.

Nodes are keyed by object identity, never by name: two tasks of different
kinds may share a name.
"""

import logging
from collections.abc import Iterable

from cloudup.errors import ConfigurationError, DependencyCycleError
from cloudup.tasks.base import Task

logger = logging.getLogger(__name__)


class DependencyGraph:
    """Directed acyclic graph of tasks (edge: dependency → dependent).

    Build it with DependencyGraph.build(); construction fails with
    DependencyCycleError if the declared dependencies contain a cycle.
    """

    def __init__(self, tasks: list[Task], dependencies: dict[int, list[Task]]):
        self._tasks = tasks
        self._dependencies = dependencies
        self._dependents: dict[int, list[Task]] = {id(task): [] for task in tasks}
        for task in tasks:
            for dependency in dependencies[id(task)]:
                self._dependents[id(dependency)].append(task)

    @classmethod
    def build(cls, tasks: Iterable[Task]) -> "DependencyGraph":
        """Build the graph from each task's get_dependencies().

        Args:
            tasks: The full set of constructed tasks

        Returns:
            DependencyGraph

        Raises:
            ConfigurationError: On duplicate task keys or dependencies outside the set
            DependencyCycleError: If the dependencies contain a cycle

        Example:
            # Given: asg depends on subnet and launch_template
            graph = DependencyGraph.build([asg, subnet, launch_template])
            graph.dependencies(asg)   # [subnet, launch_template]
        """
        unique: dict[int, Task] = {}
        for task in tasks:
            unique.setdefault(id(task), task)
        tasks = list(unique.values())
        by_key = index_tasks(tasks)
        members = {id(task) for task in tasks}

        dependencies: dict[int, list[Task]] = {}
        for task in tasks:
            deps: list[Task] = []
            for dependency in task.get_dependencies(by_key):
                if dependency is task:
                    raise DependencyCycleError([task.key, task.key])
                if id(dependency) not in members:
                    raise ConfigurationError(
                        f"{task.key} depends on {dependency.key}, which is not in the task set"
                    )
                if not any(dependency is existing for existing in deps):
                    deps.append(dependency)
            dependencies[id(task)] = deps
            logger.debug(f"{task.key} depends on {[d.key for d in deps]}")

        graph = cls(tasks, dependencies)
        graph._check_cycles()
        logger.info(f"Built dependency graph with {len(tasks)} tasks")
        return graph

    def _check_cycles(self) -> None:
        """Detect cycles with a depth-first traversal.

        Raises:
            DependencyCycleError: With the full path of the first cycle found
        """
        visited: set[int] = set()
        rec_stack: set[int] = set()

        def detect_cycle_dfs(task: Task, path: list[str]) -> None:
            visited.add(id(task))
            rec_stack.add(id(task))
            path.append(task.key)

            for dependency in self._dependencies[id(task)]:
                if id(dependency) not in visited:
                    detect_cycle_dfs(dependency, path)
                elif id(dependency) in rec_stack:
                    start = path.index(dependency.key)
                    raise DependencyCycleError(path[start:] + [dependency.key])

            rec_stack.remove(id(task))
            path.pop()

        for task in self._tasks:
            if id(task) not in visited:
                detect_cycle_dfs(task, [])

        logger.debug("No dependency cycles detected")

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks)

    def dependencies(self, task: Task) -> list[Task]:
        """Direct predecessors of task."""
        return list(self._dependencies[id(task)])

    def dependents(self, task: Task) -> list[Task]:
        """Direct successors of task."""
        return list(self._dependents[id(task)])

    def in_degrees(self) -> dict[int, int]:
        """Number of direct dependencies per task, keyed by id(task)."""
        return {id(task): len(self._dependencies[id(task)]) for task in self._tasks}

    def roots(self) -> list[Task]:
        """Tasks without dependencies."""
        return [task for task in self._tasks if not self._dependencies[id(task)]]

    def transitive_dependents(self, task: Task) -> list[Task]:
        """Every task that directly or indirectly depends on task."""
        result: list[Task] = []
        seen: set[int] = set()
        stack = list(self._dependents[id(task)])
        while stack:
            current = stack.pop()
            if id(current) in seen:
                continue
            seen.add(id(current))
            result.append(current)
            stack.extend(self._dependents[id(current)])
        return result

    def topological_order(self) -> list[Task]:
        """Tasks ordered so that dependencies come first.

        Example:
            # Given: A depends on B, B depends on C
            # Returns: [C, B, A]
        """
        visited: set[int] = set()
        result: list[Task] = []

        def topological_dfs(task: Task) -> None:
            visited.add(id(task))
            for dependency in self._dependencies[id(task)]:
                if id(dependency) not in visited:
                    topological_dfs(dependency)
            result.append(task)

        for task in self._tasks:
            if id(task) not in visited:
                topological_dfs(task)

        return result

    def __len__(self) -> int:
        return len(self._tasks)


def index_tasks(tasks: Iterable[Task]) -> dict[str, Task]:
    """Key tasks by task key, rejecting duplicates.

    Raises:
        ConfigurationError: If two tasks share kind and name
    """
    by_key: dict[str, Task] = {}
    for task in tasks:
        existing = by_key.get(task.key)
        if existing is not None and existing is not task:
            raise ConfigurationError(f"Duplicate task: {task.key}")
        by_key[task.key] = task
    return by_key
