"""Tests for the dependency graph builder.

Covers:
- Dependency discovery from task fields (direct, lists, dict values)
- Cycle detection with full cycle path
- Duplicate tasks and dependencies outside the task set
- Topological ordering and transitive dependents
"""

import pytest

from cloudup.errors import ConfigurationError, DependencyCycleError
from cloudup.graph import DependencyGraph, index_tasks
from cloudup.tasks.base import Task


class Node(Task):
    after: list[Task] | None = None
    by_role: dict[str, Task] | None = None
    single: Task | None = None


def keys(tasks):
    return [task.key for task in tasks]


class TestDependencyDiscovery:
    """Tests for Task.get_dependencies and graph edges."""

    def test_dependencies_from_lists_dicts_and_fields(self):
        a = Node(name="a")
        b = Node(name="b")
        c = Node(name="c")
        top = Node(name="top", after=[a], by_role={"x": b}, single=c)

        graph = DependencyGraph.build([top, a, b, c])

        assert keys(graph.dependencies(top)) == ["Node/a", "Node/b", "Node/c"]
        assert keys(graph.dependents(a)) == ["Node/top"]

    def test_repeated_reference_is_a_single_edge(self):
        a = Node(name="a")
        top = Node(name="top", after=[a, a], single=a)

        graph = DependencyGraph.build([top, a])
        assert graph.in_degrees()[id(top)] == 1

    def test_same_name_different_kind_are_distinct(self):
        class Other(Task):
            pass

        node = Node(name="shared")
        other = Other(name="shared")

        graph = DependencyGraph.build([node, other])
        assert len(graph) == 2

    def test_same_instance_listed_twice_is_deduplicated(self):
        a = Node(name="a")
        graph = DependencyGraph.build([a, a])
        assert len(graph) == 1


class TestValidation:
    """Tests for configuration errors detected before any task runs."""

    def test_cycle_is_detected_with_path(self):
        a = Node(name="a")
        b = Node(name="b", after=[a])
        c = Node(name="c", after=[b])
        a.after = [c]

        with pytest.raises(DependencyCycleError) as exc_info:
            DependencyGraph.build([a, b, c])

        path = exc_info.value.path
        assert path[0] == path[-1]
        assert set(path) == {"Node/a", "Node/b", "Node/c"}
        assert "Dependency cycle detected" in str(exc_info.value)

    def test_self_dependency_is_a_cycle(self):
        a = Node(name="a")
        a.single = a

        with pytest.raises(DependencyCycleError) as exc_info:
            DependencyGraph.build([a])
        assert exc_info.value.path == ["Node/a", "Node/a"]

    def test_duplicate_task_key_is_rejected(self):
        with pytest.raises(ConfigurationError, match="Duplicate task: Node/a"):
            DependencyGraph.build([Node(name="a"), Node(name="a")])

    def test_dependency_outside_task_set_is_rejected(self):
        outside = Node(name="outside")
        inside = Node(name="inside", single=outside)

        with pytest.raises(ConfigurationError, match="not in the task set"):
            DependencyGraph.build([inside])

    def test_index_tasks_allows_same_instance(self):
        a = Node(name="a")
        assert index_tasks([a, a]) == {"Node/a": a}


class TestOrdering:
    """Tests for topological order and reachability helpers."""

    def test_topological_order_puts_dependencies_first(self):
        c = Node(name="c")
        b = Node(name="b", after=[c])
        a = Node(name="a", after=[b])

        graph = DependencyGraph.build([a, b, c])
        assert keys(graph.topological_order()) == ["Node/c", "Node/b", "Node/a"]

    def test_roots_have_no_dependencies(self):
        c = Node(name="c")
        b = Node(name="b", after=[c])
        d = Node(name="d")

        graph = DependencyGraph.build([b, c, d])
        assert keys(graph.roots()) == ["Node/c", "Node/d"]

    def test_transitive_dependents(self):
        base = Node(name="base")
        mid = Node(name="mid", after=[base])
        leaf = Node(name="leaf", after=[mid])
        unrelated = Node(name="unrelated")

        graph = DependencyGraph.build([base, mid, leaf, unrelated])
        assert set(keys(graph.transitive_dependents(base))) == {"Node/mid", "Node/leaf"}
        assert graph.transitive_dependents(unrelated) == []
