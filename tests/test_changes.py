"""Tests for the change-set differ."""

from typing import Annotated

import pytest

from cloudup.changes import ChangeSet, FieldChange, Unordered, build_changes, values_equal
from cloudup.tasks.base import Lifecycle, Task


class Widget(Task):
    size: int | None = None
    zones: Annotated[list[str] | None, Unordered()] = None
    ordered: list[str] | None = None
    labels: dict[str, str] | None = None
    parent: Task | None = None


class TestBuildChanges:
    """Field-by-field comparison of actual and desired state."""

    def test_missing_actual_makes_every_set_field_a_change(self):
        desired = Widget(name="w", size=3, labels={"a": "1"})
        changes = build_changes(None, desired)

        assert changes.names() == ["size", "labels"]
        assert changes.get("size").old is None
        assert changes.get("size").new == 3

    def test_unset_desired_fields_are_ignored(self):
        actual = Widget(name="w", size=3, ordered=["x"])
        desired = Widget(name="w", size=3)

        assert not build_changes(actual, desired)

    def test_name_is_never_diffed(self):
        assert build_changes(None, Widget(name="w", size=1)).names() == ["size"]
        assert not build_changes(None, Widget(name="w"))

    def test_lifecycle_is_never_diffed(self):
        actual = Widget(name="w", size=1, lifecycle=Lifecycle.SYNC)
        desired = Widget(name="w", size=1, lifecycle=Lifecycle.EXISTS_AND_VALIDATES)

        assert build_changes(actual, desired).names() == []

    def test_unordered_fields_ignore_element_order(self):
        actual = Widget(name="w", zones=["b", "a"], ordered=["b", "a"])
        desired = Widget(name="w", zones=["a", "b"], ordered=["a", "b"])

        assert build_changes(actual, desired).names() == ["ordered"]

    def test_unordered_fields_compare_as_multisets(self):
        actual = Widget(name="w", zones=["a", "a", "b"])
        desired = Widget(name="w", zones=["a", "b", "b"])

        assert build_changes(actual, desired).names() == ["zones"]

    def test_changes_follow_field_declaration_order(self):
        desired = Widget(name="w", labels={"k": "v"}, size=1, zones=["a"])
        assert build_changes(None, desired).names() == ["size", "zones", "labels"]

    def test_map_change_carries_complete_desired_map(self):
        actual = Widget(name="w", labels={"a": "1", "b": "2"})
        desired = Widget(name="w", labels={"a": "1", "b": "3", "c": "4"})

        change = build_changes(actual, desired).get("labels")
        assert change.new == {"a": "1", "b": "3", "c": "4"}
        assert change.old == {"a": "1", "b": "2"}

    def test_task_references_compare_by_key(self):
        parent = Widget(name="parent", size=10)
        other_copy = Widget(name="parent", size=99)

        actual = Widget(name="w", parent=other_copy)
        desired = Widget(name="w", parent=parent)

        assert not build_changes(actual, desired)

    def test_different_task_references_are_a_change(self):
        actual = Widget(name="w", parent=Widget(name="old"))
        desired = Widget(name="w", parent=Widget(name="new"))

        assert build_changes(actual, desired).names() == ["parent"]

    def test_identical_state_produces_empty_changeset(self):
        actual = Widget(name="w", size=2, zones=["a"], labels={"x": "y"})
        desired = Widget(name="w", size=2, zones=["a"], labels={"x": "y"})

        changes = build_changes(actual, desired)
        assert len(changes) == 0
        assert not changes


class TestChangeSet:
    """Consumption semantics used by renderers."""

    def test_take_removes_the_change(self):
        changes = ChangeSet([FieldChange("a", 1, 2), FieldChange("b", 1, 2)])

        assert changes.take("a").new == 2
        assert changes.names() == ["b"]
        assert changes.take("a") is None

    def test_take_all_empties_the_set(self):
        changes = ChangeSet([FieldChange("a", 1, 2)])
        taken = changes.take_all()

        assert [c.name for c in taken] == ["a"]
        assert not changes

    def test_copy_is_independent(self):
        changes = ChangeSet([FieldChange("a", 1, 2)])
        copied = changes.copy()
        copied.take("a")

        assert "a" in changes
        assert "a" not in copied

    def test_duplicate_field_is_rejected(self):
        changes = ChangeSet([FieldChange("a", 1, 2)])
        with pytest.raises(ValueError):
            changes.add(FieldChange("a", 2, 3))

    def test_to_list_prints_task_references_by_key(self):
        parent = Widget(name="p")
        changes = ChangeSet([FieldChange("parent", None, parent)])

        assert changes.to_list() == [{"field": "parent", "old": None, "new": "Widget/p"}]


def test_values_equal_handles_nested_structures():
    assert values_equal({"a": [1, 2]}, {"a": [1, 2]})
    assert not values_equal({"a": [1, 2]}, {"a": [2, 1]})
    assert values_equal([2, 1], [1, 2], unordered=True)


def test_unordered_lists_of_dicts_ignore_key_order():
    actual = [{"port": 80, "protocol": "TCP"}, {"name": "zone"}]
    desired = [{"name": "zone"}, {"protocol": "TCP", "port": 80}]

    assert values_equal(actual, desired, unordered=True)
    assert not values_equal(actual, [{"name": "zone"}, {"protocol": "UDP", "port": 80}], unordered=True)
