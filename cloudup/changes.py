"""
Change-set differ - computes what must change to move a resource from its
actual state to its desired state.

A ChangeSet is an ordered list of FieldChange records. Renderers consume it
with take(): every applied change is removed, so whatever is left after a
render is a change that was never applied.
"""

import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

if TYPE_CHECKING:
    from cloudup.tasks.base import Task

logger = logging.getLogger(__name__)


class Unordered:
    """Field marker: compare the field as a multiset, ignoring element order.

    Example:
        subnets: Annotated[list[Subnet] | None, Unordered()] = None
    """

    def __repr__(self) -> str:
        return "Unordered()"


@dataclass
class FieldChange:
    """One field whose desired value differs from the actual value."""

    name: str
    old: Any
    new: Any

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.name,
            "old": _printable(self.old),
            "new": _printable(self.new),
        }


class ChangeSet:
    """Ordered list of pending field changes for one task."""

    def __init__(self, changes: list[FieldChange] | None = None):
        self._changes: list[FieldChange] = list(changes or [])

    def add(self, change: FieldChange) -> None:
        if change.name in self:
            raise ValueError(f"Duplicate change for field '{change.name}'")
        self._changes.append(change)

    def get(self, name: str) -> FieldChange | None:
        """Return the pending change for name without consuming it."""
        for change in self._changes:
            if change.name == name:
                return change
        return None

    def take(self, name: str) -> FieldChange | None:
        """Consume the pending change for name.

        Returns None when the field has no pending change, so renderers can
        write ``if changes.take("min_size"): ...``.
        """
        for index, change in enumerate(self._changes):
            if change.name == name:
                return self._changes.pop(index)
        return None

    def take_all(self) -> list[FieldChange]:
        """Consume every pending change (full-document renderers)."""
        taken, self._changes = self._changes, []
        return taken

    def names(self) -> list[str]:
        return [change.name for change in self._changes]

    def copy(self) -> "ChangeSet":
        return ChangeSet(self._changes)

    def to_list(self) -> list[dict[str, Any]]:
        return [change.to_dict() for change in self._changes]

    def __contains__(self, name: object) -> bool:
        return any(change.name == name for change in self._changes)

    def __iter__(self) -> Iterator[FieldChange]:
        return iter(list(self._changes))

    def __len__(self) -> int:
        return len(self._changes)

    def __bool__(self) -> bool:
        return bool(self._changes)

    def __repr__(self) -> str:
        return f"ChangeSet({self.names()})"


def build_changes(actual: "Task | None", desired: "Task") -> ChangeSet:
    """Compare actual against desired, field by field, in declaration order.

    Rules:
    - an unset (None) desired field is never a change;
    - engine-managed fields (see Task.engine_fields) are never compared;
    - a missing actual makes every set desired field a change;
    - fields marked Unordered compare regardless of element order;
    - task references compare by compare_key(), not by value;
    - map fields carry the complete desired map, not a delta.

    Args:
        actual: State returned by Find, or None when the resource is absent
        desired: The task as declared

    Returns:
        ChangeSet with one FieldChange per differing field
    """
    changes = ChangeSet()
    skip = getattr(type(desired), "engine_fields", frozenset())

    for name, field_info in type(desired).model_fields.items():
        if name in skip:
            continue

        desired_value = getattr(desired, name)
        if desired_value is None:
            continue

        actual_value = getattr(actual, name, None) if actual is not None else None
        unordered = any(isinstance(m, Unordered) for m in field_info.metadata)

        if actual is None or not values_equal(actual_value, desired_value, unordered):
            new_value = dict(desired_value) if isinstance(desired_value, dict) else desired_value
            changes.add(FieldChange(name=name, old=actual_value, new=new_value))
            logger.debug(f"{desired.key}: field '{name}' changed")

    return changes


def values_equal(actual: Any, desired: Any, unordered: bool = False) -> bool:
    """Structural equality used by the differ."""
    left = comparable(actual)
    right = comparable(desired)
    if unordered and isinstance(left, list) and isinstance(right, list):
        return sorted(left, key=_canonical) == sorted(right, key=_canonical)
    return left == right


def comparable(value: Any) -> Any:
    """Reduce a field value to plain data suitable for equality checks."""
    compare_key = getattr(value, "compare_key", None)
    if callable(compare_key):
        return ("ref", compare_key())
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, dict):
        return {key: comparable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [comparable(item) for item in value]
    return value


def _printable(value: Any) -> Any:
    key = getattr(value, "key", None)
    if isinstance(key, str) and callable(getattr(value, "compare_key", None)):
        return key
    if isinstance(value, (list, tuple)):
        return [_printable(item) for item in value]
    if isinstance(value, dict):
        return {k: _printable(v) for k, v in value.items()}
    if isinstance(value, BaseModel):
        return value.model_dump()
    return value


def _canonical(item: Any) -> str:
    # Dict key order must not affect the sort
    return json.dumps(item, sort_keys=True, default=str)
