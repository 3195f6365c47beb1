"""Base task class for Cloudup."""

import logging
from collections.abc import Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Self

from pydantic import BaseModel, ConfigDict, PrivateAttr

from cloudup.changes import ChangeSet
from cloudup.errors import ConfigurationError
from cloudup.targets.base import Target, TargetKind
from cloudup.targets.iac import Reference

if TYPE_CHECKING:
    from cloudup.context import CloudupContext
    from cloudup.deletions import Deletion

logger = logging.getLogger(__name__)

# Render method used for each target kind
RENDER_METHODS: dict[TargetKind, str] = {
    TargetKind.API: "render_api",
    TargetKind.IAC: "render_iac",
}


class Lifecycle(str, Enum):
    """How the engine treats differences between actual and desired state."""
    SYNC = "Sync"                                        # Create or update to match
    IGNORE = "Ignore"                                    # Skip the task entirely
    EXISTS_AND_VALIDATES = "ExistsAndValidates"          # Must exist; differences are fatal
    EXISTS_AND_WARN_IF_CHANGES = "ExistsAndWarnIfChanges"  # Must exist; differences are only logged


class Task(BaseModel):
    """Base task class - every resource kind inherits from this.

    A task describes one intended cloud resource. The engine drives each task
    through the same pipeline once per convergence pass:

    1. normalize()      - canonicalise desired state (sort, inherit tags)
    2. find()           - read the actual state, None if absent
    3. check_changes()  - validate required fields for create/update
    4. render()         - apply the ChangeSet against the target

    Desired attributes are plain pydantic fields; None means "unset" and is
    never treated as a change. Dependencies are held as direct references to
    other Task instances (names are only unique per kind), and are discovered
    from field values by get_dependencies().

    Provider-assigned values (IDs, ARNs) are not desired state: find() and
    render() record them with set_output() so dependents can read them.

    Attributes:
        name: Identity of the resource within its kind
        lifecycle: Lifecycle tag, see Lifecycle
        _deletions: Cleanup work discovered during find()
        _outputs: Provider-assigned values recorded during find()/render()

    Example:
        class Bucket(Task):
            iac_type: ClassVar[str] = "aws_s3_bucket"
            versioning: bool | None = None

            def find(self, context):
                found = context.cloud.s3.describe_bucket(self.name)
                if found is None:
                    return None
                return Bucket(name=self.name, lifecycle=self.lifecycle,
                              versioning=found["Versioning"])

            def render_api(self, target, actual, desired, changes):
                ...
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    # Fields the differ never compares
    engine_fields: ClassVar[frozenset[str]] = frozenset({"lifecycle", "name"})
    # Resource type used when rendering to an infrastructure-as-code document
    iac_type: ClassVar[str | None] = None

    name: str
    lifecycle: Lifecycle = Lifecycle.SYNC

    _deletions: list["Deletion"] = PrivateAttr(default_factory=list)
    _outputs: dict[str, Any] = PrivateAttr(default_factory=dict)

    @property
    def kind(self) -> str:
        return type(self).__name__

    @property
    def key(self) -> str:
        """Unique identity within a task set: ``<Kind>/<name>``."""
        return f"{self.kind}/{self.name}"

    def compare_key(self) -> Any:
        """Value used when another task's field referencing this one is diffed.

        Override to compare by provider ID when Find can only reconstruct
        references from IDs.
        """
        return self.key

    def get_dependencies(self, tasks: Mapping[str, "Task"]) -> list["Task"]:
        """Return the tasks that must render before this one.

        The default walks every field and returns each referenced Task,
        including tasks inside lists and dict values.

        Args:
            tasks: Every task of the pass, keyed by task key
        """
        dependencies: list[Task] = []
        for field_name in type(self).model_fields:
            _collect_tasks(getattr(self, field_name), dependencies)
        return dependencies

    def normalize(self, context: "CloudupContext") -> None:
        """Canonicalise desired state before diffing. Optional."""

    def find(self, context: "CloudupContext") -> Self | None:
        """Return the actual state of this resource, or None if it is absent."""
        raise NotImplementedError(f"{self.kind} must implement find()")

    def check_changes(
        self, actual: Self | None, desired: Self, changes: ChangeSet
    ) -> None:
        """Validate desired state; raise RequiredFieldError for missing fields."""

    def render(
        self,
        target: Target,
        actual: Self | None,
        desired: Self,
        changes: ChangeSet,
    ) -> None:
        """Dispatch to the render method for the target's kind."""
        method = getattr(self, RENDER_METHODS[target.kind])
        method(target, actual, desired, changes)

    def render_api(
        self, target: Target, actual: Self | None, desired: Self, changes: ChangeSet
    ) -> None:
        raise NotImplementedError(f"{self.kind} does not implement render_api()")

    def render_iac(
        self, target: Target, actual: Self | None, desired: Self, changes: ChangeSet
    ) -> None:
        raise NotImplementedError(f"{self.kind} does not implement render_iac()")

    @classmethod
    def supports(cls, kind: TargetKind) -> bool:
        """Whether this task class implements the render method for kind."""
        method_name = RENDER_METHODS[kind]
        return getattr(cls, method_name) is not getattr(Task, method_name)

    def add_deletion(self, deletion: "Deletion") -> None:
        """Record cleanup work discovered while finding this resource."""
        self._deletions.append(deletion)

    def find_deletions(self, context: "CloudupContext") -> list["Deletion"]:
        """Return cleanup work surfaced during find()."""
        return list(self._deletions)

    def set_output(self, key: str, value: Any) -> None:
        self._outputs[key] = value

    def output(self, key: str, default: Any = None) -> Any:
        return self._outputs.get(key, default)

    def reference(self, attribute: str = "id") -> Reference:
        """Symbolic reference to this resource for infrastructure-as-code output."""
        if self.iac_type is None:
            raise ConfigurationError(f"{self.kind} cannot be referenced in documents")
        return Reference(type=self.iac_type, name=self.name, attribute=attribute)

    def __repr__(self) -> str:
        return f"{self.kind}(name={self.name!r})"


def _collect_tasks(value: Any, found: list[Task]) -> None:
    if isinstance(value, Task):
        if not any(value is existing for existing in found):
            found.append(value)
    elif isinstance(value, (list, tuple, set)):
        for item in value:
            _collect_tasks(item, found)
    elif isinstance(value, dict):
        for item in value.values():
            _collect_tasks(item, found)
