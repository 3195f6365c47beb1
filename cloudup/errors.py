"""
Cloudup errors - configuration, transient, task and deletion failures.
"""

from typing import Any


class CloudupError(Exception):
    """Base exception for all Cloudup errors."""
    pass


class ConfigurationError(CloudupError):
    """Errors in the declared task set, detected before any mutation."""
    pass


class DependencyCycleError(ConfigurationError):
    """The task dependency graph contains a cycle."""

    def __init__(self, path: list[str]):
        self.path = path
        super().__init__(f"Dependency cycle detected: {' → '.join(path)}")


class RequiredFieldError(ConfigurationError):
    """A field needed to create or update a resource is unset."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Field is required: {field}")


class ImmutableFieldError(ConfigurationError):
    """A field that cannot be changed on an existing resource differs."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Field cannot be changed: {field}")


class UnsupportedTargetError(ConfigurationError):
    """One or more tasks cannot render against the selected target."""

    def __init__(self, target_kind: str, task_keys: list[str]):
        self.target_kind = target_kind
        self.task_keys = task_keys
        super().__init__(
            f"Tasks do not support the {target_kind} target: {', '.join(task_keys)}"
        )


class TryAgainLaterError(CloudupError):
    """Transient condition; the task should be retried after a delay.

    Raised for eventual-consistency races, e.g. an IAM principal that is not yet
    visible to a dependent API.
    """
    pass


class TaskError(CloudupError):
    """A failure attributed to one task."""

    def __init__(self, task_key: str, message: str):
        self.task_key = task_key
        super().__init__(f"{task_key}: {message}")


class FindError(TaskError):
    """Querying the provider for the actual state failed."""
    pass


class RenderError(TaskError):
    """The provider rejected a create or update."""
    pass


class LifecycleError(TaskError):
    """The observed state violates the task's lifecycle."""
    pass


class UnappliedChangesError(TaskError):
    """Render returned while changes were still pending."""

    def __init__(self, task_key: str, fields: list[str]):
        self.fields = fields
        super().__init__(task_key, f"render did not apply changes: {', '.join(fields)}")


class RetriesExhaustedError(TaskError):
    """A transient error persisted past the attempt budget."""

    def __init__(self, task_key: str, attempts: int, last_error: Any):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            task_key, f"still failing after {attempts} attempts: {last_error}"
        )


class DeletionError(CloudupError):
    """A deferred cleanup operation failed."""
    pass
