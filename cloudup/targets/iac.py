"""
Infrastructure-as-code target - renders tasks into a declarative resource
document instead of calling a live API.

Find is never called against this target: actual state is always treated as
absent, so every task is emitted exactly once, in dependency order. Applying
the document against the live world happens later, outside this engine.
"""

import logging
import re
import threading
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from cloudup.errors import ConfigurationError

from .base import Target, TargetKind

if TYPE_CHECKING:
    from cloudup.tasks.base import Task

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_name(name: str) -> str:
    """Make a resource name safe for use as a document key."""
    return _UNSAFE_NAME_CHARS.sub("-", name)


class Reference(BaseModel):
    """Symbolic reference to an attribute of another emitted resource.

    Example:
        >>> str(Reference(type="aws_subnet", name="us-east-1a", attribute="id"))
        '${aws_subnet.us-east-1a.id}'
    """

    model_config = ConfigDict(frozen=True)

    type: str
    name: str
    attribute: str = "id"

    def __str__(self) -> str:
        return f"${{{self.type}.{sanitize_name(self.name)}.{self.attribute}}}"


class ResourceRecord(BaseModel):
    """One emitted resource: type, name and attribute map."""

    type: str
    name: str
    attributes: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.type}.{sanitize_name(self.name)}"


class ResourceDocument(BaseModel):
    """Ordered resource records plus a flat output-variable registry."""

    records: list[ResourceRecord] = Field(default_factory=list)
    outputs: dict[str, Any] = Field(default_factory=dict)

    def find(self, resource_type: str, name: str) -> ResourceRecord | None:
        for record in self.records:
            if record.type == resource_type and record.name == name:
                return record
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "records": [
                {
                    "type": record.type,
                    "name": record.name,
                    "attributes": _plain(record.attributes),
                }
                for record in self.records
            ],
            "outputs": _plain(self.outputs),
        }


class ResourceSink(Protocol):
    """Consumer of a finished document (file writer, uploader, ...)."""

    def write(self, document: ResourceDocument) -> None: ...


class IaCTarget(Target):
    """Target that accumulates a ResourceDocument.

    Renders run concurrently in worker threads; every document mutation is
    serialised by an internal lock.

    Args:
        sink: Optional sink receiving the document when the pass finishes
    """

    kind = TargetKind.IAC

    def __init__(self, sink: ResourceSink | None = None):
        self.cloud = None
        self.sink = sink
        self.document = ResourceDocument()
        self._lock = threading.Lock()

    @property
    def supports_find(self) -> bool:
        return False

    def process_deletions(self) -> bool:
        return False

    def render_resource(
        self, resource_type: str, name: str, attributes: dict[str, Any]
    ) -> ResourceRecord:
        """Append a resource record; each (type, name) may be emitted once.

        Attributes whose value is None are dropped.

        Raises:
            ConfigurationError: If the resource was already emitted
        """
        record = ResourceRecord(
            type=resource_type,
            name=name,
            attributes={k: v for k, v in attributes.items() if v is not None},
        )
        with self._lock:
            if self.document.find(resource_type, name) is not None:
                raise ConfigurationError(
                    f"Resource {record.key} was emitted more than once"
                )
            self.document.records.append(record)

        logger.debug(f"Emitted {record.key}")
        return record

    def add_output_variable(self, name: str, value: Any) -> None:
        """Register a single-valued output; re-registering must not conflict."""
        with self._lock:
            existing = self.document.outputs.get(name)
            if existing is not None and existing != value:
                raise ConfigurationError(
                    f"Conflicting values for output variable '{name}'"
                )
            self.document.outputs[name] = value

    def add_output_variable_array(self, name: str, value: Any) -> None:
        """Append value to a list-valued output, skipping duplicates."""
        with self._lock:
            values = self.document.outputs.setdefault(name, [])
            if not isinstance(values, list):
                raise ConfigurationError(
                    f"Output variable '{name}' is not an array"
                )
            if value not in values:
                values.append(value)

    def finish(self, tasks: list["Task"]) -> None:
        logger.info(
            f"Rendered {len(self.document.records)} resources and "
            f"{len(self.document.outputs)} outputs"
        )
        if self.sink is not None:
            self.sink.write(self.document)


def _plain(value: Any) -> Any:
    if isinstance(value, Reference):
        return str(value)
    if isinstance(value, BaseModel):
        return _plain(value.model_dump())
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value
