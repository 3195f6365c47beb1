"""Sinks that serialise a finished ResourceDocument."""

import json
import logging
from pathlib import Path
from typing import Any

from .iac import ResourceDocument, _plain, sanitize_name

logger = logging.getLogger(__name__)


class TerraformJsonSink:
    """Writes the document using Terraform's JSON configuration syntax.

    Records become ``resource.<type>.<name>`` blocks, references become
    ``${type.name.attribute}`` interpolations and outputs become
    ``output.<name>.value``.

    Args:
        path: Destination file, conventionally ending in ``.tf.json``
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def build(self, document: ResourceDocument) -> dict[str, Any]:
        """Build the Terraform JSON structure without writing it."""
        resources: dict[str, dict[str, Any]] = {}
        for record in document.records:
            by_type = resources.setdefault(record.type, {})
            by_type[sanitize_name(record.name)] = _plain(record.attributes)

        config: dict[str, Any] = {"resource": resources}
        if document.outputs:
            config["output"] = {
                name: {"value": _plain(value)}
                for name, value in sorted(document.outputs.items())
            }
        return config

    def write(self, document: ResourceDocument) -> None:
        config = self.build(document)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(config, indent=2) + "\n", encoding="utf-8")
        logger.info(f"Wrote {len(document.records)} resources to {self.path}")
