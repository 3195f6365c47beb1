"""
Cloudup Targets - backends that tasks render against.
"""

from .api import APITarget
from .base import Target, TargetKind
from .iac import (
    IaCTarget,
    Reference,
    ResourceDocument,
    ResourceRecord,
    ResourceSink,
)
from .sinks import TerraformJsonSink

__all__ = [
    "APITarget",
    "IaCTarget",
    "Reference",
    "ResourceDocument",
    "ResourceRecord",
    "ResourceSink",
    "Target",
    "TargetKind",
    "TerraformJsonSink",
]
