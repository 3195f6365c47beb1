"""
Cloudup Tasks - typed units of infrastructure intent.
"""

from .base import RENDER_METHODS, Lifecycle, Task

__all__ = [
    "RENDER_METHODS",
    "Lifecycle",
    "Task",
]
