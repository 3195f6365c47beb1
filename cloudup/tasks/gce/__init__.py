"""
GCE tasks - service accounts and project IAM bindings.
"""

from .project_iam_binding import ProjectIAMBinding, patch_policy
from .service_account import ServiceAccount

__all__ = [
    "ProjectIAMBinding",
    "ServiceAccount",
    "patch_policy",
]
