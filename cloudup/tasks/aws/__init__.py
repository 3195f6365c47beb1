"""
AWS tasks - autoscaling groups and the resources they reference.
"""

from .autoscaling_group import AutoscalingGroup, DetachTargetGroupDeletion
from .launch_template import LaunchTemplate
from .subnet import Subnet
from .target_group import TargetGroup

__all__ = [
    "AutoscalingGroup",
    "DetachTargetGroupDeletion",
    "LaunchTemplate",
    "Subnet",
    "TargetGroup",
]
