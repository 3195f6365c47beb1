"""
Autoscaling group task.

Beyond the plain create/update cycle this task shows the less common parts of
the task contract:
- Find surfaces target groups that are attached but no longer desired as a
  deferred deletion instead of detaching them during render;
- create maps the IAM instance profile propagation race to TryAgainLaterError;
- the infrastructure-as-code render registers role-keyed output variables.
"""

import logging
from collections.abc import Iterator
from typing import Annotated, Any, ClassVar

from pydantic import Field

from cloudup.changes import ChangeSet, Unordered
from cloudup.cloud import ProviderError
from cloudup.deletions import Deletion
from cloudup.errors import (
    ConfigurationError,
    DeletionError,
    FindError,
    RenderError,
    RequiredFieldError,
    TryAgainLaterError,
)

from ..base import Task
from .launch_template import LaunchTemplate
from .subnet import Subnet
from .tagging import with_cluster_tags
from .target_group import TargetGroup

logger = logging.getLogger(__name__)

# Tag whose suffix names the instance group role (node, master, bastion, ...)
ROLE_TAG_PREFIX = "k8s.io/role/"

# AttachLoadBalancerTargetGroups accepts at most this many ARNs per call
ATTACH_TARGET_GROUPS_MAX_ITEMS = 10

LATEST_VERSION = "$Latest"


class AutoscalingGroup(Task):
    """AWS EC2 autoscaling group.

    Attributes:
        min_size: Smallest number of instances
        max_size: Largest number of instances
        max_instance_lifetime: Seconds an instance may stay in service (0 disables)
        granularity: Granularity of the enabled metrics
        metrics: Group metrics to collect
        subnets: Subnets instances are launched into (order does not matter)
        launch_template: Launch template used at version $Latest
        target_groups: Target groups instances are registered into
        tags: Tags propagated to instances at launch; merged with the cluster tags
        suspend_processes: Scaling processes to keep suspended
        instance_protection: Protect new instances from scale in
        capacity_rebalance: Replace spot instances on rebalance recommendations

    Example:
        >>> nodes = AutoscalingGroup(
        ...     name="nodes.example.com",
        ...     min_size=2, max_size=5,
        ...     subnets=[subnet_a, subnet_b],
        ...     launch_template=template,
        ...     tags={"k8s.io/role/node": "1"},
        ... )
    """

    iac_type: ClassVar[str] = "aws_autoscaling_group"

    min_size: int | None = Field(None, ge=0)
    max_size: int | None = Field(None, ge=0)
    max_instance_lifetime: int | None = Field(None, ge=0)
    granularity: str | None = Field(None, examples=["1Minute"])
    metrics: list[str] | None = Field(
        None, examples=[["GroupDesiredCapacity", "GroupInServiceInstances"]]
    )
    subnets: Annotated[list[Subnet] | None, Unordered()] = None
    launch_template: LaunchTemplate | None = None
    target_groups: Annotated[list[TargetGroup] | None, Unordered()] = None
    tags: dict[str, str] | None = None
    suspend_processes: Annotated[list[str] | None, Unordered()] = Field(
        None, examples=[["AZRebalance"]]
    )
    instance_protection: bool | None = None
    capacity_rebalance: bool | None = None

    def normalize(self, context) -> None:
        if self.metrics is not None:
            self.metrics = sorted(self.metrics)
        self.tags = with_cluster_tags(context, self.tags)

    def find(self, context) -> "AutoscalingGroup | None":
        group = self._describe(context.cloud)
        if group is None:
            return None

        # Deletions are rediscovered on every find
        self._deletions.clear()

        actual = AutoscalingGroup(
            name=group["AutoScalingGroupName"],
            lifecycle=self.lifecycle,
            min_size=group.get("MinSize"),
            max_size=group.get("MaxSize"),
            # The API omits the lifetime when it is disabled
            max_instance_lifetime=group.get("MaxInstanceLifetime") or 0,
            instance_protection=group.get("NewInstancesProtectedFromScaleIn"),
            capacity_rebalance=group.get("CapacityRebalance"),
        )

        by_arn = {tg.compare_key(): tg for tg in self.target_groups or []}
        actual.target_groups = []
        for arn in group.get("TargetGroupARNs", []):
            desired = by_arn.get(arn)
            if desired is not None:
                actual.target_groups.append(desired)
                continue
            actual.target_groups.append(TargetGroup(name=arn, arn=arn))
            self.add_deletion(DetachTargetGroupDeletion(self.name, arn))

        zone_identifier = group.get("VPCZoneIdentifier")
        if zone_identifier:
            actual.subnets = [
                Subnet(name=subnet_id, id=subnet_id)
                for subnet_id in zone_identifier.split(",")
            ]

        enabled = group.get("EnabledMetrics", [])
        if enabled:
            actual.metrics = sorted(metric["Metric"] for metric in enabled)
            actual.granularity = enabled[-1].get("Granularity")

        tags = group.get("Tags", [])
        if tags:
            actual.tags = {
                tag["Key"]: tag.get("Value", "")
                for tag in tags
                if not tag["Key"].startswith("aws:cloudformation:")
            }

        template = group.get("LaunchTemplate")
        if template:
            actual.launch_template = LaunchTemplate(name=template["LaunchTemplateName"])
            actual.launch_template.set_output("id", template.get("LaunchTemplateId"))

        actual.suspend_processes = [
            process["ProcessName"] for process in group.get("SuspendedProcesses", [])
        ]

        return actual

    def _describe(self, cloud) -> dict[str, Any] | None:
        try:
            response = cloud.autoscaling.describe_auto_scaling_groups(
                AutoScalingGroupNames=[self.name]
            )
        except ProviderError as e:
            raise FindError(self.key, f"error listing AutoScalingGroups: {e}") from e

        found = []
        for group in response.get("AutoScalingGroups", []):
            # Status is only set while a delete is in progress
            if group.get("Status"):
                logger.warning(
                    f"Skipping AutoScalingGroup {group['AutoScalingGroupName']}: {group['Status']}"
                )
                continue
            if group["AutoScalingGroupName"] == self.name:
                found.append(group)
            else:
                logger.warning(f"Got ASG with unexpected name {group['AutoScalingGroupName']!r}")

        if not found:
            return None
        if len(found) > 1:
            raise FindError(self.key, f"found multiple AutoscalingGroups with name {self.name!r}")
        return found[0]

    def check_changes(self, actual, desired, changes: ChangeSet) -> None:
        if actual is None:
            for field_name in ("min_size", "max_size", "launch_template"):
                if getattr(desired, field_name) is None:
                    raise RequiredFieldError(field_name)
            if not desired.subnets:
                raise RequiredFieldError("subnets")

    def render_api(self, target, actual, desired, changes: ChangeSet) -> None:
        if actual is None:
            self._create(target.cloud.autoscaling, desired)
            changes.take_all()
        else:
            self._update(target.cloud.autoscaling, actual, desired, changes)

    def _create(self, autoscaling, desired: "AutoscalingGroup") -> None:
        logger.info(f"Creating autoscaling group {desired.name}")

        request: dict[str, Any] = {
            "AutoScalingGroupName": desired.name,
            "MinSize": desired.min_size,
            "MaxSize": desired.max_size,
            "LaunchTemplate": desired.launch_template_spec(),
            "VPCZoneIdentifier": ",".join(desired.subnet_ids()),
            "Tags": desired.autoscaling_tags(),
        }
        if desired.target_groups:
            request["TargetGroupARNs"] = desired.target_group_arns()
        if desired.instance_protection is not None:
            request["NewInstancesProtectedFromScaleIn"] = desired.instance_protection
        if desired.capacity_rebalance is not None:
            request["CapacityRebalance"] = desired.capacity_rebalance
        # A zero lifetime is rejected on create
        if desired.max_instance_lifetime:
            request["MaxInstanceLifetime"] = desired.max_instance_lifetime

        try:
            autoscaling.create_auto_scaling_group(**request)
        except ProviderError as e:
            if e.code == "ValidationError" and "Invalid IAM Instance Profile name" in e.message:
                logger.debug(f"error creating AutoscalingGroup: {e.message}")
                raise TryAgainLaterError(
                    "waiting for the IAM Instance Profile to be propagated"
                ) from e
            raise RenderError(desired.key, f"error creating AutoScalingGroup: {e.message}") from e

        try:
            if desired.metrics:
                autoscaling.enable_metrics_collection(
                    AutoScalingGroupName=desired.name,
                    Granularity=desired.granularity or "1Minute",
                    Metrics=desired.metrics,
                )
            if desired.suspend_processes:
                autoscaling.suspend_processes(
                    AutoScalingGroupName=desired.name,
                    ScalingProcesses=desired.suspend_processes,
                )
        except ProviderError as e:
            raise RenderError(desired.key, f"error configuring AutoScalingGroup: {e}") from e

    def _update(
        self,
        autoscaling,
        actual: "AutoscalingGroup",
        desired: "AutoscalingGroup",
        changes: ChangeSet,
    ) -> None:
        request: dict[str, Any] = {"AutoScalingGroupName": desired.name}

        if changes.take("launch_template"):
            request["LaunchTemplate"] = desired.launch_template_spec()
        if changes.take("min_size"):
            request["MinSize"] = desired.min_size
        if changes.take("max_size"):
            request["MaxSize"] = desired.max_size
        if changes.take("subnets"):
            request["VPCZoneIdentifier"] = ",".join(desired.subnet_ids())
        if changes.take("max_instance_lifetime"):
            request["MaxInstanceLifetime"] = desired.max_instance_lifetime
        if changes.take("instance_protection"):
            request["NewInstancesProtectedFromScaleIn"] = desired.instance_protection
        if changes.take("capacity_rebalance"):
            request["CapacityRebalance"] = desired.capacity_rebalance

        update_tags: list[dict[str, Any]] = []
        delete_tags: list[dict[str, Any]] = []
        if changes.take("tags"):
            update_tags = desired.autoscaling_tags()
            delete_tags = desired.tags_to_delete(actual.tags or {})

        attach_requests: list[list[str]] = []
        if changes.take("target_groups"):
            # Detaching stale groups is done by a deferred deletion
            attach_requests = list(chunks(desired.target_group_arns(), ATTACH_TARGET_GROUPS_MAX_ITEMS))

        metrics_change = changes.take("metrics")
        granularity_change = changes.take("granularity")
        metrics_changed = metrics_change is not None or granularity_change is not None

        to_suspend: list[str] = []
        to_resume: list[str] = []
        if changes.take("suspend_processes"):
            current = actual.suspend_processes or []
            wanted = desired.suspend_processes or []
            to_suspend = [p for p in wanted if p not in current]
            to_resume = [p for p in current if p not in wanted]

        logger.info(f"Updating autoscaling group {desired.name}")
        try:
            if len(request) > 1:
                autoscaling.update_auto_scaling_group(**request)

            if metrics_changed:
                if desired.metrics:
                    autoscaling.enable_metrics_collection(
                        AutoScalingGroupName=desired.name,
                        Granularity=desired.granularity or "1Minute",
                        Metrics=desired.metrics,
                    )
                else:
                    autoscaling.disable_metrics_collection(AutoScalingGroupName=desired.name)

            if to_suspend:
                autoscaling.suspend_processes(
                    AutoScalingGroupName=desired.name, ScalingProcesses=to_suspend
                )
            if to_resume:
                autoscaling.resume_processes(
                    AutoScalingGroupName=desired.name, ScalingProcesses=to_resume
                )

            if delete_tags:
                autoscaling.delete_tags(Tags=delete_tags)
            if update_tags:
                autoscaling.create_or_update_tags(Tags=update_tags)

            for arns in attach_requests:
                autoscaling.attach_load_balancer_target_groups(
                    AutoScalingGroupName=desired.name, TargetGroupARNs=arns
                )
        except ProviderError as e:
            raise RenderError(desired.key, f"error updating AutoscalingGroup: {e}") from e

    def render_iac(self, target, actual, desired, changes: ChangeSet) -> None:
        template = desired.launch_template
        if template is None:
            raise ConfigurationError(f"{desired.key} has no launch template")

        attributes: dict[str, Any] = {
            "name": desired.name,
            "min_size": desired.min_size,
            "max_size": desired.max_size,
            "metrics_granularity": desired.granularity,
            "enabled_metrics": desired.metrics,
            "protect_from_scale_in": desired.instance_protection,
            "max_instance_lifetime": desired.max_instance_lifetime,
            "capacity_rebalance": desired.capacity_rebalance,
            "launch_template": {
                "id": template.reference(),
                "version": template.version_reference(),
            },
            "vpc_zone_identifier": [subnet.link() for subnet in desired.subnets or []],
            "tag": [
                {"key": key, "value": value, "propagate_at_launch": True}
                for key, value in sorted((desired.tags or {}).items())
            ],
            "target_group_arns": sorted(
                (tg.link() for tg in desired.target_groups or []), key=str
            )
            or None,
            "suspended_processes": desired.suspend_processes,
        }

        role = desired.role()
        if role:
            for group_id in template.security_groups or []:
                target.add_output_variable_array(f"{role}_security_group_ids", group_id)
            target.add_output_variable_array(f"{role}_autoscaling_group_ids", desired.reference())
        if role == "node":
            for subnet in desired.subnets or []:
                target.add_output_variable_array(f"{role}_subnet_ids", subnet.link())

        target.render_resource("aws_autoscaling_group", desired.name, attributes)
        changes.take_all()

    def role(self) -> str | None:
        """Instance group role from the ``k8s.io/role/<role>`` tag; control-plane maps to master.

        Raises:
            ConfigurationError: If the tags name more than one role
        """
        role = None
        for key in self.tags or {}:
            if not key.startswith(ROLE_TAG_PREFIX):
                continue
            suffix = key[len(ROLE_TAG_PREFIX):]
            if suffix == "control-plane":
                suffix = "master"
            if role is not None and role != suffix:
                raise ConfigurationError(f"Found multiple role tags: {role!r} vs {suffix!r}")
            role = suffix
        return role

    def launch_template_spec(self) -> dict[str, str]:
        template_id = self.launch_template.output("id") if self.launch_template else None
        if not template_id:
            raise RenderError(self.key, "launch template has no ID")
        return {"LaunchTemplateId": template_id, "Version": LATEST_VERSION}

    def subnet_ids(self) -> list[str]:
        ids = []
        for subnet in self.subnets or []:
            subnet_id = subnet.id or subnet.output("id")
            if not subnet_id:
                raise RenderError(self.key, f"{subnet.key} has no ID")
            ids.append(subnet_id)
        return ids

    def target_group_arns(self) -> list[str]:
        arns = []
        for tg in self.target_groups or []:
            arn = tg.arn or tg.output("arn")
            if not arn:
                raise RenderError(self.key, f"{tg.key} has no ARN")
            arns.append(arn)
        return arns

    def autoscaling_tags(self) -> list[dict[str, Any]]:
        return [
            {
                "Key": key,
                "Value": value,
                "ResourceId": self.name,
                "ResourceType": "auto-scaling-group",
                "PropagateAtLaunch": True,
            }
            for key, value in sorted((self.tags or {}).items())
        ]

    def tags_to_delete(self, current: dict[str, str]) -> list[dict[str, Any]]:
        desired = self.tags or {}
        return [
            {
                "Key": key,
                "Value": value,
                "ResourceId": self.name,
                "ResourceType": "auto-scaling-group",
            }
            for key, value in sorted(current.items())
            if key not in desired
        ]


class DetachTargetGroupDeletion(Deletion):
    """Detach a target group that is attached to a group but no longer desired."""

    task_name = "autoscaling-elb-attachment"
    defer = True

    def __init__(self, group_name: str, target_group_arn: str):
        self.group_name = group_name
        self.target_group_arn = target_group_arn

    @property
    def item(self) -> str:
        return f"{self.group_name}:{self.target_group_arn}"

    def delete(self, target) -> None:
        if target.cloud is None:
            raise DeletionError(f"unexpected target for deletion: {target!r}")
        try:
            target.cloud.autoscaling.detach_load_balancer_target_groups(
                AutoScalingGroupName=self.group_name,
                TargetGroupARNs=[self.target_group_arn],
            )
        except ProviderError as e:
            raise DeletionError(
                f"failed to detach target groups from autoscaling group: {e}"
            ) from e


def chunks(items: list[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]
