"""Target group task - an ALB/NLB target group autoscaling groups register into."""

import logging
from typing import Any, ClassVar

from pydantic import Field

from cloudup.changes import ChangeSet
from cloudup.cloud import NotFoundError
from cloudup.errors import ImmutableFieldError, RequiredFieldError
from cloudup.targets.iac import Reference

from ..base import Task

logger = logging.getLogger(__name__)


class TargetGroup(Task):
    """Load balancer target group.

    The ARN is assigned by the provider and published as output ``arn``; set
    ``arn`` explicitly only to reference a group managed elsewhere.
    """

    iac_type: ClassVar[str] = "aws_lb_target_group"

    arn: str | None = None
    port: int | None = Field(None, examples=[443, 6443])
    protocol: str | None = Field(None, examples=["TCP", "HTTPS"])
    vpc_id: str | None = None
    health_check_path: str | None = Field(None, examples=["/healthz"])

    def compare_key(self) -> Any:
        return self.arn or self.output("arn") or self.key

    def link(self) -> Reference | str:
        return self.arn if self.arn else self.reference()

    def find(self, context) -> "TargetGroup | None":
        elbv2 = context.cloud.elbv2
        request = {"TargetGroupArns": [self.arn]} if self.arn else {"Names": [self.name]}
        try:
            groups = elbv2.describe_target_groups(**request).get("TargetGroups", [])
        except NotFoundError:
            return None
        if not groups:
            return None

        found = groups[0]
        self.set_output("arn", found["TargetGroupArn"])

        actual = TargetGroup(
            name=self.name,
            lifecycle=self.lifecycle,
            arn=found["TargetGroupArn"],
            port=found.get("Port"),
            protocol=found.get("Protocol"),
            vpc_id=found.get("VpcId"),
            health_check_path=found.get("HealthCheckPath"),
        )
        actual.set_output("arn", found["TargetGroupArn"])
        return actual

    def check_changes(self, actual, desired, changes: ChangeSet) -> None:
        if actual is not None:
            # Port, protocol and VPC cannot be changed in place
            for field_name in ("port", "protocol", "vpc_id"):
                if field_name in changes:
                    raise ImmutableFieldError(field_name)
        elif desired.arn is None:
            for field_name in ("port", "protocol", "vpc_id"):
                if getattr(desired, field_name) is None:
                    raise RequiredFieldError(field_name)

    def render_api(self, target, actual, desired, changes: ChangeSet) -> None:
        elbv2 = target.cloud.elbv2

        if actual is None:
            logger.info(f"Creating target group {desired.name}")
            request: dict[str, Any] = {
                "Name": desired.name,
                "Port": desired.port,
                "Protocol": desired.protocol,
                "VpcId": desired.vpc_id,
            }
            if desired.health_check_path:
                request["HealthCheckPath"] = desired.health_check_path
            response = elbv2.create_target_group(**request)
            desired.set_output("arn", response["TargetGroups"][0]["TargetGroupArn"])
            changes.take_all()
            return

        if changes.take("health_check_path"):
            elbv2.modify_target_group(
                TargetGroupArn=actual.arn, HealthCheckPath=desired.health_check_path
            )

    def render_iac(self, target, actual, desired, changes: ChangeSet) -> None:
        if desired.arn:
            changes.take_all()
            return
        target.render_resource(
            "aws_lb_target_group",
            desired.name,
            {
                "name": desired.name,
                "port": desired.port,
                "protocol": desired.protocol,
                "vpc_id": desired.vpc_id,
                "health_check": {"path": desired.health_check_path}
                if desired.health_check_path
                else None,
            },
        )
        changes.take_all()
