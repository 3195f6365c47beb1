"""Launch template task - instance configuration for autoscaling groups."""

import logging
from typing import Annotated, Any, ClassVar

from pydantic import Field

from cloudup.changes import ChangeSet, Unordered
from cloudup.cloud import NotFoundError
from cloudup.errors import RequiredFieldError
from cloudup.targets.iac import Reference

from ..base import Task
from .tagging import from_aws_tags, tag_specifications, with_cluster_tags

logger = logging.getLogger(__name__)


class LaunchTemplate(Task):
    """EC2 launch template, referenced by autoscaling groups at version ``$Latest``.

    Updates create a new template version and make it the default. The
    template ID is published as output ``id``.
    """

    iac_type: ClassVar[str] = "aws_launch_template"

    image_id: str | None = Field(None, examples=["ami-0abcdef1234567890"])
    instance_type: str | None = Field(None, examples=["t3.medium", "m5.large"])
    iam_instance_profile: str | None = Field(None, description="Instance profile name")
    security_groups: Annotated[list[str] | None, Unordered()] = Field(
        None, description="Security group IDs", examples=[["sg-0123456789abcdef0"]]
    )
    tags: dict[str, str] | None = None

    def normalize(self, context) -> None:
        self.tags = with_cluster_tags(context, self.tags)

    def find(self, context) -> "LaunchTemplate | None":
        try:
            response = context.cloud.ec2.describe_launch_template_versions(
                LaunchTemplateName=self.name, Versions=["$Latest"]
            )
        except NotFoundError:
            return None

        versions = response.get("LaunchTemplateVersions", [])
        if not versions:
            return None

        latest = versions[0]
        data = latest.get("LaunchTemplateData", {})
        self.set_output("id", latest["LaunchTemplateId"])

        tags = None
        for spec in data.get("TagSpecifications", []):
            if spec.get("ResourceType") == "instance":
                tags = from_aws_tags(spec.get("Tags"))

        actual = LaunchTemplate(
            name=self.name,
            lifecycle=self.lifecycle,
            image_id=data.get("ImageId"),
            instance_type=data.get("InstanceType"),
            iam_instance_profile=data.get("IamInstanceProfile", {}).get("Name"),
            security_groups=data.get("SecurityGroupIds"),
            tags=tags,
        )
        actual.set_output("id", latest["LaunchTemplateId"])
        return actual

    def check_changes(self, actual, desired, changes: ChangeSet) -> None:
        if desired.image_id is None:
            raise RequiredFieldError("image_id")
        if desired.instance_type is None:
            raise RequiredFieldError("instance_type")

    def template_data(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "ImageId": self.image_id,
            "InstanceType": self.instance_type,
            "TagSpecifications": tag_specifications("instance", self.tags),
        }
        if self.iam_instance_profile:
            data["IamInstanceProfile"] = {"Name": self.iam_instance_profile}
        if self.security_groups:
            data["SecurityGroupIds"] = list(self.security_groups)
        return data

    def render_api(self, target, actual, desired, changes: ChangeSet) -> None:
        ec2 = target.cloud.ec2

        if actual is None:
            logger.info(f"Creating launch template {desired.name}")
            response = ec2.create_launch_template(
                LaunchTemplateName=desired.name,
                LaunchTemplateData=desired.template_data(),
            )
            desired.set_output("id", response["LaunchTemplate"]["LaunchTemplateId"])
        else:
            template_id = desired.output("id")
            logger.info(f"Creating new version of launch template {desired.name}")
            response = ec2.create_launch_template_version(
                LaunchTemplateId=template_id,
                LaunchTemplateData=desired.template_data(),
            )
            version = response["LaunchTemplateVersion"]["VersionNumber"]
            ec2.modify_launch_template(
                LaunchTemplateId=template_id, DefaultVersion=str(version)
            )

        # Every change lands in the same template version
        changes.take_all()

    def render_iac(self, target, actual, desired, changes: ChangeSet) -> None:
        attributes: dict[str, Any] = {
            "name": desired.name,
            "image_id": desired.image_id,
            "instance_type": desired.instance_type,
            "vpc_security_group_ids": desired.security_groups,
            "tag_specifications": [{"resource_type": "instance", "tags": desired.tags}]
            if desired.tags
            else None,
        }
        if desired.iam_instance_profile:
            attributes["iam_instance_profile"] = {"name": desired.iam_instance_profile}

        target.render_resource("aws_launch_template", desired.name, attributes)
        changes.take_all()

    def version_reference(self) -> Reference:
        return self.reference("latest_version")
