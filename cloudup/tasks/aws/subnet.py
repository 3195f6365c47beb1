"""Subnet task - a VPC subnet that autoscaling groups launch instances into."""

import logging
from typing import Any, ClassVar

from pydantic import Field

from cloudup.changes import ChangeSet
from cloudup.cloud import ProviderError
from cloudup.errors import FindError, ImmutableFieldError, RequiredFieldError
from cloudup.targets.iac import Reference

from ..base import Task
from .tagging import from_aws_tags, tag_specifications, to_aws_tags, with_cluster_tags

logger = logging.getLogger(__name__)


class Subnet(Task):
    """VPC subnet.

    A subnet created elsewhere can be referenced by setting ``id``; it is then
    looked up by ID instead of by its Name tag. The provider-assigned ID is
    published as output ``id`` for dependents.

    Attributes:
        id: Existing subnet ID (shared subnets only)
        vpc_id: VPC the subnet belongs to (required to create)
        cidr: IPv4 CIDR block (required to create)
        availability_zone: Zone the subnet lives in
        tags: Resource tags, merged with the cluster tags
    """

    iac_type: ClassVar[str] = "aws_subnet"

    id: str | None = Field(None, description="Existing subnet ID", examples=["subnet-0a1b2c3d"])
    vpc_id: str | None = Field(None, examples=["vpc-12345678"])
    cidr: str | None = Field(None, examples=["172.20.32.0/19"])
    availability_zone: str | None = Field(None, examples=["us-east-1a"])
    tags: dict[str, str] | None = None

    def compare_key(self) -> Any:
        # Autoscaling groups only report subnet IDs
        return self.id or self.output("id") or self.key

    def link(self) -> Reference | str:
        """Value other resources use to point at this subnet in documents."""
        return self.id if self.id else self.reference()

    def normalize(self, context) -> None:
        if self.id is None:
            self.tags = with_cluster_tags(context, {"Name": self.name, **(self.tags or {})})

    def find(self, context) -> "Subnet | None":
        ec2 = context.cloud.ec2
        if self.id:
            request: dict[str, Any] = {"SubnetIds": [self.id]}
        else:
            request = {"Filters": [{"Name": "tag:Name", "Values": [self.name]}]}

        try:
            subnets = ec2.describe_subnets(**request).get("Subnets", [])
        except ProviderError as e:
            raise FindError(self.key, f"error listing subnets: {e}") from e

        if not subnets:
            return None
        if len(subnets) > 1:
            raise FindError(self.key, f"found {len(subnets)} subnets matching {self.name!r}")

        found = subnets[0]
        self.set_output("id", found["SubnetId"])

        actual = Subnet(
            name=self.name,
            lifecycle=self.lifecycle,
            id=found["SubnetId"],
            vpc_id=found.get("VpcId"),
            cidr=found.get("CidrBlock"),
            availability_zone=found.get("AvailabilityZone"),
            tags=from_aws_tags(found.get("Tags")),
        )
        actual.set_output("id", found["SubnetId"])
        return actual

    def check_changes(self, actual, desired, changes: ChangeSet) -> None:
        if actual is not None:
            for field_name in ("vpc_id", "cidr", "availability_zone"):
                if field_name in changes:
                    raise ImmutableFieldError(field_name)
            return

        # Shared subnets are never created
        if desired.id is None:
            if desired.vpc_id is None:
                raise RequiredFieldError("vpc_id")
            if desired.cidr is None:
                raise RequiredFieldError("cidr")

    def render_api(self, target, actual, desired, changes: ChangeSet) -> None:
        ec2 = target.cloud.ec2

        if actual is None:
            logger.info(f"Creating subnet {desired.name} ({desired.cidr})")
            request: dict[str, Any] = {
                "VpcId": desired.vpc_id,
                "CidrBlock": desired.cidr,
                "TagSpecifications": tag_specifications("subnet", desired.tags),
            }
            if desired.availability_zone:
                request["AvailabilityZone"] = desired.availability_zone
            response = ec2.create_subnet(**request)
            desired.set_output("id", response["Subnet"]["SubnetId"])
            changes.take_all()
            return

        # Subnets are immutable apart from their tags
        if changes.take("tags"):
            ec2.create_tags(Resources=[actual.id], Tags=to_aws_tags(desired.tags))
        changes.take("id")

    def render_iac(self, target, actual, desired, changes: ChangeSet) -> None:
        if desired.id:
            # Shared subnet, managed outside this document
            changes.take_all()
            return
        target.render_resource(
            "aws_subnet",
            desired.name,
            {
                "vpc_id": desired.vpc_id,
                "cidr_block": desired.cidr,
                "availability_zone": desired.availability_zone,
                "tags": desired.tags,
            },
        )
        changes.take_all()
