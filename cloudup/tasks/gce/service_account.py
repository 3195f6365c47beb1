"""Service account task."""

import logging
from typing import Any, ClassVar

from pydantic import Field

from cloudup.changes import ChangeSet
from cloudup.cloud import NotFoundError
from cloudup.errors import RequiredFieldError
from cloudup.targets.iac import Reference

from ..base import Task

logger = logging.getLogger(__name__)


class ServiceAccount(Task):
    """GCP IAM service account in the cloud's project.

    Attributes:
        email: Account email; the part before ``@`` is the account ID
        display_name: Human readable name
        description: Free-form description
    """

    iac_type: ClassVar[str] = "google_service_account"

    email: str | None = Field(
        None, examples=["control-plane@my-project.iam.gserviceaccount.com"]
    )
    display_name: str | None = None
    description: str | None = None

    @property
    def account_id(self) -> str | None:
        return self.email.split("@", 1)[0] if self.email else None

    def compare_key(self) -> Any:
        return self.email or self.key

    def member_reference(self) -> Reference:
        """IAM member string (``serviceAccount:<email>``) in documents."""
        return self.reference("member")

    def find(self, context) -> "ServiceAccount | None":
        if not self.email:
            return None
        cloud = context.cloud
        try:
            found = cloud.iam.get_service_account(cloud.project, self.email)
        except NotFoundError:
            return None

        return ServiceAccount(
            name=self.name,
            lifecycle=self.lifecycle,
            email=found["email"],
            display_name=found.get("displayName"),
            description=found.get("description"),
        )

    def check_changes(self, actual, desired, changes: ChangeSet) -> None:
        if not desired.email:
            raise RequiredFieldError("email")

    def render_api(self, target, actual, desired, changes: ChangeSet) -> None:
        cloud = target.cloud
        body = {
            key: value
            for key, value in (
                ("displayName", desired.display_name),
                ("description", desired.description),
            )
            if value is not None
        }

        if actual is None:
            logger.info(f"Creating service account {desired.email}")
            cloud.iam.create_service_account(cloud.project, desired.account_id, body)
            changes.take_all()
            return

        mask = []
        if changes.take("display_name"):
            mask.append("displayName")
        if changes.take("description"):
            mask.append("description")
        if mask:
            logger.info(f"Updating service account {desired.email}")
            cloud.iam.patch_service_account(
                cloud.project, desired.email, body, ",".join(mask)
            )

    def render_iac(self, target, actual, desired, changes: ChangeSet) -> None:
        target.render_resource(
            "google_service_account",
            desired.name,
            {
                "account_id": desired.account_id,
                "display_name": desired.display_name,
                "description": desired.description,
            },
        )
        changes.take_all()
