"""Project IAM binding task - grants a role on a project to a service account."""

import logging
from typing import Any, ClassVar

from cloudup.changes import ChangeSet
from cloudup.cloud import NotFoundError, ProviderError
from cloudup.errors import FindError, RenderError, RequiredFieldError

from ..base import Task
from .service_account import ServiceAccount

logger = logging.getLogger(__name__)


class ProjectIAMBinding(Task):
    """One (role, member) grant in a project's IAM policy.

    The project policy is a single document shared by every binding, so the
    render is a read-modify-write of the whole policy. Concurrent bindings
    on the same project are serialised through the target's keyed locks.

    Attributes:
        project: Project ID
        member_service_account: Service account receiving the role
        role: Role to grant, e.g. ``roles/compute.viewer``
    """

    iac_type: ClassVar[str] = "google_project_iam_binding"

    project: str | None = None
    member_service_account: ServiceAccount | None = None
    role: str | None = None

    @property
    def member(self) -> str:
        return f"serviceAccount:{self.member_service_account.email}"

    def find(self, context) -> "ProjectIAMBinding | None":
        if not (self.project and self.role and self.member_service_account
                and self.member_service_account.email):
            return None

        logger.debug(f"Checking IAM for project {self.project!r}")
        try:
            policy = context.cloud.resource_manager.get_iam_policy(self.project)
        except NotFoundError:
            return None
        except ProviderError as e:
            raise FindError(self.key, f"error checking IAM for project {self.project}: {e}") from e

        if patch_policy(policy, self.member, self.role):
            # The member would have to be added, so the binding is absent
            return None

        return ProjectIAMBinding(
            name=self.name,
            lifecycle=self.lifecycle,
            project=self.project,
            member_service_account=self.member_service_account,
            role=self.role,
        )

    def check_changes(self, actual, desired, changes: ChangeSet) -> None:
        if not desired.project:
            raise RequiredFieldError("project")
        if desired.member_service_account is None:
            raise RequiredFieldError("member_service_account")
        if not desired.member_service_account.email:
            raise RequiredFieldError("member_service_account.email")
        if not desired.role:
            raise RequiredFieldError("role")

    def render_api(self, target, actual, desired, changes: ChangeSet) -> None:
        client = target.cloud.resource_manager

        with target.locks.hold(f"project-iam:{desired.project}"):
            try:
                policy = client.get_iam_policy(desired.project)
            except ProviderError as e:
                raise RenderError(
                    desired.key, f"error getting IAM policy for project {desired.project}: {e}"
                ) from e

            if not patch_policy(policy, desired.member, desired.role):
                logger.warning(
                    f"did not need to change IAM policy for project {desired.project} (concurrent change?)"
                )
                changes.take_all()
                return

            logger.info(f"Updating IAM for project {desired.project}: {desired.role} += {desired.member}")
            try:
                client.set_iam_policy(desired.project, policy)
            except ProviderError as e:
                raise RenderError(
                    desired.key, f"error updating IAM for project {desired.project}: {e}"
                ) from e

        changes.take_all()

    def render_iac(self, target, actual, desired, changes: ChangeSet) -> None:
        target.render_resource(
            "google_project_iam_binding",
            desired.name,
            {
                "project": desired.project,
                "role": desired.role,
                "members": [desired.member_service_account.member_reference()],
            },
        )
        changes.take_all()


def patch_policy(policy: dict[str, Any], member: str, role: str) -> bool:
    """Add member to the unconditional binding for role, in place.

    Returns:
        True if the policy was changed, False if member already had the role
    """
    bindings = policy.setdefault("bindings", [])
    for binding in bindings:
        if binding.get("condition") is not None:
            continue
        if binding.get("role") != role:
            continue
        members = binding.setdefault("members", [])
        if member in members:
            return False
        members.append(member)
        return True

    bindings.append({"role": role, "members": [member]})
    return True
