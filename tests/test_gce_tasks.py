"""Tests for the GCE service account and project IAM binding tasks."""

import logging

import pytest

from cloudup.changes import ChangeSet
from cloudup.context import CloudupContext
from cloudup.errors import RequiredFieldError
from cloudup.report import TaskStatus
from cloudup.targets import APITarget, IaCTarget, TerraformJsonSink
from cloudup.tasks.gce import ProjectIAMBinding, ServiceAccount, patch_policy

EMAIL = "control-plane@test-project.iam.gserviceaccount.com"
MEMBER = f"serviceAccount:{EMAIL}"


def declare(role="roles/compute.viewer", binding_name="control-plane-viewer"):
    account = ServiceAccount(name="control-plane", email=EMAIL, display_name="Control plane")
    binding = ProjectIAMBinding(
        name=binding_name,
        project="test-project",
        member_service_account=account,
        role=role,
    )
    return [binding, account]


class TestPatchPolicy:

    def test_adds_new_binding(self):
        policy = {"bindings": []}
        assert patch_policy(policy, MEMBER, "roles/viewer")
        assert policy["bindings"] == [{"role": "roles/viewer", "members": [MEMBER]}]

    def test_appends_to_existing_binding(self):
        policy = {"bindings": [{"role": "roles/viewer", "members": ["user:a@example.com"]}]}
        assert patch_policy(policy, MEMBER, "roles/viewer")
        assert policy["bindings"][0]["members"] == ["user:a@example.com", MEMBER]

    def test_existing_member_is_unchanged(self):
        policy = {"bindings": [{"role": "roles/viewer", "members": [MEMBER]}]}
        assert not patch_policy(policy, MEMBER, "roles/viewer")

    def test_conditional_bindings_are_skipped(self):
        policy = {
            "bindings": [
                {"role": "roles/viewer", "members": [MEMBER], "condition": {"title": "expires"}}
            ]
        }
        assert patch_policy(policy, MEMBER, "roles/viewer")
        assert len(policy["bindings"]) == 2

    def test_missing_bindings_key(self):
        policy = {"etag": "x"}
        assert patch_policy(policy, MEMBER, "roles/viewer")
        assert policy["bindings"] == [{"role": "roles/viewer", "members": [MEMBER]}]


class TestProjectIAMBinding:

    @pytest.mark.asyncio
    async def test_grant_then_no_op(self, gce_cloud, make_executor):
        context = CloudupContext(target=APITarget(gce_cloud))
        report = await make_executor(context).run(declare())

        assert report.success, report.errors
        assert report.result_for("ProjectIAMBinding/control-plane-viewer").status == TaskStatus.CREATED
        assert report.result_for("ServiceAccount/control-plane").status == TaskStatus.CREATED
        policy = gce_cloud.resource_manager.policies["test-project"]
        assert policy["bindings"] == [{"role": "roles/compute.viewer", "members": [MEMBER]}]
        assert policy["etag"] == "BwE"

        again = await make_executor(CloudupContext(target=APITarget(gce_cloud))).run(declare())

        assert all(r.status == TaskStatus.NO_OP for r in again.results)
        assert gce_cloud.resource_manager.set_calls == ["test-project"]

    @pytest.mark.asyncio
    async def test_concurrent_bindings_on_one_project_are_all_kept(self, gce_cloud, make_executor):
        account = ServiceAccount(name="control-plane", email=EMAIL)
        roles = [f"roles/custom.role{i}" for i in range(8)]
        bindings = [
            ProjectIAMBinding(
                name=f"binding-{i}",
                project="test-project",
                member_service_account=account,
                role=role,
            )
            for i, role in enumerate(roles)
        ]
        context = CloudupContext(target=APITarget(gce_cloud))

        report = await make_executor(context, max_concurrency=8).run([account, *bindings])

        assert report.success, report.errors
        granted = {
            binding["role"]
            for binding in gce_cloud.resource_manager.policies["test-project"]["bindings"]
        }
        assert granted == set(roles)
        assert len(context.target.locks) == 1

    def test_concurrent_change_is_a_warning(self, gce_cloud, caplog):
        binding, account = declare()
        gce_cloud.resource_manager.policies["test-project"]["bindings"] = [
            {"role": "roles/compute.viewer", "members": [MEMBER]}
        ]
        changes = ChangeSet()

        with caplog.at_level(logging.WARNING):
            binding.render_api(APITarget(gce_cloud), None, binding, changes)

        assert "concurrent change?" in caplog.text
        assert gce_cloud.resource_manager.set_calls == []

    def test_find_without_policy_is_absent(self, gce_cloud):
        binding, _ = declare()
        binding.project = "missing-project"
        context = CloudupContext(target=APITarget(gce_cloud))

        assert binding.find(context) is None

    @pytest.mark.parametrize(
        "field, value, message",
        [
            ("project", None, "project"),
            ("role", None, "role"),
            ("member_service_account", None, "member_service_account"),
        ],
    )
    def test_required_fields(self, field, value, message):
        binding, _ = declare()
        setattr(binding, field, value)
        with pytest.raises(RequiredFieldError, match=message):
            binding.check_changes(None, binding, ChangeSet())

    def test_member_email_is_required(self):
        binding = ProjectIAMBinding(
            name="b",
            project="p",
            role="roles/viewer",
            member_service_account=ServiceAccount(name="sa"),
        )
        with pytest.raises(RequiredFieldError, match="member_service_account.email"):
            binding.check_changes(None, binding, ChangeSet())

    @pytest.mark.asyncio
    async def test_render_to_terraform(self, make_executor, temp_dir):
        target = IaCTarget()
        await make_executor(CloudupContext(target=target)).run(declare())

        config = TerraformJsonSink(temp_dir / "out.tf.json").build(target.document)

        assert config["resource"]["google_project_iam_binding"]["control-plane-viewer"] == {
            "project": "test-project",
            "role": "roles/compute.viewer",
            "members": ["${google_service_account.control-plane.member}"],
        }
        assert config["resource"]["google_service_account"]["control-plane"] == {
            "account_id": "control-plane",
            "display_name": "Control plane",
        }


class TestServiceAccount:

    @pytest.mark.asyncio
    async def test_update_patches_changed_fields_only(self, gce_cloud, make_executor):
        gce_cloud.iam.accounts[EMAIL] = {"email": EMAIL, "displayName": "Old", "description": "same"}
        account = ServiceAccount(name="control-plane", email=EMAIL, display_name="New", description="same")

        report = await make_executor(CloudupContext(target=APITarget(gce_cloud))).run([account])

        assert report.result_for("ServiceAccount/control-plane").status == TaskStatus.UPDATED
        assert gce_cloud.iam.calls == ["patch:displayName"]
        assert gce_cloud.iam.accounts[EMAIL]["displayName"] == "New"

    def test_account_id(self):
        assert ServiceAccount(name="sa", email=EMAIL).account_id == "control-plane"
        assert ServiceAccount(name="sa").account_id is None
