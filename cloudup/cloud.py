"""
Cloud provider capabilities used by the bundled tasks.

Tasks never import a provider SDK directly: the API target carries a client
object satisfying one of the protocols below. AWS clients take and return
boto3-shaped keyword arguments and dicts (pagination is done by the client);
GCE clients mirror the resource manager and IAM REST resources.

Clients signal failures with ProviderError subclasses carrying the provider's
error code, so tasks can map specific codes to TryAgainLaterError.
"""

from typing import Any, Protocol


class ProviderError(Exception):
    """Error returned by a cloud provider API."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class NotFoundError(ProviderError):
    """The requested object does not exist."""

    def __init__(self, message: str, code: str = "NotFound"):
        super().__init__(code, message)


class AlreadyExistsError(ProviderError):
    """An object with the same identity already exists."""

    def __init__(self, message: str, code: str = "AlreadyExists"):
        super().__init__(code, message)


# AWS

class AutoscalingClient(Protocol):
    def describe_auto_scaling_groups(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_auto_scaling_group(self, **kwargs: Any) -> dict[str, Any]: ...
    def update_auto_scaling_group(self, **kwargs: Any) -> dict[str, Any]: ...
    def enable_metrics_collection(self, **kwargs: Any) -> dict[str, Any]: ...
    def disable_metrics_collection(self, **kwargs: Any) -> dict[str, Any]: ...
    def suspend_processes(self, **kwargs: Any) -> dict[str, Any]: ...
    def resume_processes(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_or_update_tags(self, **kwargs: Any) -> dict[str, Any]: ...
    def delete_tags(self, **kwargs: Any) -> dict[str, Any]: ...
    def attach_load_balancer_target_groups(self, **kwargs: Any) -> dict[str, Any]: ...
    def detach_load_balancer_target_groups(self, **kwargs: Any) -> dict[str, Any]: ...


class EC2Client(Protocol):
    def describe_subnets(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_subnet(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_tags(self, **kwargs: Any) -> dict[str, Any]: ...
    def describe_launch_template_versions(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_launch_template(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_launch_template_version(self, **kwargs: Any) -> dict[str, Any]: ...
    def modify_launch_template(self, **kwargs: Any) -> dict[str, Any]: ...


class ELBv2Client(Protocol):
    def describe_target_groups(self, **kwargs: Any) -> dict[str, Any]: ...
    def create_target_group(self, **kwargs: Any) -> dict[str, Any]: ...
    def modify_target_group(self, **kwargs: Any) -> dict[str, Any]: ...


class AWSCloud(Protocol):
    region: str
    autoscaling: AutoscalingClient
    ec2: EC2Client
    elbv2: ELBv2Client


# GCE

class ResourceManagerClient(Protocol):
    def get_iam_policy(self, project: str) -> dict[str, Any]:
        """Return {"bindings": [{"role", "members", "condition"?}], "etag", "version"}."""
        ...

    def set_iam_policy(self, project: str, policy: dict[str, Any]) -> dict[str, Any]: ...


class IAMClient(Protocol):
    def get_service_account(self, project: str, email: str) -> dict[str, Any]: ...

    def create_service_account(
        self, project: str, account_id: str, service_account: dict[str, Any]
    ) -> dict[str, Any]: ...

    def patch_service_account(
        self, project: str, email: str, service_account: dict[str, Any], update_mask: str
    ) -> dict[str, Any]: ...


class GCECloud(Protocol):
    project: str
    resource_manager: ResourceManagerClient
    iam: IAMClient
