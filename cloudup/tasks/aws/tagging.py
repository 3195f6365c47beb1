"""Helpers for converting between tag maps and AWS tag lists."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cloudup.context import CloudupContext

# Tags managed by AWS itself; never reported as actual state
RESERVED_TAG_PREFIXES = ("aws:",)


def with_cluster_tags(context: "CloudupContext", tags: dict[str, str] | None) -> dict[str, str] | None:
    """Merge the cluster tags under the task's own tags (task tags win).

    None when there are no tags at all.
    """
    merged = {**context.cluster_tags, **(tags or {})}
    return merged or None


def to_aws_tags(tags: dict[str, str] | None) -> list[dict[str, str]]:
    return [{"Key": key, "Value": value} for key, value in sorted((tags or {}).items())]


def from_aws_tags(tags: list[dict[str, Any]] | None) -> dict[str, str] | None:
    """Tag map from an AWS tag list; None when the resource carries no tags."""
    if not tags:
        return None
    return {
        tag["Key"]: tag.get("Value", "")
        for tag in tags
        if not tag["Key"].startswith(RESERVED_TAG_PREFIXES)
    }


def tag_specifications(resource_type: str, tags: dict[str, str] | None) -> list[dict[str, Any]]:
    """TagSpecifications argument for EC2 create calls."""
    if not tags:
        return []
    return [{"ResourceType": resource_type, "Tags": to_aws_tags(tags)}]
