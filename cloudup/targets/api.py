"""API target - renders by calling the live provider."""

import logging
from typing import Any

from cloudup.locks import KeyedLocks

from .base import Target, TargetKind

logger = logging.getLogger(__name__)


class APITarget(Target):
    """Target that mutates live cloud state through an injected provider client.

    Args:
        cloud: Provider client satisfying the capability protocols in cloudup.cloud
        locks: Keyed lock registry for non-atomic read-modify-write sections;
               a fresh registry is created when omitted

    Example:
        target = APITarget(cloud=my_aws_cloud)
        report = await Executor(CloudupContext(target=target)).run(tasks)
    """

    kind = TargetKind.API

    def __init__(self, cloud: Any, locks: KeyedLocks | None = None):
        self.cloud = cloud
        self.locks = locks or KeyedLocks()
        logger.info(f"Initialized API target for {type(cloud).__name__}")
