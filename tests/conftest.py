"""
Pytest configuration and fixtures for Cloudup tests.
"""

import os
import tempfile
from pathlib import Path

import pytest

from cloudup.context import CloudupContext
from cloudup.executor import Executor
from cloudup.settings import reload_settings
from cloudup.targets import APITarget, IaCTarget
from tests.fakes import FakeAWSCloud, FakeGCECloud, FakeWorld


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Isolate tests from CLOUDUP_* variables of the developer's environment."""
    for key in list(os.environ):
        if key.startswith("CLOUDUP_"):
            monkeypatch.delenv(key)
    yield reload_settings()
    # Restore the environment before re-reading it
    monkeypatch.undo()
    reload_settings()


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays and returns immediately."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def world():
    return FakeWorld()


@pytest.fixture
def api_context(world):
    return CloudupContext(target=APITarget(world))


@pytest.fixture
def iac_context():
    return CloudupContext(target=IaCTarget())


@pytest.fixture
def make_executor(sleep):
    """Build an executor with immediate, recorded retry sleeps."""

    def factory(context, **kwargs):
        kwargs.setdefault("sleep", sleep)
        kwargs.setdefault("retry_backoff", 1.0)
        kwargs.setdefault("retry_max_backoff", 30.0)
        return Executor(context, **kwargs)

    return factory


@pytest.fixture
def aws_cloud():
    return FakeAWSCloud()


@pytest.fixture
def gce_cloud():
    return FakeGCECloud()
