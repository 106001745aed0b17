"""
Shared fixtures for mutatefs tests.
"""

import pytest

from mutatefs.config import Settings
from mutatefs.filesystem import CallbackFS
from mutatefs.interceptor import InterceptRegistry
from mutatefs.scheduler import VirtualScheduler


@pytest.fixture
def scheduler():
    """Scheduler on a virtual clock."""
    return VirtualScheduler()


@pytest.fixture
def vfs(scheduler):
    """Interface whose callback forms run on the virtual scheduler."""
    return CallbackFS(scheduler=scheduler)


@pytest.fixture
def registry(vfs):
    """Registry over the virtual interface; restored after each test."""
    registry = InterceptRegistry(vfs, settings=Settings())
    yield registry
    registry.restore_all()


@pytest.fixture
def sample_file(tmp_path):
    """A 100 byte regular file."""
    path = tmp_path / "sample.txt"
    path.write_bytes(b"0123456789" * 10)
    return path
