"""
Pytest fixtures restoring interceptions at teardown.

Registered through the ``pytest11`` entry point.
"""

import pytest

from mutatefs.filesystem import CallbackFS
from mutatefs.interceptor import InterceptRegistry, get_default_registry
from mutatefs.scheduler import VirtualScheduler


@pytest.fixture
def mutate_fs():
    """Registry over the process-wide interface; restored after the test."""
    with get_default_registry().session() as registry:
        yield registry


@pytest.fixture
def virtual_registry():
    """Registry over a fresh interface driven by a virtual clock."""
    fs = CallbackFS(scheduler=VirtualScheduler())
    with InterceptRegistry(fs).session() as registry:
        yield registry
