"""
mutatefs

Makes a filesystem interface misbehave on demand for tests: short
reads, forced failures, misreported file types, injected latency and
arbitrary mutation of results. Every helper returns a restore handle
that undoes the interception.

The module-level helpers act on the process-wide interface ``fs``:

    import mutatefs
    from mutatefs import fs

    restore = mutatefs.fail("open", OSError(errno.EACCES, "not open"))
    try:
        fs.open_sync("setup.cfg", "r")
    finally:
        restore()
"""

from typing import Any

from mutatefs import policies
from mutatefs.errors import FaultPlanError, InvalidStatTypeError, MutateFSError
from mutatefs.fault_plan import FaultKind, FaultPlan, FaultSpec
from mutatefs.filesystem import CallbackFS, fs
from mutatefs.interceptor import (
    ArgumentMutation,
    InterceptRegistry,
    ResultMutation,
    get_default_registry,
)
from mutatefs.models import InterceptionRecord, Restore, StatType
from mutatefs.scheduler import (
    AsyncioScheduler,
    Scheduler,
    TaskQueueScheduler,
    VirtualScheduler,
)


def zeno_read() -> Restore:
    """Make ``fs.read`` ask for half of every requested length above 1."""
    return policies.zeno_read(get_default_registry())


def stat_type(type_name: StatType | str) -> Restore:
    """Make successful stat calls report ``type_name`` as the file type."""
    return policies.stat_type(get_default_registry(), type_name)


def stat_fail(error: BaseException) -> Restore:
    """Make stat, lstat and fstat fail with ``error``."""
    return policies.stat_fail(get_default_registry(), error)


def pass_(method: str, data: Any) -> Restore:
    """Make ``method`` succeed with ``data`` regardless of arguments."""
    return policies.pass_(get_default_registry(), method, data)


passthrough = pass_


def fail(method: str, error: BaseException) -> Restore:
    """Make ``method`` fail with ``error`` regardless of arguments."""
    return policies.fail(get_default_registry(), method, error)


def stat_mutate(fn: ResultMutation) -> Restore:
    """Apply ``fn(error, data)`` to stat, lstat and fstat results."""
    return policies.stat_mutate(get_default_registry(), fn)


def mutate_args(method: str, fn: ArgumentMutation) -> Restore:
    """Rewrite the positional arguments of every call to ``method``."""
    return get_default_registry().mutate_args(method, fn)


def mutate(method: str, fn: ResultMutation) -> Restore:
    """Apply ``fn(error, data)`` to every result of ``method``."""
    return get_default_registry().mutate(method, fn)


def delay(method: str, ms: float) -> Restore:
    """Make every call to ``method`` take at least ``ms`` milliseconds."""
    return policies.delay(get_default_registry(), method, ms)


def restore_all() -> int:
    """Undo every interception on the process-wide interface."""
    return get_default_registry().restore_all()


__all__ = [
    "ArgumentMutation",
    "AsyncioScheduler",
    "CallbackFS",
    "FaultKind",
    "FaultPlan",
    "FaultPlanError",
    "FaultSpec",
    "InterceptRegistry",
    "InterceptionRecord",
    "InvalidStatTypeError",
    "MutateFSError",
    "Restore",
    "ResultMutation",
    "Scheduler",
    "StatType",
    "TaskQueueScheduler",
    "VirtualScheduler",
    "delay",
    "fail",
    "fs",
    "get_default_registry",
    "mutate",
    "mutate_args",
    "pass_",
    "passthrough",
    "restore_all",
    "stat_fail",
    "stat_mutate",
    "stat_type",
    "zeno_read",
]
