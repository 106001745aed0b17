"""
Interception Policies

Ready-made interceptions built on ``InterceptRegistry``:

- pass_: every call succeeds with fixed data
- fail: every call fails with a fixed error
- delay: completion takes at least N milliseconds
- stat_mutate / stat_fail / stat_type: apply to stat, lstat and fstat
- zeno_read: every read asks for half as many bytes

Each helper takes the registry first and returns a ``Restore``.
"""

import os
import stat
import traceback
from typing import Any, Callable

from structlog import get_logger

from mutatefs.errors import InvalidStatTypeError
from mutatefs.interceptor import InterceptRegistry, ResultMutation
from mutatefs.models import Restore, StatType

logger = get_logger(__name__)


STAT_OPERATIONS = ("stat", "lstat", "fstat")

# Frames from files under this directory are left out of callstack captures
_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__)) + os.sep


# =============================================================================
# Fixed Results
# =============================================================================

def pass_(registry: InterceptRegistry, method: str, data: Any) -> Restore:
    """
    Make every call to ``method`` succeed with ``data``.

    The callback form completes on a later scheduler tick with
    ``(None, data)``; the blocking form returns ``data``.
    """
    scheduler = registry.scheduler

    def build(original: Callable, original_blocking: Callable) -> tuple[Callable, Callable]:
        def callback_impl(*args: Any, **kwargs: Any) -> None:
            callback = args[-1]
            scheduler.call_soon(callback, None, data)

        def blocking_impl(*args: Any, **kwargs: Any) -> Any:
            return data

        return callback_impl, blocking_impl

    return registry.install(method, build, policy="pass")


def _capture_callstack(error: BaseException, limit: int | None) -> str:
    """Format the current call stack, minus this package's frames, as a traceback."""
    frames = traceback.extract_stack()
    while frames and os.path.abspath(frames[-1].filename).startswith(_PACKAGE_DIR):
        frames.pop()
    if limit is not None:
        frames = frames[-limit:]

    return (
        "Traceback (most recent call last):\n"
        + "".join(traceback.format_list(frames))
        + "".join(traceback.format_exception_only(type(error), error))
    )


def fail(registry: InterceptRegistry, method: str, error: BaseException) -> Restore:
    """
    Make every call to ``method`` fail with exactly ``error``.

    Each failing call captures its own call site and stores it on
    ``error.callstack``. The error object is shared, so only the most
    recent capture is visible.
    """
    scheduler = registry.scheduler
    settings = registry.settings

    def capture() -> str | None:
        if not settings.capture_callstack:
            return None
        return _capture_callstack(error, settings.callstack_limit)

    def deliver(callstack: str | None) -> None:
        if callstack is not None:
            error.callstack = callstack
        logger.debug(
            "forced_failure",
            method=method,
            error_type=type(error).__name__,
        )

    def build(original: Callable, original_blocking: Callable) -> tuple[Callable, Callable]:
        def callback_impl(*args: Any, **kwargs: Any) -> None:
            callback = args[-1]
            callstack = capture()

            def complete() -> None:
                deliver(callstack)
                callback(error, None)

            scheduler.call_soon(complete)

        def blocking_impl(*args: Any, **kwargs: Any) -> Any:
            deliver(capture())
            raise error

        return callback_impl, blocking_impl

    return registry.install(method, build, policy="fail")


# =============================================================================
# Timing
# =============================================================================

def delay(registry: InterceptRegistry, method: str, ms: float) -> Restore:
    """
    Make every call to ``method`` take at least ``ms`` milliseconds.

    The deadline is taken when the call is issued. Results and errors
    from the real call are delivered unchanged.
    """
    if ms < 0:
        raise ValueError(f"Delay must be non-negative, got {ms}")

    scheduler = registry.scheduler
    seconds = ms / 1000

    def build(original: Callable, original_blocking: Callable) -> tuple[Callable, Callable]:
        def callback_impl(*args: Any, **kwargs: Any) -> Any:
            *call_args, callback = args
            deadline = scheduler.now() + seconds

            def delayed_callback(error: BaseException | None, data: Any = None) -> None:
                scheduler.call_later(deadline - scheduler.now(), callback, error, data)

            return original(*call_args, delayed_callback, **kwargs)

        def blocking_impl(*args: Any, **kwargs: Any) -> Any:
            deadline = scheduler.now() + seconds
            try:
                return original_blocking(*args, **kwargs)
            finally:
                scheduler.sleep(deadline - scheduler.now())

        return callback_impl, blocking_impl

    return registry.install(method, build, policy="delay")


# =============================================================================
# Stat Composition
# =============================================================================

def _install_each(installers: list[Callable[[], Restore]], label: str) -> Restore:
    """Run installers in order; if one raises, undo the ones already installed."""
    restores: list[Restore] = []
    try:
        for install in installers:
            restores.append(install())
    except Exception:
        Restore.combine(*restores)()
        raise
    return Restore.combine(*restores, label=label)


def stat_mutate(registry: InterceptRegistry, fn: ResultMutation) -> Restore:
    """Apply ``mutate`` with ``fn`` to stat, lstat and fstat."""
    return _install_each(
        [lambda name=name: registry.mutate(name, fn) for name in STAT_OPERATIONS],
        label="stat_mutate",
    )


def stat_fail(registry: InterceptRegistry, error: BaseException) -> Restore:
    """Apply ``fail`` with ``error`` to stat, lstat and fstat."""
    return _install_each(
        [lambda name=name: fail(registry, name, error) for name in STAT_OPERATIONS],
        label="stat_fail",
    )


def _with_file_type(result: Any, type_bits: int) -> Any:
    mode = (result.st_mode ^ stat.S_IFMT(result.st_mode)) | type_bits
    if isinstance(result, os.stat_result):
        # stat_result is immutable; rebuild it keeping every other field
        cls, (values, extra) = result.__reduce__()
        values = list(values)
        values[stat.ST_MODE] = mode
        return cls(values, extra)

    result.st_mode = mode
    return result


def stat_type(registry: InterceptRegistry, type_name: StatType | str) -> Restore:
    """
    Make successful stat, lstat and fstat calls report ``type_name``.

    Only the file type bits of ``st_mode`` are replaced; permission
    bits and every other field are kept. Failed calls are untouched.

    Raises:
        InvalidStatTypeError: ``type_name`` is not a ``StatType`` value.
            Nothing is installed in that case.
    """
    try:
        kind = StatType(type_name)
    except ValueError:
        raise InvalidStatTypeError(f"invalid type: {type_name}") from None

    type_bits = kind.mode_bits

    def force_type(error: BaseException | None, result: Any) -> tuple | None:
        if error is not None or not hasattr(result, "st_mode"):
            return None
        return error, _with_file_type(result, type_bits)

    return stat_mutate(registry, force_type)


# =============================================================================
# Short Reads
# =============================================================================

_READ_PARAMETERS = ("fd", "buffer", "offset", "length", "position")
_LENGTH_INDEX = _READ_PARAMETERS.index("length")


def _halve_read_length(args: list, kwargs: dict) -> tuple[list, dict]:
    """
    Halve the requested length of a read call.

    ``args`` and ``kwargs`` follow ``read_sync(fd, buffer, offset,
    length, position)`` and may split the parameters any way the caller
    did. A missing length is the space left in the buffer. Lengths of 0
    and 1 are left alone so a read can always make progress.
    """
    args = list(args)
    kwargs = dict(kwargs)
    bound = dict(zip(_READ_PARAMETERS, args))
    bound.update(kwargs)

    offset = bound.get("offset", 0)
    length = bound.get("length")
    if length is None:
        length = len(bound["buffer"]) - offset
    if length > 1:
        length //= 2

    if len(args) > _LENGTH_INDEX:
        args[_LENGTH_INDEX] = length
    else:
        kwargs["length"] = length
    return args, kwargs


def zeno_read(registry: InterceptRegistry) -> Restore:
    """Make every ``read`` ask for half the bytes it requested."""

    def build(original: Callable, original_blocking: Callable) -> tuple[Callable, Callable]:
        def callback_impl(*args: Any, **kwargs: Any) -> Any:
            *call_args, callback = args
            call_args, kwargs = _halve_read_length(call_args, kwargs)
            return original(*call_args, callback, **kwargs)

        def blocking_impl(*args: Any, **kwargs: Any) -> Any:
            call_args, kwargs = _halve_read_length(args, kwargs)
            return original_blocking(*call_args, **kwargs)

        return callback_impl, blocking_impl

    return registry.install("read", build, policy="zeno_read")
