"""
Intercept Registry

Installs replacement implementations for named operation pairs on a
filesystem interface and hands back restore handles. Every policy
helper in ``mutatefs.policies`` is built on ``InterceptRegistry.install``.

Layered interceptions on one name are allowed. Each restore puts back
the implementation that was in place immediately before its own
install, so restoring out of order can strand later layers. The
registry keeps a per-name stack of records so that state is visible
through ``active()``, and ``restore_all()`` unwinds newest first.
"""

import itertools
from collections.abc import Sequence
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from structlog import get_logger

from mutatefs.config import Settings, get_settings
from mutatefs.filesystem import fs as default_fs
from mutatefs.models import MISSING, InterceptionRecord, Restore
from mutatefs.scheduler import Scheduler, TaskQueueScheduler

logger = get_logger(__name__)


ResultMutation = Callable[[BaseException | None, Any], Sequence | None]
ArgumentMutation = Callable[[list], Sequence]
Builder = Callable[[Callable, Callable], tuple[Callable, Callable]]


def apply_result_mutation(
    fn: ResultMutation,
    error: BaseException | None,
    data: Any,
) -> tuple[BaseException | None, Any]:
    """
    Run a result mutation function and resolve its return value.

    ``None`` keeps the (possibly mutated in place) values. A sequence
    replaces them: ``(error, data)``, or ``(error,)`` for no data.
    """
    mutated = fn(error, data)
    if mutated is None:
        return error, data

    if (
        isinstance(mutated, (str, bytes))
        or not isinstance(mutated, Sequence)
        or not 1 <= len(mutated) <= 2
    ):
        raise TypeError(
            f"Mutation function must return None or an (error, data) pair, got {mutated!r}"
        )

    if len(mutated) == 1:
        return mutated[0], None
    return mutated[0], mutated[1]


class InterceptRegistry:
    """
    Owns the interceptions installed on one filesystem interface.

    Usage:
        registry = InterceptRegistry(fs)

        restore = registry.mutate("stat", lambda error, st: [error, None])
        try:
            ...
        finally:
            restore()
    """

    def __init__(
        self,
        fs: Any,
        scheduler: Scheduler | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the registry.

        Args:
            fs: Interface exposing ``name`` and ``name + suffix`` pairs.
            scheduler: Scheduler for deferred completions. Defaults to
                the interface's own scheduler, if it has one.
            settings: Library settings. Defaults to the global instance.
        """
        self.fs = fs
        self.settings = settings or get_settings()
        self.scheduler = scheduler or getattr(fs, "scheduler", None) or TaskQueueScheduler()
        self.sync_suffix = getattr(fs, "sync_suffix", None) or self.settings.sync_suffix

        self._records: dict[str, list[InterceptionRecord]] = {}
        self._pristine: dict[str, tuple[Any, Any]] = {}
        self._sequence = itertools.count(1)

    # =========================================================================
    # Installation
    # =========================================================================

    def install(self, name: str, build: Builder, policy: str = "custom") -> Restore:
        """
        Replace both forms of ``name``.

        Args:
            name: Base operation name, e.g. ``"stat"``.
            build: Called with the current callback and blocking
                implementations; returns their replacements.
            policy: Label recorded for logging and ``active()``.

        Returns:
            Restore handle putting back the current implementations.
        """
        blocking_name = name + self.sync_suffix
        original_callback = getattr(self.fs, name)
        original_blocking = getattr(self.fs, blocking_name)

        callback_impl, blocking_impl = build(original_callback, original_blocking)

        own = self._own_attributes()
        record = InterceptionRecord(
            name=name,
            blocking_name=blocking_name,
            policy=policy,
            saved_callback=own.get(name, MISSING),
            saved_blocking=own.get(blocking_name, MISSING),
            sequence=next(self._sequence),
        )

        setattr(self.fs, name, callback_impl)
        setattr(self.fs, blocking_name, blocking_impl)

        if not self._records.get(name):
            self._pristine[name] = (record.saved_callback, record.saved_blocking)
        stack = self._records.setdefault(name, [])
        stack.append(record)

        logger.debug(
            "interception_installed",
            method=name,
            policy=policy,
            depth=len(stack),
        )

        return Restore(lambda: self._restore(record), label=f"{policy}:{name}")

    def _restore(self, record: InterceptionRecord) -> None:
        if record.restored:
            logger.warning(
                "interception_restore_skipped",
                method=record.name,
                policy=record.policy,
                reason="already restored",
            )
            return

        self._put_back(record.name, record.saved_callback)
        self._put_back(record.blocking_name, record.saved_blocking)
        record.restored = True

        stack = self._records.get(record.name, [])
        if record in stack:
            stack.remove(record)
        if not stack:
            self._records.pop(record.name, None)
            self._pristine.pop(record.name, None)

        logger.debug(
            "interception_restored",
            method=record.name,
            policy=record.policy,
            remaining=len(stack),
        )

    def _put_back(self, attribute: str, saved: Any) -> None:
        if saved is MISSING:
            if attribute in self._own_attributes():
                delattr(self.fs, attribute)
        else:
            setattr(self.fs, attribute, saved)

    def _own_attributes(self) -> dict[str, Any]:
        return getattr(self.fs, "__dict__", {})

    # =========================================================================
    # Primitives
    # =========================================================================

    def mutate(self, name: str, fn: ResultMutation) -> Restore:
        """
        Apply ``fn(error, data)`` to every result of ``name``.

        The callback form swaps the trailing callback for one that runs
        ``fn`` first. The blocking form captures the return value or the
        raised exception, runs ``fn``, then raises the resulting error
        if there is one and returns the data otherwise.
        """
        def build(original: Callable, original_blocking: Callable) -> tuple[Callable, Callable]:
            def callback_impl(*args: Any, **kwargs: Any) -> Any:
                *call_args, callback = args

                def mutated_callback(error: BaseException | None, data: Any = None) -> None:
                    error, data = apply_result_mutation(fn, error, data)
                    callback(error, data)

                return original(*call_args, mutated_callback, **kwargs)

            def blocking_impl(*args: Any, **kwargs: Any) -> Any:
                result = None
                error = None
                try:
                    result = original_blocking(*args, **kwargs)
                except Exception as e:
                    error = e

                error, result = apply_result_mutation(fn, error, result)
                if error is not None:
                    raise error
                return result

            return callback_impl, blocking_impl

        return self.install(name, build, policy="mutate")

    def mutate_args(self, name: str, fn: ArgumentMutation, policy: str = "mutate_args") -> Restore:
        """
        Rewrite the positional arguments of every call to ``name``.

        ``fn`` receives the arguments as a list (the callback form's list
        ends with the callback) and returns the list to forward.
        Keyword arguments and results pass through untouched.
        """
        def build(original: Callable, original_blocking: Callable) -> tuple[Callable, Callable]:
            def callback_impl(*args: Any, **kwargs: Any) -> Any:
                return original(*fn(list(args)), **kwargs)

            def blocking_impl(*args: Any, **kwargs: Any) -> Any:
                return original_blocking(*fn(list(args)), **kwargs)

            return callback_impl, blocking_impl

        return self.install(name, build, policy=policy)

    # =========================================================================
    # Inspection
    # =========================================================================

    def active(self) -> list[InterceptionRecord]:
        """Records of every interception not yet restored, oldest first."""
        records = [record for stack in self._records.values() for record in stack]
        return sorted(records, key=lambda record: record.sequence)

    def is_intercepted(self, name: str) -> bool:
        return bool(self._records.get(name))

    def restore_all(self) -> int:
        """
        Restore every active interception, newest first.

        Each intercepted name ends up with the implementation it had
        before its oldest active interception, even when layers were
        previously restored out of order.

        Returns:
            Number of interceptions restored.
        """
        records = self.active()
        pristine = dict(self._pristine)
        for record in reversed(records):
            self._restore(record)

        for name, (saved_callback, saved_blocking) in pristine.items():
            self._put_back(name, saved_callback)
            self._put_back(name + self.sync_suffix, saved_blocking)

        return len(records)

    @contextmanager
    def session(self) -> Iterator["InterceptRegistry"]:
        """Yield the registry and restore everything installed on exit."""
        try:
            yield self
        finally:
            self.restore_all()


# Registry over the process-wide interface - lazy loaded
_default_registry: InterceptRegistry | None = None


def get_default_registry() -> InterceptRegistry:
    """Get the registry bound to ``mutatefs.filesystem.fs``."""
    global _default_registry
    if _default_registry is None:
        _default_registry = InterceptRegistry(default_fs)
    return _default_registry
