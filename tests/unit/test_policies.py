"""
Tests for Interception Policies
"""

import errno
import os
import stat
import time

import pytest

from mutatefs import policies
from mutatefs.config import Settings
from mutatefs.errors import InvalidStatTypeError
from mutatefs.filesystem import CallbackFS
from mutatefs.interceptor import InterceptRegistry
from mutatefs.models import StatType
from mutatefs.scheduler import TaskQueueScheduler


PACKAGE_DIR = os.path.dirname(os.path.abspath(policies.__file__)) + os.sep


def collect(results):
    return lambda error, data=None: results.append((error, data))


class TestPass:
    """Test suite for fixed-result substitution."""

    def test_blocking_form_returns_data(self, registry, vfs, tmp_path):
        """Any call returns the data, whatever the arguments."""
        policies.pass_(registry, "stat", "hello")

        assert vfs.stat_sync("nope") == "hello"
        assert vfs.stat_sync(tmp_path, "extra", flag=True) == "hello"

    def test_other_operations_untouched(self, registry, vfs):
        """Only the named operation is replaced."""
        policies.pass_(registry, "stat", "hello")

        with pytest.raises(FileNotFoundError):
            vfs.lstat_sync("nope")

    def test_callback_form_is_deferred(self, registry, vfs, scheduler):
        """The callback form completes on a later tick with no error."""
        policies.pass_(registry, "stat", "hello")
        results = []

        vfs.stat("nope", collect(results))
        assert results == []

        scheduler.run()
        assert results == [(None, "hello")]


class TestFail:
    """Test suite for fixed-failure substitution."""

    def test_blocking_form_raises_exact_error(self, registry, vfs, sample_file):
        """The same error object is raised, carrying a call-site capture."""
        error = OSError("not open")
        policies.fail(registry, "open", error)

        with pytest.raises(OSError) as exc:
            vfs.open_sync(sample_file, "r")

        assert exc.value is error
        assert str(exc.value) == "not open"
        assert exc.value.callstack.startswith("Traceback (most recent call last):")
        assert "test_blocking_form_raises_exact_error" in exc.value.callstack
        assert exc.value.callstack.rstrip().endswith("OSError: not open")

    def test_callstack_excludes_library_frames(self, registry, vfs, sample_file):
        """The capture ends at the caller, not inside the replacement."""
        error = OSError("not open")
        policies.fail(registry, "open", error)

        with pytest.raises(OSError):
            vfs.open_sync(sample_file)

        assert PACKAGE_DIR not in error.callstack

    def test_callstack_excludes_layered_library_frames(self, registry, vfs, scheduler):
        """Interceptions stacked over a failure add no frames to the capture."""
        error = OSError("buried")
        policies.fail(registry, "stat", error)
        registry.mutate("stat", lambda e, d: None)
        policies.delay(registry, "stat", 0)

        with pytest.raises(OSError):
            vfs.stat_sync("a")

        assert PACKAGE_DIR not in error.callstack
        last_frame = [line for line in error.callstack.splitlines() if line.startswith("  File ")][-1]
        assert "test_callstack_excludes_layered_library_frames" in last_frame

        results = []
        vfs.stat("a", collect(results))
        scheduler.run()

        assert results == [(error, None)]
        assert PACKAGE_DIR not in error.callstack

    def test_callback_form_delivers_error(self, registry, vfs, scheduler, sample_file):
        """The callback form yields (error, None) on a later tick."""
        error = OSError("not open")
        policies.fail(registry, "open", error)
        results = []

        vfs.open(sample_file, "r", collect(results))
        assert results == []
        scheduler.run()

        assert results == [(error, None)]
        assert "test_callback_form_delivers_error" in error.callstack

    def test_each_call_recaptures(self, registry, vfs):
        """Reusing the error object keeps only the latest capture."""
        error = OSError("gone")
        policies.fail(registry, "stat", error)

        def first_caller():
            with pytest.raises(OSError):
                vfs.stat_sync("a")

        def second_caller():
            with pytest.raises(OSError):
                vfs.stat_sync("b")

        first_caller()
        assert "first_caller" in error.callstack
        second_caller()
        assert "second_caller" in error.callstack
        assert "first_caller" not in error.callstack

    def test_capture_disabled(self, vfs):
        """No callstack is attached when capture is turned off."""
        registry = InterceptRegistry(vfs, settings=Settings(capture_callstack=False))
        error = OSError("quiet")
        restore = policies.fail(registry, "stat", error)
        try:
            with pytest.raises(OSError):
                vfs.stat_sync("x")
        finally:
            restore()

        assert not hasattr(error, "callstack")

    def test_capture_limit(self, vfs):
        """callstack_limit bounds the number of captured frames."""
        registry = InterceptRegistry(vfs, settings=Settings(callstack_limit=1))
        error = OSError("short")
        restore = policies.fail(registry, "stat", error)
        try:
            with pytest.raises(OSError):
                vfs.stat_sync("x")
        finally:
            restore()

        frames = [line for line in error.callstack.splitlines() if line.startswith("  File ")]
        assert len(frames) == 1
        assert "test_capture_limit" in error.callstack


class TestStatComposition:
    """Test suite for stat, lstat and fstat helpers."""

    def test_stat_fail(self, registry, vfs, scheduler, sample_file):
        """All three stat operations fail with the same error."""
        error = OSError("oof")
        restore = policies.stat_fail(registry, error)

        with pytest.raises(OSError, match="oof"):
            vfs.lstat_sync(sample_file)
        with pytest.raises(OSError, match="oof"):
            vfs.stat_sync(sample_file)

        fd = vfs.open_sync(sample_file)
        results = []
        try:
            vfs.fstat(fd, collect(results))
            scheduler.run()
        finally:
            vfs.close_sync(fd)

        assert results == [(error, None)]

        restore()
        assert registry.active() == []
        assert vfs.stat_sync(sample_file) == os.stat(sample_file)

    def test_stat_mutate(self, registry, vfs, scheduler, sample_file):
        """One mutation function applies to every stat operation."""
        policies.stat_mutate(registry, lambda error, st: [None, "this is fine"])

        assert vfs.lstat_sync(sample_file) == "this is fine"
        assert vfs.stat_sync("does not exist") == "this is fine"

        results = []
        vfs.fstat(99999, collect(results))
        scheduler.run()
        assert results == [(None, "this is fine")]

    def test_stat_mutate_returns_one_restore(self, registry, vfs):
        """The combined restore removes all three interceptions."""
        restore = policies.stat_mutate(registry, lambda error, st: None)
        assert [r.name for r in registry.active()] == ["stat", "lstat", "fstat"]

        restore()

        assert registry.active() == []
        for name in ("stat", "lstat", "fstat"):
            assert name not in vars(vfs)


class TestStatType:
    """Test suite for file type substitution."""

    def test_invalid_type_installs_nothing(self, registry):
        """Unknown names fail before any interception is installed."""
        with pytest.raises(InvalidStatTypeError, match="invalid type: wtf"):
            policies.stat_type(registry, "wtf")

        assert registry.active() == []

    def test_invalid_type_is_type_error(self, registry):
        """The validation error is also a TypeError."""
        with pytest.raises(TypeError):
            policies.stat_type(registry, None)

    @pytest.mark.parametrize("kind", list(StatType))
    def test_forces_type(self, registry, vfs, scheduler, sample_file, kind):
        """Successful results report the forced type; errors stay errors."""
        policies.stat_type(registry, kind.value)
        real = os.stat(sample_file)

        with pytest.raises(FileNotFoundError):
            vfs.stat_sync(sample_file.parent / "does not exist")

        forced = vfs.stat_sync(sample_file)
        assert kind.matches(forced.st_mode)
        assert stat.S_IMODE(forced.st_mode) == stat.S_IMODE(real.st_mode)
        assert forced.st_size == real.st_size
        assert forced.st_mtime == real.st_mtime

        fd = vfs.open_sync(sample_file)
        results = []
        try:
            vfs.lstat(sample_file, collect(results))
            vfs.fstat(99999, collect(results))
            scheduler.run()
            assert kind.matches(vfs.fstat_sync(fd).st_mode)
        finally:
            vfs.close_sync(fd)

        (lstat_error, lstat_result), (fstat_error, fstat_result) = results
        assert lstat_error is None
        assert kind.matches(lstat_result.st_mode)
        assert fstat_error.errno == errno.EBADF
        assert fstat_result is None

    def test_regular_file_only_reports_file(self, registry, vfs, tmp_path):
        """A directory forced to File is no longer a directory."""
        policies.stat_type(registry, StatType.FILE)

        mode = vfs.stat_sync(tmp_path).st_mode

        assert stat.S_ISREG(mode)
        assert not stat.S_ISDIR(mode)
        assert not stat.S_ISLNK(mode)

    def test_non_stat_results_left_alone(self, registry, vfs):
        """Results without st_mode pass through unchanged."""
        policies.pass_(registry, "stat", "plain")
        policies.stat_type(registry, "Socket")

        assert vfs.stat_sync("x") == "plain"


class TestZenoRead:
    """Test suite for short reads."""

    def test_halves_requested_length(self, registry, vfs, scheduler, sample_file):
        """Both forms read half of what was asked for."""
        policies.zeno_read(registry)
        fd = vfs.open_sync(sample_file)
        buffer = bytearray(100)
        results = []
        try:
            assert vfs.read_sync(fd, buffer, 0, 100, 0) == 50
            vfs.read(fd, buffer, 0, 100, 0, collect(results))
            scheduler.run()
        finally:
            vfs.close_sync(fd)

        assert results == [(None, 50)]

    def test_defaults(self, registry, vfs, sample_file):
        """Omitted offset, length and position are filled in before halving."""
        policies.zeno_read(registry)
        fd = vfs.open_sync(sample_file)
        try:
            buffer = bytearray(100)
            assert vfs.read_sync(fd, buffer) == 50
            assert vfs.read_sync(fd, buffer, 10) == 45
            assert vfs.read_sync(fd, buffer, 0, 10, None) == 5
        finally:
            vfs.close_sync(fd)

    def test_small_lengths_untouched(self, registry, vfs, scheduler, tmp_path):
        """Lengths of 1 and 0 are never split."""
        one_byte = tmp_path / "one-byte"
        one_byte.write_bytes(b"1")
        policies.zeno_read(registry)

        fd = vfs.open_sync(one_byte)
        buffer = bytearray(4)
        results = []
        try:
            assert vfs.read_sync(fd, buffer, 0, 0, 0) == 0
            assert vfs.read_sync(fd, buffer, 0, 1, 0) == 1
            vfs.read(fd, buffer, 0, 1, 0, collect(results))
            scheduler.run()
        finally:
            vfs.close_sync(fd)

        assert results == [(None, 1)]
        assert buffer[0:1] == b"1"

    def test_keyword_arguments(self, registry, vfs, scheduler, sample_file):
        """Reads passing offset, length or position by keyword still work."""
        fd = vfs.open_sync(sample_file)
        buffer = bytearray(100)
        results = []
        try:
            assert vfs.read_sync(fd, buffer, length=10, position=0) == 10

            policies.zeno_read(registry)

            assert vfs.read_sync(fd, buffer, length=10, position=0) == 5
            assert vfs.read_sync(fd, buffer, 0, length=40, position=0) == 20
            assert vfs.read_sync(fd, buffer, offset=90, position=0) == 5
            assert vfs.read_sync(fd=fd, buffer=buffer, position=0) == 50
            assert vfs.read_sync(fd, buffer, 0, 8, position=0) == 4
            vfs.read(fd, buffer, collect(results), length=30, position=0)
            scheduler.run()
        finally:
            vfs.close_sync(fd)

        assert results == [(None, 15)]
        assert buffer[0:4] == b"0123"


class TestDelay:
    """Test suite for latency injection."""

    def test_blocking_form_waits(self, registry, vfs, scheduler, sample_file):
        """The blocking form returns no earlier than the deadline."""
        real = os.stat(sample_file)
        policies.pass_(registry, "stat", real)
        policies.delay(registry, "stat", 100)

        before = scheduler.now()
        assert vfs.stat_sync("whatever") == real
        assert scheduler.now() - before >= 0.1

    def test_callback_form_waits(self, registry, vfs, scheduler, sample_file):
        """The callback fires no earlier than the deadline."""
        policies.delay(registry, "stat", 250)
        completed = []

        before = scheduler.now()
        vfs.stat(sample_file, lambda error, st: completed.append((error, st, scheduler.now())))

        scheduler.advance(0.2)
        assert completed == []
        scheduler.run()

        error, st, at = completed[0]
        assert error is None
        assert st == os.stat(sample_file)
        assert at - before >= 0.25

    def test_errors_are_delayed_too(self, registry, vfs, scheduler, tmp_path):
        """Real failures are re-raised after the delay."""
        policies.delay(registry, "stat", 50)

        before = scheduler.now()
        with pytest.raises(FileNotFoundError):
            vfs.stat_sync(tmp_path / "nope")
        assert scheduler.now() - before >= 0.05

    def test_negative_delay_rejected(self, registry):
        """Negative durations are rejected before installing."""
        with pytest.raises(ValueError):
            policies.delay(registry, "stat", -1)

        assert registry.active() == []

    def test_real_clock(self, sample_file):
        """Wall-clock time is respected on both forms."""
        scheduler = TaskQueueScheduler()
        vfs = CallbackFS(scheduler=scheduler)
        registry = InterceptRegistry(vfs, settings=Settings())

        with registry.session():
            policies.delay(registry, "stat", 100)

            before = time.monotonic()
            vfs.stat_sync(sample_file)
            assert time.monotonic() - before >= 0.1

            completed = []
            before_async = time.monotonic()
            vfs.stat(sample_file, lambda error, st: completed.append(time.monotonic()))
            scheduler.run()
            assert completed[0] - before_async >= 0.1
