"""
Callback Filesystem Interface

The filesystem object that interceptions are installed on. Every
operation comes in two forms sharing a base name:

- ``fs.stat(path, callback)`` runs on the scheduler and later calls
  ``callback(error, data)``.
- ``fs.stat_sync(path)`` runs immediately and returns or raises.

Blocking forms delegate to the ``os`` module. Callback forms always
run the class-level blocking implementation, so an interception
installed on one form never leaks into the other.
"""

import os
from typing import Any, Callable

from mutatefs.scheduler import Scheduler, TaskQueueScheduler


_OPEN_FLAGS: dict[str, int] = {
    "r": os.O_RDONLY,
    "r+": os.O_RDWR,
    "w": os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
    "w+": os.O_RDWR | os.O_CREAT | os.O_TRUNC,
    "wx": os.O_WRONLY | os.O_CREAT | os.O_TRUNC | os.O_EXCL,
    "a": os.O_WRONLY | os.O_CREAT | os.O_APPEND,
    "a+": os.O_RDWR | os.O_CREAT | os.O_APPEND,
    "ax": os.O_WRONLY | os.O_CREAT | os.O_APPEND | os.O_EXCL,
}


def _open_flags(flags: str | int) -> int:
    if isinstance(flags, int):
        return flags
    try:
        return _OPEN_FLAGS[flags]
    except KeyError:
        raise ValueError(f"Unknown open flags: {flags!r}") from None


def _callback_form(name: str) -> Callable:
    """Build the callback form of ``name`` on top of its blocking form."""

    def operation(self: "CallbackFS", *args: Any, **kwargs: Any) -> None:
        if not args or not callable(args[-1]):
            raise TypeError(f"{name}() requires a trailing callback")
        *call_args, callback = args
        blocking = getattr(type(self), name + self.sync_suffix)

        def complete() -> None:
            try:
                data = blocking(self, *call_args, **kwargs)
            except Exception as e:
                callback(e, None)
                return
            callback(None, data)

        self.scheduler.call_soon(complete)

    operation.__name__ = name
    operation.__qualname__ = f"CallbackFS.{name}"
    operation.__doc__ = f"Callback form of ``{name}_sync``; calls ``callback(error, data)``."
    return operation


class CallbackFS:
    """
    Filesystem interface with paired callback and blocking operations.

    Usage:
        fs = CallbackFS()

        fd = fs.open_sync("data.bin", "r")
        fs.fstat(fd, lambda error, st: print(error, st))
        fs.scheduler.run()
    """

    sync_suffix = "_sync"

    operations = (
        "open",
        "close",
        "read",
        "write",
        "stat",
        "lstat",
        "fstat",
        "readlink",
        "unlink",
        "read_file",
        "write_file",
    )

    def __init__(self, scheduler: Scheduler | None = None):
        self.scheduler = scheduler or TaskQueueScheduler()

    # =========================================================================
    # Descriptor Operations
    # =========================================================================

    def open_sync(self, path: str | os.PathLike, flags: str | int = "r", mode: int = 0o666) -> int:
        """Open ``path`` and return a file descriptor."""
        return os.open(path, _open_flags(flags), mode)

    def close_sync(self, fd: int) -> None:
        os.close(fd)

    def read_sync(
        self,
        fd: int,
        buffer: bytearray | memoryview,
        offset: int = 0,
        length: int | None = None,
        position: int | None = None,
    ) -> int:
        """
        Read from ``fd`` into ``buffer``.

        Args:
            fd: File descriptor to read from.
            buffer: Writable buffer receiving the data.
            offset: Index in ``buffer`` to start writing at.
            length: Number of bytes requested. Defaults to the space
                left in ``buffer`` after ``offset``.
            position: File offset to read from. ``None`` reads from
                the current file position and advances it.

        Returns:
            Number of bytes read.
        """
        if length is None:
            length = len(buffer) - offset
        if offset < 0 or length < 0 or offset + length > len(buffer):
            raise ValueError(
                f"Read of {length} bytes at offset {offset} exceeds buffer of {len(buffer)}"
            )

        if position is None:
            chunk = os.read(fd, length)
        else:
            chunk = os.pread(fd, length, position)

        buffer[offset:offset + len(chunk)] = chunk
        return len(chunk)

    def write_sync(
        self,
        fd: int,
        data: bytes | bytearray | memoryview,
        offset: int = 0,
        length: int | None = None,
        position: int | None = None,
    ) -> int:
        """Write ``data[offset:offset + length]`` to ``fd``; returns bytes written."""
        view = memoryview(data)
        if length is None:
            length = len(view) - offset
        view = view[offset:offset + length]

        if position is None:
            return os.write(fd, view)
        return os.pwrite(fd, view, position)

    def fstat_sync(self, fd: int) -> os.stat_result:
        return os.fstat(fd)

    # =========================================================================
    # Path Operations
    # =========================================================================

    def stat_sync(self, path: str | os.PathLike) -> os.stat_result:
        return os.stat(path)

    def lstat_sync(self, path: str | os.PathLike) -> os.stat_result:
        return os.lstat(path)

    def readlink_sync(self, path: str | os.PathLike) -> str:
        return os.readlink(path)

    def unlink_sync(self, path: str | os.PathLike) -> None:
        os.unlink(path)

    def read_file_sync(self, path: str | os.PathLike) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    def write_file_sync(self, path: str | os.PathLike, data: str | bytes) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        with open(path, "wb") as f:
            f.write(data)

    # =========================================================================
    # Callback Forms
    # =========================================================================

    open = _callback_form("open")
    close = _callback_form("close")
    read = _callback_form("read")
    write = _callback_form("write")
    fstat = _callback_form("fstat")
    stat = _callback_form("stat")
    lstat = _callback_form("lstat")
    readlink = _callback_form("readlink")
    unlink = _callback_form("unlink")
    read_file = _callback_form("read_file")
    write_file = _callback_form("write_file")


# Process-wide interface used by the module-level helpers
fs = CallbackFS()
