"""
Interception Models

Data types shared by the registry and the policy helpers: the file
type table used by ``stat_type``, the record kept for every active
interception, and the restore handle returned to callers.
"""

import stat
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Callable


class StatType(str, Enum):
    """File types that ``stat_type`` can force onto stat results."""

    FILE = "File"
    DIRECTORY = "Directory"
    CHARACTER_DEVICE = "CharacterDevice"
    BLOCK_DEVICE = "BlockDevice"
    FIFO = "FIFO"
    SYMBOLIC_LINK = "SymbolicLink"
    SOCKET = "Socket"

    @property
    def mode_bits(self) -> int:
        """The ``S_IF*`` bit pattern for this type."""
        return _MODE_BITS[self]

    def matches(self, mode: int) -> bool:
        """Whether ``mode`` carries this file type."""
        return stat.S_IFMT(mode) == self.mode_bits


_MODE_BITS: dict[StatType, int] = {
    StatType.FILE: stat.S_IFREG,
    StatType.DIRECTORY: stat.S_IFDIR,
    StatType.CHARACTER_DEVICE: stat.S_IFCHR,
    StatType.BLOCK_DEVICE: stat.S_IFBLK,
    StatType.FIFO: stat.S_IFIFO,
    StatType.SYMBOLIC_LINK: stat.S_IFLNK,
    StatType.SOCKET: stat.S_IFSOCK,
}


# Marks an operation that was resolved from the interface's class rather
# than stored on the instance itself.
MISSING: Any = object()


@dataclass
class InterceptionRecord:
    """
    One installed interception of a named operation pair.

    Holds whatever was installed immediately before this interception so
    the restore handle can put it back.
    """

    name: str
    blocking_name: str
    policy: str
    saved_callback: Any = MISSING
    saved_blocking: Any = MISSING
    sequence: int = 0
    installed_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    restored: bool = False


class Restore:
    """
    Zero-argument handle that undoes an interception.

    Also usable as a context manager:

        with mutatefs.fail("open", OSError(errno.EACCES, "nope")):
            ...
    """

    def __init__(self, undo: Callable[[], None], label: str = "restore"):
        self._undo = undo
        self.label = label

    def __call__(self) -> None:
        self._undo()

    def __enter__(self) -> "Restore":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self()
        return False

    def __repr__(self) -> str:
        return f"<Restore {self.label}>"

    @classmethod
    def combine(cls, *restores: "Restore", label: str = "combined") -> "Restore":
        """
        Build one handle restoring every part, newest first.

        Every part runs even if an earlier one raises; the first error
        is re-raised afterwards.
        """
        def undo() -> None:
            errors: list[Exception] = []
            for restore in reversed(restores):
                try:
                    restore()
                except Exception as e:
                    errors.append(e)
            if errors:
                raise errors[0]

        return cls(undo, label)
