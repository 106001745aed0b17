"""
mutatefs Errors

Exceptions raised by the interception helpers themselves. Forced
failures installed with ``fail``/``stat_fail`` are delivered as the
caller's own error objects and never wrapped in these.
"""


class MutateFSError(Exception):
    """Base class for errors raised by mutatefs."""
    pass


class InvalidStatTypeError(MutateFSError, TypeError):
    """Unknown file type name passed to ``stat_type``."""
    pass


class FaultPlanError(MutateFSError, ValueError):
    """A fault plan could not be parsed or validated."""
    pass
