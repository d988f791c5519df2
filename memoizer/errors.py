"""
Error classes raised by memoizer.

Everything derives from `MemoizeError`, so the command line driver can turn
any failure into an exit message.
"""


class MemoizeError(Exception):
    pass


class PreconditionViolation(MemoizeError):
    """A matched function cannot be rewritten (no body, unnamed or variadic params)."""


class EditConflict(MemoizeError):
    """Two edits touch overlapping text, or an edit falls outside the buffer."""


class ConfigError(MemoizeError):
    pass


class ParseError(MemoizeError):
    """libclang could not build a usable translation unit."""
