"""
Exception taxonomy.

Every error raised on purpose by this package derives from ClassTableError,
so callers (the CLI, a chat bot) can catch one type and show its message.
"""

from __future__ import annotations

from typing import Any, Optional


class ClassTableError(Exception):
    """Base class for all classtable errors."""


class ImportFetchError(ClassTableError):
    """
    The WakeUp share API could not be reached or rejected the share code.

    `response` holds the decoded upstream answer (if any) so it can be
    shown to the user verbatim.
    """

    def __init__(self, message: str, response: Optional[Any] = None) -> None:
        super().__init__(message)
        self.response = response


class ImportParseError(ClassTableError):
    """The share payload (or one of its nested segments) is malformed."""


class MalformedTimeError(ClassTableError, ValueError):
    """A time-of-day value is not 'HH:MM'."""


class ScheduleNotFound(ClassTableError, LookupError):
    """The user has never imported a schedule."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"No schedule imported for user {user_id!r}")
        self.user_id = user_id


class StoreIOError(ClassTableError):
    """Reading or writing a stored document failed."""


class ScheduleFormatError(StoreIOError):
    """A stored schedule document exists but cannot be understood."""


class ConfigError(ClassTableError):
    """A CLASSTABLE_* environment variable holds an unusable value."""
