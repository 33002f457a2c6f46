"""Exception types raised inside the mail archive core."""

from __future__ import annotations

from .models import ConnectionErrorKind


class MailArchiveError(Exception):
    """Base exception for all mail archive errors."""


class MailSourceError(MailArchiveError):
    """Raised when a mail source cannot be reached, opened or read.

    Attributes:
        kind: classified failure, reported per source by the coordinator
    """

    def __init__(self, kind: ConnectionErrorKind, message: str = "") -> None:
        super().__init__(message or kind.value)
        self.kind = kind


class StoreError(MailArchiveError):
    """Raised when the persistence store rejects a read or a write."""


class SessionFatalError(MailArchiveError):
    """Raised when a session cannot start (e.g. the known indices fail to load)."""
