"""Mail sources: protocol implementations and the descriptor-based factory."""

from __future__ import annotations

from ..config import MailSourceConfig, RetryConfig
from ..errors import MailSourceError
from ..models import ConnectionErrorKind
from .base import FetchedMail, MailSource, classify_error
from .imap import ImapSource
from .pop3 import Pop3Source

_SOURCE_TYPES: dict[str, type[MailSource]] = {
    "imap": ImapSource,
    "imaps": ImapSource,
    "pop3": Pop3Source,
    "pop3s": Pop3Source,
}


def open_mail_source(
    descriptor: MailSourceConfig,
    *,
    timeout: float = 30.0,
    retry: RetryConfig | None = None,
    readonly: bool = False,
) -> MailSource:
    """Build the (not yet connected) source for *descriptor*.

    Raises :class:`MailSourceError` with ``INVALID_PREFERENCES`` when the
    descriptor lacks a host or user, or names an unsupported protocol.
    """
    if not descriptor.host or not descriptor.username:
        raise MailSourceError(
            ConnectionErrorKind.INVALID_PREFERENCES,
            f"Source {descriptor.name!r} needs a host and a username",
        )
    source_type = _SOURCE_TYPES.get(descriptor.protocol.lower())
    if source_type is None:
        raise MailSourceError(
            ConnectionErrorKind.INVALID_PREFERENCES,
            f"Source {descriptor.name!r} uses unsupported protocol {descriptor.protocol!r}",
        )
    return source_type(descriptor, timeout=timeout, retry=retry, readonly=readonly)


__all__ = [
    "FetchedMail",
    "ImapSource",
    "MailSource",
    "Pop3Source",
    "classify_error",
    "open_mail_source",
]
