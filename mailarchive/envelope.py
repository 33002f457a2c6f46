"""Envelope (threading + addressing) header extraction.

Reads only headers from an already parsed ``email.message.Message``; the
body walk lives in :mod:`mailarchive.extractor`.
"""

from __future__ import annotations

import email.message
import email.utils
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

logger = structlog.get_logger()

TOPIC_ID_CROP = 30

_MSG_ID = re.compile(r"<[^<>\s]+>")


@dataclass
class Envelope:
    """Header values of one message, decoded to plain strings."""

    message_id: str
    topic_id: str
    subject: str
    topic_subject: str
    in_reply_to: str
    references: str
    from_address: str
    to: str
    cc: str
    date: str
    decoded_date: datetime | None
    content_type: str


def extract_envelope(
    msg: email.message.Message,
    *,
    crop_topic_ids: bool = True,
    date_formats: Sequence[str] = (),
) -> Envelope:
    """Extract the envelope of *msg*.

    ``topic_id`` comes from ``Thread-Index`` (optionally cropped), then the
    first id of ``References``, then the message id.  ``topic_subject``
    comes from ``Thread-Topic`` and falls back to ``Subject``.
    """
    message_id = header(msg, "Message-ID").strip()
    subject = header(msg, "Subject")
    references = header(msg, "References")
    date = header(msg, "Date")

    thread_index = header(msg, "Thread-Index").strip()
    if thread_index and crop_topic_ids:
        thread_index = thread_index[:TOPIC_ID_CROP]
    reference_ids = message_ids(references)
    topic_id = thread_index or (reference_ids[0] if reference_ids else "") or message_id

    return Envelope(
        message_id=message_id,
        topic_id=topic_id,
        subject=subject,
        topic_subject=header(msg, "Thread-Topic") or subject,
        in_reply_to=first_message_id(header(msg, "In-Reply-To")),
        references=references,
        from_address=header(msg, "From"),
        to=header(msg, "To"),
        cc=header(msg, "Cc"),
        date=date,
        decoded_date=decode_date(date, date_formats),
        content_type=msg.get_content_type(),
    )


def header(msg: email.message.Message, name: str) -> str:
    """Decoded header value, or the raw value when decoding fails, or ``""``."""
    try:
        value = msg.get(name)
    except (ValueError, TypeError, IndexError, AttributeError):
        logger.warning("header_decode_failed", header=name)
        for raw_name, raw_value in msg.raw_items():
            if raw_name.lower() == name.lower():
                return str(raw_value)
        return ""
    return "" if value is None else str(value)


def message_ids(value: str) -> list[str]:
    """All ``<id>`` tokens of a References-style header, in order."""
    return _MSG_ID.findall(value or "")


def first_message_id(value: str) -> str:
    """First ``<id>`` token of an In-Reply-To header, or the stripped raw value."""
    ids = message_ids(value)
    if ids:
        return ids[0]
    return (value or "").strip()


def decode_date(value: str, formats: Sequence[str] = ()) -> datetime | None:
    """Parse a Date header into an aware UTC datetime.

    RFC 2822 parsing is tried first; *formats* are ``strptime`` fallbacks
    (evaluated in the process locale).  Returns None when nothing matches.
    """
    if not value:
        return None
    decoded: datetime | None = None
    try:
        decoded = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        for fmt in formats:
            try:
                decoded = datetime.strptime(value.strip(), fmt)
                break
            except ValueError:
                continue
    if decoded is None:
        logger.debug("date_undecodable", date=value)
        return None
    if decoded.tzinfo is None:
        decoded = decoded.replace(tzinfo=UTC)
    return decoded.astimezone(UTC)
