"""Recursive MIME content extraction.

Walks a MIME tree depth-first and returns an immutable
:class:`ExtractedContent` (text, HTML, attachments, inline content-ids,
embedded messages, sensitivity).  The walk has no side effects other than
logging; turning the result into a :class:`~mailarchive.models.Message`
is done by :mod:`mailarchive.parser`.
"""

from __future__ import annotations

import email.message
import mimetypes
import re
from dataclasses import dataclass, field

import structlog

from .models import Sensitivity

logger = structlog.get_logger()

ENCRYPTED_TEXT = (
    "<<<This e-mail was encrypted. Text content and attachments of encrypted e-mails are not "
    "published in the mail archive to avoid disclosure of restricted or confidential information.>>>"
)
ENCRYPTED_HTML = (
    "<i>&lt;&lt;&lt;This e-mail was encrypted. Text content and attachments of encrypted e-mails "
    "are not published in the mail archive to avoid disclosure of restricted or confidential "
    "information.&gt;&gt;&gt;</i>"
)
EXTRACTION_FAILED_TEXT = "Failed to get mail content"

VCARD_MARKER = "BEGIN:VCARD"

ENCRYPTED_CONTENT_TYPES = frozenset({
    "multipart/encrypted",
    "application/pkcs7-mime",
    "application/x-pkcs7-mime",
})
NON_BODY_TEXT_TYPES = frozenset({"text/html", "text/xml"})

_UNSAFE_FILENAME_CHARS = re.compile(r"[^\w.\-]")


@dataclass(frozen=True)
class ExtractedAttachment:
    """A binary part routed to the attachment list."""

    filename: str
    content_type: str
    content_id: str | None
    payload: bytes = field(repr=False)


@dataclass(frozen=True)
class EmbeddedMessage:
    """A ``message/rfc822`` part: the inner message and its own extraction."""

    message: email.message.EmailMessage
    content: ExtractedContent


@dataclass(frozen=True)
class ExtractedContent:
    """Immutable result of a MIME walk, merged positionally across siblings."""

    text_parts: tuple[str, ...] = ()
    html_parts: tuple[str, ...] = ()
    vcard: str = ""
    attachments: tuple[ExtractedAttachment, ...] = ()
    inline_content_ids: tuple[tuple[str, str], ...] = ()
    embedded: tuple[EmbeddedMessage, ...] = ()
    sensitivity: Sensitivity = Sensitivity.NORMAL

    @property
    def plain_text(self) -> str:
        text = "\n".join(part for part in self.text_parts if part)
        # At most one vCard: reply chains tend to repeat the sender's card.
        if self.vcard and VCARD_MARKER not in text.upper():
            text = f"{text}\n{self.vcard}" if text else self.vcard
        return text

    @property
    def html(self) -> str:
        return "".join(self.html_parts)

    @property
    def content_id_map(self) -> dict[str, str]:
        return dict(self.inline_content_ids)

    def merge(self, other: ExtractedContent) -> ExtractedContent:
        encrypted = Sensitivity.ENCRYPTED in (self.sensitivity, other.sensitivity)
        return ExtractedContent(
            text_parts=self.text_parts + other.text_parts,
            html_parts=self.html_parts + other.html_parts,
            vcard=self.vcard or other.vcard,
            attachments=self.attachments + other.attachments,
            inline_content_ids=self.inline_content_ids + other.inline_content_ids,
            embedded=self.embedded + other.embedded,
            sensitivity=Sensitivity.ENCRYPTED if encrypted else Sensitivity.NORMAL,
        )


ENCRYPTED_CONTENT = ExtractedContent(
    text_parts=(ENCRYPTED_TEXT,),
    html_parts=(ENCRYPTED_HTML,),
    sensitivity=Sensitivity.ENCRYPTED,
)


class ContentExtractor:
    """Stateless MIME walker: parsed message → :class:`ExtractedContent`."""

    def extract(self, msg: email.message.EmailMessage) -> ExtractedContent:
        """Extract *msg*; a failure of the whole walk yields a diagnostic text."""
        try:
            return self._walk(msg)
        except Exception:
            logger.exception("mail_content_extraction_failed", content_type=_safe_type(msg))
            return ExtractedContent(text_parts=(EXTRACTION_FAILED_TEXT,))

    # ------------------------------------------------------------------
    # Tree walk
    # ------------------------------------------------------------------

    def _walk(self, part: email.message.EmailMessage) -> ExtractedContent:
        content_type = part.get_content_type()

        if content_type in ENCRYPTED_CONTENT_TYPES:
            logger.debug("encrypted_part_skipped", content_type=content_type)
            return ENCRYPTED_CONTENT
        if content_type == "message/rfc822":
            return self._embedded(part)
        if part.is_multipart():
            result = ExtractedContent()
            for child in part.iter_parts():
                result = result.merge(self._walk_child(child))
            return result
        return self._leaf(part)

    def _walk_child(self, child: email.message.EmailMessage) -> ExtractedContent:
        try:
            return self._walk(child)
        except Exception:
            logger.exception("mime_part_extraction_failed", content_type=_safe_type(child))
            return ExtractedContent()

    def _embedded(self, part: email.message.EmailMessage) -> ExtractedContent:
        inner = part.get_content()
        if not isinstance(inner, email.message.Message):
            return ExtractedContent()
        content = self._walk(inner)
        return ExtractedContent(
            text_parts=(content.plain_text,),
            embedded=(EmbeddedMessage(message=inner, content=content),),
        )

    def _leaf(self, part: email.message.EmailMessage) -> ExtractedContent:
        content_type = part.get_content_type()
        maintype = part.get_content_maintype()
        filename = part.get_filename()
        content_id = _content_id(part)

        is_attachment = (
            bool(filename)
            or part.get_content_disposition() == "attachment"
            or maintype != "text"
        )
        if is_attachment:
            name = filename or _assigned_filename(content_type, content_id)
            attachment = ExtractedAttachment(
                filename=name,
                content_type=content_type,
                content_id=content_id,
                payload=part.get_payload(decode=True) or b"",
            )
            vcard = decode_text(part) if "vcard" in content_type else ""
            return ExtractedContent(
                vcard=vcard,
                attachments=(attachment,),
                inline_content_ids=((content_id, name),) if content_id else (),
            )

        if content_type == "text/html":
            return ExtractedContent(html_parts=(decode_text(part),))
        if content_type in NON_BODY_TEXT_TYPES:
            return ExtractedContent()
        return ExtractedContent(text_parts=(decode_text(part),))


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def decode_text(part: email.message.Message) -> str:
    """Decoded text of a leaf part, tolerating unknown or lying charsets."""
    try:
        content = part.get_content()  # type: ignore[attr-defined]
    except (LookupError, UnicodeError, ValueError, AttributeError):
        payload = part.get_payload(decode=True) or b""
        charset = part.get_content_charset() or "utf-8"
        try:
            return payload.decode(charset, errors="replace")
        except LookupError:
            return payload.decode("utf-8", errors="replace")
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace")
    return str(content)


def _content_id(part: email.message.Message) -> str | None:
    value = part.get("Content-ID")
    if not value:
        return None
    cid = str(value).strip().strip("<>").strip()
    return cid or None


def _assigned_filename(content_type: str, content_id: str | None) -> str:
    extension = mimetypes.guess_extension(content_type) or ".bin"
    base = _UNSAFE_FILENAME_CHARS.sub("_", content_id) if content_id else "attachment"
    return base if base.endswith(extension) else f"{base}{extension}"


def _safe_type(part: email.message.Message) -> str:
    try:
        return part.get_content_type()
    except Exception:
        return "unknown"
