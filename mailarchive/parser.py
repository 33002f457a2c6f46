"""Raw RFC 822 bytes → :class:`~mailarchive.models.Message`.

Combines the envelope headers, the MIME content walk, the HTML-to-text
fallback and the storage field-length policy.  Embedded ``message/rfc822``
parts become child messages flagged as attached mails.
"""

from __future__ import annotations

import email
import email.message
import email.policy
import hashlib
from collections.abc import Callable

import structlog

from .config import SessionConfig
from .envelope import Envelope, extract_envelope
from .extractor import ContentExtractor, ExtractedContent
from .html import html_to_text, rewrite_cid_references
from .models import Attachment, Message, truncate_for_storage

logger = structlog.get_logger()


def generated_message_id(raw_bytes: bytes) -> str:
    """Stable id for messages without a Message-ID header."""
    return f"generated-{hashlib.sha256(raw_bytes).hexdigest()[:32]}"


class MessageParser:
    """Stateless parser: raw bytes → truncated, storage-ready Message."""

    def __init__(
        self,
        config: SessionConfig | None = None,
        *,
        extractor: ContentExtractor | None = None,
        html_renderer: Callable[[str], str] = html_to_text,
    ) -> None:
        self._config = config or SessionConfig()
        self._extractor = extractor or ContentExtractor()
        self._render_html = html_renderer

    def parse(self, raw_bytes: bytes, *, source: str | None = None) -> Message:
        msg = email.message_from_bytes(raw_bytes, policy=email.policy.default)
        envelope = self._envelope(msg)
        message_id = envelope.message_id or generated_message_id(raw_bytes)
        if not envelope.message_id:
            logger.info("message_id_generated", message_id=message_id, source=source)

        content = self._extractor.extract(msg)
        message = self._build(envelope, content, message_id, source)
        return truncate_for_storage(message)

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def _envelope(self, msg: email.message.Message) -> Envelope:
        return extract_envelope(
            msg,
            crop_topic_ids=self._config.crop_topic_ids,
            date_formats=self._config.date_formats,
        )

    def _build(
        self,
        envelope: Envelope,
        content: ExtractedContent,
        message_id: str,
        source: str | None,
    ) -> Message:
        body_text = content.plain_text
        body_html = content.html
        if not body_text.strip() and body_html:
            body_text = self._html_fallback(body_html, message_id)

        inline_content_ids = content.content_id_map
        template = self._config.attachment_url_template
        if template and body_html:
            body_html = rewrite_cid_references(body_html, inline_content_ids, template, message_id)

        message = Message(
            message_id=message_id,
            topic_id=envelope.topic_id or message_id,
            subject=envelope.subject,
            topic_subject=envelope.topic_subject,
            in_reply_to=envelope.in_reply_to,
            references=envelope.references,
            from_address=envelope.from_address,
            to=envelope.to,
            cc=envelope.cc,
            date=envelope.date,
            decoded_date=envelope.decoded_date,
            sensitivity=content.sensitivity,
            body_text=body_text,
            body_html=body_html,
            attachments=[
                Attachment(
                    filename=a.filename,
                    content_type=a.content_type,
                    content_id=a.content_id,
                    payload=a.payload,
                )
                for a in content.attachments
            ],
            inline_content_ids=inline_content_ids,
            source=source,
        )

        for n, embedded in enumerate(content.embedded, start=1):
            child_envelope = self._envelope(embedded.message)
            child_id = child_envelope.message_id or f"{message_id}/attached-{n}"
            child = self._build(child_envelope, embedded.content, child_id, source)
            child.is_attached_mail = True
            child.parent_message_id = message_id
            message.embedded_messages.append(child)

        return message

    def _html_fallback(self, html: str, message_id: str) -> str:
        try:
            return self._render_html(html)
        except Exception:
            logger.exception("html_to_text_failed", message_id=message_id)
            return ""
