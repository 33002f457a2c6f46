"""Shared test fixtures for the mail archive test suite."""

from __future__ import annotations

from email import encoders
from email.mime.base import MIMEBase
from email.mime.message import MIMEMessage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.message import Message as MIMEMessageType

import pytest

from mailarchive.config import (
    ArchiveConfig,
    MailingListRule,
    MailSourceConfig,
    PatternEntry,
    RetryConfig,
    S3Config,
    SessionConfig,
    TypeRule,
)
from mailarchive.index import SessionIndex
from mailarchive.store import InMemoryStore

DEFAULT_DATE = "Mon, 02 Jun 2025 12:00:00 +0000"


@pytest.fixture
def source_config() -> MailSourceConfig:
    return MailSourceConfig(
        name="corp",
        host="imap.test.com",
        protocol="imaps",
        username="testuser",
        password="testpass",
        folder="INBOX",
        max_messages=50,
    )


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(max_attempts=1, initial_wait_seconds=0, max_wait_seconds=0)


@pytest.fixture
def archive_config(source_config: MailSourceConfig, retry_config: RetryConfig) -> ArchiveConfig:
    return ArchiveConfig(
        sources=[source_config],
        types=[
            TypeRule(
                name="newsletter",
                patterns=[PatternEntry(fields=["from"], pattern=r"news@")],
            ),
        ],
        mailing_lists=[
            MailingListRule(pattern="dev@lists.example.com", display_name="Developers", tag="dev"),
        ],
        database_url="sqlite+aiosqlite://",
        session=SessionConfig(),
        retry=retry_config,
        s3=S3Config(bucket=""),
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def index() -> SessionIndex:
    return SessionIndex()


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------


def _set_headers(
    msg: MIMEMessageType,
    *,
    subject: str,
    from_addr: str,
    to_addr: str,
    message_id: str | None,
    date: str | None,
    in_reply_to: str | None = None,
    references: str | None = None,
    cc: str | None = None,
    thread_index: str | None = None,
    thread_topic: str | None = None,
) -> None:
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_addr
    if message_id is not None:
        msg["Message-ID"] = message_id
    if date is not None:
        msg["Date"] = date
    if in_reply_to is not None:
        msg["In-Reply-To"] = in_reply_to
    if references is not None:
        msg["References"] = references
    if cc is not None:
        msg["Cc"] = cc
    if thread_index is not None:
        msg["Thread-Index"] = thread_index
    if thread_topic is not None:
        msg["Thread-Topic"] = thread_topic


def build_plain_email(
    *,
    subject: str = "Test Subject",
    from_addr: str = "sender@example.com",
    to_addr: str = "recipient@example.com",
    body: str = "Hello, World!",
    message_id: str | None = "<test-001@example.com>",
    date: str | None = DEFAULT_DATE,
    **headers: str | None,
) -> bytes:
    """Build a simple plain-text email as raw bytes."""
    msg = MIMEText(body, "plain")
    _set_headers(
        msg,
        subject=subject,
        from_addr=from_addr,
        to_addr=to_addr,
        message_id=message_id,
        date=date,
        **headers,
    )
    return msg.as_bytes()


def build_html_email(*, body_html: str = "<p>Hello</p>", message_id: str = "<html-001@example.com>") -> bytes:
    msg = MIMEText(body_html, "html")
    _set_headers(
        msg,
        subject="HTML Email",
        from_addr="sender@example.com",
        to_addr="recipient@example.com",
        message_id=message_id,
        date=DEFAULT_DATE,
    )
    return msg.as_bytes()


def build_multipart_email(
    *,
    body_text: str = "Plain body",
    body_html: str = "<p>HTML body</p>",
    attachments: list[tuple[str, str, bytes]] | None = None,
    message_id: str = "<multi-001@example.com>",
) -> bytes:
    """Build a multipart email with text, HTML, and optional attachments."""
    msg = MIMEMultipart("mixed")
    _set_headers(
        msg,
        subject="Multipart Email",
        from_addr="sender@example.com",
        to_addr="recipient@example.com",
        message_id=message_id,
        date=DEFAULT_DATE,
    )

    # Text + HTML alternative
    alt = MIMEMultipart("alternative")
    alt.attach(MIMEText(body_text, "plain"))
    alt.attach(MIMEText(body_html, "html"))
    msg.attach(alt)

    for filename, content_type, payload in attachments or []:
        maintype, subtype = content_type.split("/", 1)
        part = MIMEBase(maintype, subtype)
        part.set_payload(payload)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    return msg.as_bytes()


def build_related_email(*, content_id: str = "logo123") -> bytes:
    """HTML body referencing an inline image through ``cid:``."""
    msg = MIMEMultipart("related")
    _set_headers(
        msg,
        subject="Inline image",
        from_addr="sender@example.com",
        to_addr="recipient@example.com",
        message_id="<related-001@example.com>",
        date=DEFAULT_DATE,
    )
    msg.attach(MIMEText(f'<p>Logo: <img src="cid:{content_id}"></p>', "html"))
    image = MIMEBase("image", "png")
    image.set_payload(b"\x89PNG fake image")
    encoders.encode_base64(image)
    image.add_header("Content-ID", f"<{content_id}>")
    image.add_header("Content-Disposition", "inline")
    msg.attach(image)
    return msg.as_bytes()


def build_forward_email(
    *,
    inner_message_id: str | None = "<inner-001@example.com>",
    inner_body: str = "Original text",
) -> bytes:
    """A message carrying another message as ``message/rfc822``."""
    inner = MIMEText(inner_body, "plain")
    _set_headers(
        inner,
        subject="Original subject",
        from_addr="original@example.com",
        to_addr="sender@example.com",
        message_id=inner_message_id,
        date="Sun, 01 Jun 2025 09:00:00 +0000",
    )

    outer = MIMEMultipart("mixed")
    _set_headers(
        outer,
        subject="Fw: Original subject",
        from_addr="sender@example.com",
        to_addr="recipient@example.com",
        message_id="<forward-001@example.com>",
        date=DEFAULT_DATE,
    )
    outer.attach(MIMEText("See the attached mail.", "plain"))
    outer.attach(MIMEMessage(inner))
    return outer.as_bytes()


def build_encrypted_email() -> bytes:
    msg = MIMEBase("application", "pkcs7-mime", name="smime.p7m", smime_type="enveloped-data")
    msg.set_payload(b"\x30\x80 encrypted bytes")
    encoders.encode_base64(msg)
    _set_headers(
        msg,
        subject="Secret",
        from_addr="sender@example.com",
        to_addr="recipient@example.com",
        message_id="<smime-001@example.com>",
        date=DEFAULT_DATE,
    )
    return msg.as_bytes()


def build_vcard_email(*, vcards: int = 2) -> bytes:
    """Multipart email carrying the sender's vCard *vcards* times."""
    msg = MIMEMultipart("mixed")
    _set_headers(
        msg,
        subject="With card",
        from_addr="sender@example.com",
        to_addr="recipient@example.com",
        message_id="<vcard-001@example.com>",
        date=DEFAULT_DATE,
    )
    msg.attach(MIMEText("Body text", "plain"))
    for n in range(vcards):
        card = MIMEText("BEGIN:VCARD\r\nFN:Sender\r\nEND:VCARD\r\n", "x-vcard")
        card.add_header("Content-Disposition", "attachment", filename=f"sender{n}.vcf")
        msg.attach(card)
    return msg.as_bytes()


@pytest.fixture
def plain_eml_bytes() -> bytes:
    return build_plain_email()


@pytest.fixture
def html_eml_bytes() -> bytes:
    return build_html_email()


@pytest.fixture
def multipart_eml_bytes() -> bytes:
    return build_multipart_email(
        attachments=[
            ("report.pdf", "application/pdf", b"%PDF-1.4 fake pdf content"),
            ("data.csv", "text/csv", b"col1,col2\na,b\n"),
        ],
    )
