"""Data models shared by every component of the mail archive."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field, computed_field

# Storage capacity contract: short identifier / subject fields and long
# free-text fields.
SHORT_FIELD_MAX = 254
LONG_FIELD_MAX = 65_499

DEFAULT_TYPE = "mail"


class Sensitivity(str, Enum):
    NORMAL = "normal"
    ENCRYPTED = "encrypted"


class SessionState(str, Enum):
    """Lifecycle of an ingestion session."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ConnectionErrorKind(str, Enum):
    """Classified connection-level failure of a mail source."""

    INVALID_PREFERENCES = "invalid_preferences"
    AUTHENTICATION_FAILED = "authentication_failed"
    FOLDER_NOT_FOUND = "folder_not_found"
    UNKNOWN_HOST = "unknown_host"
    CONNECTION_ERROR = "connection_error"
    ILLEGAL_STATE = "illegal_state"
    UNEXPECTED_FAILURE = "unexpected_failure"


class Attachment(BaseModel):
    """A binary part extracted from a MIME body."""

    filename: str = Field(description="Attachment filename (assigned when the part had none)")
    content_type: str = Field(description="MIME type (e.g. application/pdf)")
    content_id: str | None = Field(default=None, description="Content-ID without angle brackets")
    payload: bytes = Field(default=b"", repr=False, description="Decoded part content")


class Message(BaseModel):
    """One parsed email, possibly carrying embedded (attached) emails."""

    message_id: str = Field(description="Source-assigned unique key")
    topic_id: str = Field(description="Conversation key, rewritten during resolution")
    subject: str = Field(default="")
    topic_subject: str = Field(default="", description="Subject used for topic matching")
    in_reply_to: str = Field(default="")
    references: str = Field(default="", description="Raw References header")
    from_address: str = Field(default="", description="Raw From header")
    to: str = Field(default="", description="Raw To header")
    cc: str = Field(default="", description="Raw Cc header")
    date: str = Field(default="", description="Raw Date header")
    decoded_date: datetime | None = Field(default=None, description="Parsed Date header (UTC)")
    type: str = Field(default=DEFAULT_TYPE, description="Type classifier output")
    sensitivity: Sensitivity = Field(default=Sensitivity.NORMAL)
    body_text: str = Field(default="")
    body_html: str = Field(default="")
    attachments: list[Attachment] = Field(default_factory=list)
    inline_content_ids: dict[str, str] = Field(
        default_factory=dict,
        description="Content-ID -> attachment filename, for cid: rewriting",
    )
    embedded_messages: list[Message] = Field(default_factory=list)
    is_attached_mail: bool = Field(default=False)
    parent_message_id: str | None = Field(default=None)
    is_first_in_topic: bool = Field(default=False)
    tags: list[str] = Field(default_factory=list, description="Mailing-list tags")
    raw_ref: str | None = Field(default=None, description="URI of the archived raw EML")
    source: str | None = Field(default=None, description="Name of the mail source")


class Topic(BaseModel):
    """One reconstructed conversation."""

    topic_id: str
    subject: str = ""
    start_date: datetime | None = None
    last_update_date: datetime | None = None
    author: str = ""
    type: str = DEFAULT_TYPE
    tags: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class KnownTopic:
    """Known-Topic index projection."""

    location_ref: str
    subject: str


@dataclass(frozen=True)
class KnownMessage:
    """Known-Message index projection."""

    subject: str
    topic_id: str
    location_ref: str


@dataclass(frozen=True)
class MessageLink:
    """Stored threading headers of an archived message, read during the reply-chain walk."""

    in_reply_to: str
    topic_subject: str


class SourceReport(BaseModel):
    """Per-source counters of one session."""

    source: str
    seen: int = 0
    loaded: int = 0
    skipped: int = 0
    failed: int = 0
    error: ConnectionErrorKind | None = None


class SessionReport(BaseModel):
    """Best-effort summary of one ingestion session."""

    state: SessionState = SessionState.IDLE
    already_in_progress: bool = False
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    error: str | None = None
    sources: list[SourceReport] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def seen(self) -> int:
        return sum(s.seen for s in self.sources)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def loaded(self) -> int:
        return sum(s.loaded for s in self.sources)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def skipped(self) -> int:
        return sum(s.skipped for s in self.sources)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failed(self) -> int:
        return sum(s.failed for s in self.sources)


class ServiceStatus(str, Enum):
    """Lifecycle state of the long-running archive service."""

    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class HealthStatus(BaseModel):
    """Response body of the ``/health`` endpoint."""

    service_name: str
    status: ServiceStatus
    uptime_seconds: float
    session_state: SessionState
    session_in_progress: bool
    last_report: SessionReport | None = None


def _cut(value: str, limit: int) -> str:
    return value if len(value) <= limit else value[:limit]


def truncate_for_storage(message: Message) -> Message:
    """Apply the storage field-length policy in place (embedded messages included)."""
    message.message_id = _cut(message.message_id, SHORT_FIELD_MAX)
    message.topic_id = _cut(message.topic_id, SHORT_FIELD_MAX)
    message.subject = _cut(message.subject, SHORT_FIELD_MAX)
    message.topic_subject = _cut(message.topic_subject, SHORT_FIELD_MAX)
    if message.parent_message_id is not None:
        message.parent_message_id = _cut(message.parent_message_id, SHORT_FIELD_MAX)

    message.in_reply_to = _cut(message.in_reply_to, LONG_FIELD_MAX)
    message.references = _cut(message.references, LONG_FIELD_MAX)
    message.from_address = _cut(message.from_address, LONG_FIELD_MAX)
    message.to = _cut(message.to, LONG_FIELD_MAX)
    message.cc = _cut(message.cc, LONG_FIELD_MAX)
    message.body_text = _cut(message.body_text, LONG_FIELD_MAX)
    message.body_html = _cut(message.body_html, LONG_FIELD_MAX)

    for child in message.embedded_messages:
        truncate_for_storage(child)
    return message


Message.model_rebuild()
