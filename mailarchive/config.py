"""Mail archive configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
List-valued settings (sources, types, mailing lists) are given as JSON,
e.g. ``MAILARCHIVE_SOURCES='[{"name": "corp", "host": "imap.corp", ...}]'``.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings

MessageField = Literal["from", "to", "cc", "subject"]

DEFAULT_PORTS: dict[str, int] = {
    "imap": 143,
    "imaps": 993,
    "pop3": 110,
    "pop3s": 995,
}


class MailSourceConfig(BaseModel):
    """Connection descriptor for one remote mailbox."""

    name: str = Field(description="Unique source name, used in logs and reports")
    host: str = Field(default="", description="Mail server hostname")
    port: int | None = Field(
        default=None,
        description="Mail server port (protocol default when unset)",
    )
    protocol: str = Field(default="imaps", description="imap, imaps, pop3 or pop3s")
    username: str = Field(default="", description="Login username")
    password: SecretStr = Field(default=SecretStr(""), description="Login password")
    folder: str = Field(default="INBOX", description="Mailbox folder to read")
    max_messages: int = Field(
        default=100,
        ge=0,
        description="Maximum number of unseen messages loaded per pass",
    )

    @property
    def effective_port(self) -> int | None:
        if self.port is not None:
            return self.port
        return DEFAULT_PORTS.get(self.protocol.lower())

    def __str__(self) -> str:
        return f"{self.name} ({self.protocol}://{self.username}@{self.host}/{self.folder})"


class PatternEntry(BaseModel):
    """One ``(fieldSet, pattern)`` pair of a type rule."""

    fields: list[MessageField] = Field(min_length=1, description="Fields searched by the regex")
    pattern: str = Field(description="Regular expression searched in each field")


class TypeRule(BaseModel):
    """A message type, assigned when all of its pattern entries match."""

    name: str = Field(description="Type name assigned to matching messages")
    icon: str = Field(default="", description="Icon shown for this type")
    patterns: list[PatternEntry] = Field(
        min_length=1,
        description="Pattern entries, all of which must match",
    )


class MailingListRule(BaseModel):
    """Tags messages whose address fields contain ``pattern``."""

    pattern: str = Field(min_length=1, description="Substring searched in from/to/cc")
    display_name: str = Field(default="", description="Human readable list name")
    tag: str = Field(description="Tag applied to matching messages and topics")


class SessionConfig(BaseSettings):
    """Ingestion session settings."""

    model_config = {"env_prefix": "SESSION_"}

    max_messages: int | None = Field(
        default=None,
        description="Session-wide cap on messages per source (overrides descriptors when lower)",
    )
    connect_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout applied to every mail server network operation",
    )
    poll_interval_seconds: float = Field(
        default=300.0,
        description="Seconds between sessions in serve mode",
    )
    crop_topic_ids: bool = Field(
        default=True,
        description="Crop Thread-Index based topic ids to 30 characters",
    )
    date_formats: list[str] = Field(
        default_factory=lambda: ["%a, %d %b %Y %H:%M:%S %z", "%d %b %Y %H:%M:%S %z"],
        description="strptime fallbacks for Date headers RFC 2822 parsing rejects",
    )
    attachment_url_template: str | None = Field(
        default=None,
        description="Template used to rewrite cid: references, e.g. /attachments/{message_id}/{filename}",
    )
    health_port: int = Field(default=8080, description="Port for the serve-mode health endpoints")


class RetryConfig(BaseSettings):
    """Retry / backoff settings for mail server connections, driven by Tenacity."""

    model_config = {"env_prefix": "RETRY_"}

    max_attempts: int = Field(default=3, description="Maximum connection attempts per source")
    initial_wait_seconds: float = Field(
        default=1.0,
        description="Initial backoff wait in seconds",
    )
    max_wait_seconds: float = Field(
        default=10.0,
        description="Maximum backoff wait in seconds",
    )
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class S3Config(BaseSettings):
    """S3 storage settings for the raw EML archive."""

    model_config = {"env_prefix": "S3_"}

    bucket: str = Field(default="", description="S3 bucket name (empty disables the archive)")
    prefix: str = Field(
        default="raw/mailarchive",
        description="S3 key prefix for raw EML uploads",
    )
    region: str = Field(default="us-east-1", description="AWS region")
    endpoint_url: str | None = Field(
        default=None,
        description="Custom S3 endpoint URL (e.g. for MinIO)",
    )


class ArchiveConfig(BaseSettings):
    """Root configuration of the mail archive.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "MAILARCHIVE_"}

    sources: list[MailSourceConfig] = Field(
        default_factory=list,
        description="Mail sources, visited in order",
    )
    types: list[TypeRule] = Field(
        default_factory=list,
        description="Type rules, evaluated in order",
    )
    mailing_lists: list[MailingListRule] = Field(
        default_factory=list,
        description="Mailing-list tagging rules",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///mailarchive.db",
        description="Async SQLAlchemy URL of the archive store",
    )
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(
        default=True,
        description="Use JSON log output (True for prod, False for dev)",
    )

    session: SessionConfig = Field(default_factory=SessionConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    s3: S3Config = Field(default_factory=S3Config)

    def source(self, name: str) -> MailSourceConfig | None:
        for descriptor in self.sources:
            if descriptor.name == name:
                return descriptor
        return None
