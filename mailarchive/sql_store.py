"""SQLAlchemy async implementation of :class:`~mailarchive.store.Store`."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import JSON, Boolean, ForeignKey, LargeBinary, String, Text, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.pool import StaticPool

from .errors import StoreError
from .models import (
    SHORT_FIELD_MAX,
    KnownMessage,
    KnownTopic,
    Message,
    MessageLink,
    Topic,
)
from .store import Store

logger = structlog.get_logger()


class Base(DeclarativeBase):
    pass


class TopicRecord(Base):
    __tablename__ = "topics"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    topic_id: Mapped[str] = mapped_column(String(SHORT_FIELD_MAX), unique=True, nullable=False)
    subject: Mapped[str] = mapped_column(String(SHORT_FIELD_MAX), nullable=False, default="")
    start_date: Mapped[datetime | None] = mapped_column()
    last_update_date: Mapped[datetime | None] = mapped_column()
    author: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(SHORT_FIELD_MAX), nullable=False)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)


class MessageRecord(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(String(SHORT_FIELD_MAX), unique=True, nullable=False)
    topic_id: Mapped[str] = mapped_column(String(SHORT_FIELD_MAX), index=True, nullable=False)
    subject: Mapped[str] = mapped_column(String(SHORT_FIELD_MAX), nullable=False, default="")
    topic_subject: Mapped[str] = mapped_column(String(SHORT_FIELD_MAX), nullable=False, default="")
    in_reply_to: Mapped[str] = mapped_column(Text, nullable=False, default="")
    references: Mapped[str] = mapped_column(Text, nullable=False, default="")
    from_address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    to: Mapped[str] = mapped_column(Text, nullable=False, default="")
    cc: Mapped[str] = mapped_column(Text, nullable=False, default="")
    date: Mapped[str] = mapped_column(Text, nullable=False, default="")
    decoded_date: Mapped[datetime | None] = mapped_column()
    type: Mapped[str] = mapped_column(String(SHORT_FIELD_MAX), nullable=False)
    sensitivity: Mapped[str] = mapped_column(String(32), nullable=False)
    body_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    body_html: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_attached_mail: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    parent_message_id: Mapped[str | None] = mapped_column(String(SHORT_FIELD_MAX))
    is_first_in_topic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    raw_ref: Mapped[str | None] = mapped_column(Text)
    source: Mapped[str | None] = mapped_column(String(SHORT_FIELD_MAX))

    attachments: Mapped[list[AttachmentRecord]] = relationship(
        back_populates="message",
        cascade="all, delete-orphan",
    )


class AttachmentRecord(Base):
    __tablename__ = "attachments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    message_pk: Mapped[int] = mapped_column(
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
    )
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(Text, nullable=False)
    content_id: Mapped[str | None] = mapped_column(Text)
    payload: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    message: Mapped[MessageRecord] = relationship(back_populates="attachments")


_TOPIC_FIELDS = frozenset({"subject", "start_date", "last_update_date", "author", "type", "tags"})


def make_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite") and (url.endswith("://") or ":memory:" in url):
        # One shared connection, otherwise every session sees an empty database.
        return create_async_engine(url, echo=False, poolclass=StaticPool)
    return create_async_engine(url, echo=False)


class SqlStore(Store):
    """Relational store with ``topics``, ``messages`` and ``attachments`` tables.

    Works with any async SQLAlchemy URL; SQLite through ``aiosqlite`` is the
    default.  Call :meth:`create_schema` once before first use.
    """

    def __init__(self, database_url: str) -> None:
        self._engine = make_engine(database_url)
        self._session = async_sessionmaker(self._engine, class_=AsyncSession, expire_on_commit=False)

    async def create_schema(self) -> None:
        async with self._errors("create_schema"):
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def _errors(self, operation: str, **context: Any) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            logger.error("store_operation_failed", operation=operation, error=str(exc), **context)
            raise StoreError(f"{operation} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Index loads
    # ------------------------------------------------------------------

    async def load_known_topics(self) -> dict[str, KnownTopic]:
        async with self._errors("load_known_topics"), self._session() as session:
            rows = await session.execute(select(TopicRecord.id, TopicRecord.topic_id, TopicRecord.subject))
            return {
                topic_id: KnownTopic(location_ref=f"topics/{pk}", subject=subject)
                for pk, topic_id, subject in rows
            }

    async def load_known_messages(self) -> dict[str, KnownMessage]:
        async with self._errors("load_known_messages"), self._session() as session:
            rows = await session.execute(
                select(
                    MessageRecord.id,
                    MessageRecord.message_id,
                    MessageRecord.subject,
                    MessageRecord.topic_id,
                )
            )
            return {
                message_id: KnownMessage(subject=subject, topic_id=topic_id, location_ref=f"messages/{pk}")
                for pk, message_id, subject, topic_id in rows
            }

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    async def create_topic(self, topic: Topic) -> str:
        record = TopicRecord(
            topic_id=topic.topic_id,
            subject=topic.subject,
            start_date=topic.start_date,
            last_update_date=topic.last_update_date,
            author=topic.author,
            type=topic.type,
            tags=list(topic.tags),
        )
        async with self._errors("create_topic", topic_id=topic.topic_id), self._session() as session:
            session.add(record)
            await session.commit()
            return f"topics/{record.id}"

    async def update_topic(self, topic_id: str, fields: dict[str, Any]) -> None:
        unknown = set(fields) - _TOPIC_FIELDS
        if unknown:
            raise StoreError(f"Cannot update topic fields {sorted(unknown)}")
        if not fields:
            return
        async with self._errors("update_topic", topic_id=topic_id), self._session() as session:
            result = await session.execute(
                update(TopicRecord).where(TopicRecord.topic_id == topic_id).values(**fields)
            )
            await session.commit()
        if result.rowcount == 0:
            raise StoreError(f"Unknown topic {topic_id!r}")

    async def load_topic(self, topic_id: str) -> Topic | None:
        async with self._errors("load_topic", topic_id=topic_id), self._session() as session:
            record = await session.scalar(select(TopicRecord).where(TopicRecord.topic_id == topic_id))
        if record is None:
            return None
        return Topic(
            topic_id=record.topic_id,
            subject=record.subject,
            start_date=_as_utc(record.start_date),
            last_update_date=_as_utc(record.last_update_date),
            author=record.author,
            type=record.type,
            tags=list(record.tags or []),
        )

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def create_message(self, message: Message) -> str:
        record = MessageRecord(
            message_id=message.message_id,
            topic_id=message.topic_id,
            subject=message.subject,
            topic_subject=message.topic_subject,
            in_reply_to=message.in_reply_to,
            references=message.references,
            from_address=message.from_address,
            to=message.to,
            cc=message.cc,
            date=message.date,
            decoded_date=message.decoded_date,
            type=message.type,
            sensitivity=message.sensitivity.value,
            body_text=message.body_text,
            body_html=message.body_html,
            is_attached_mail=message.is_attached_mail,
            parent_message_id=message.parent_message_id,
            is_first_in_topic=message.is_first_in_topic,
            tags=list(message.tags),
            raw_ref=message.raw_ref,
            source=message.source,
            attachments=[
                AttachmentRecord(
                    filename=a.filename,
                    content_type=a.content_type,
                    content_id=a.content_id,
                    payload=a.payload,
                )
                for a in message.attachments
            ],
        )
        async with self._errors("create_message", message_id=message.message_id), self._session() as session:
            session.add(record)
            await session.commit()
            return f"messages/{record.id}"

    async def update_message_topic_link(self, message_id: str, topic_id: str) -> None:
        async with self._errors("update_message_topic_link", message_id=message_id), self._session() as session:
            result = await session.execute(
                update(MessageRecord).where(MessageRecord.message_id == message_id).values(topic_id=topic_id)
            )
            await session.commit()
        if result.rowcount == 0:
            raise StoreError(f"Unknown message {message_id!r}")

    async def load_message_link(self, message_id: str) -> MessageLink | None:
        async with self._errors("load_message_link", message_id=message_id), self._session() as session:
            row = (
                await session.execute(
                    select(MessageRecord.in_reply_to, MessageRecord.topic_subject, MessageRecord.subject).where(
                        MessageRecord.message_id == message_id
                    )
                )
            ).first()
        if row is None:
            return None
        in_reply_to, topic_subject, subject = row
        return MessageLink(in_reply_to=in_reply_to, topic_subject=topic_subject or subject)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
