"""IngestionCoordinator runs one ingestion session over every mail source.

A session loads the known-topic / known-message snapshot, then visits the
configured sources one after another.  Each fetched message is archived
raw (optional), parsed, typed, tagged, and either recognised as a
duplicate (topic-link correction only) or resolved to a topic and stored.
Only then is it flagged seen on the source.

Only one session runs per process: a second caller gets a report flagged
``already_in_progress`` immediately.  Source failures and per-message
failures are counted in the report and never abort the session.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog

from .classifier import MailingListTagger, TypeClassifier
from .config import ArchiveConfig, MailSourceConfig, RetryConfig
from .errors import MailSourceError, SessionFatalError
from .index import SessionIndex
from .models import (
    ConnectionErrorKind,
    Message,
    SessionReport,
    SessionState,
    SourceReport,
    Topic,
)
from .parser import MessageParser
from .raw_store import RawMailStore
from .resolver import TopicResolver
from .sources import MailSource, open_mail_source
from .sources.base import FetchedMail
from .store import Store

logger = structlog.get_logger()

SourceFactory = Callable[..., MailSource]


def topic_update_fields(topic: Topic, message: Message) -> dict[str, Any]:
    """Fields of *topic* to change after *message* joined it.

    Author, start and last-update dates only move when the message opens
    the topic or is more recent than its last update.  A message without a
    decoded date is neither more recent nor more ancient.
    """
    date = message.decoded_date
    more_recent = date is not None and (topic.last_update_date is None or date > topic.last_update_date)
    more_ancient = date is not None and topic.start_date is not None and date < topic.start_date

    fields: dict[str, Any] = {}
    if message.is_first_in_topic or more_recent:
        if (message.from_address != topic.author and more_ancient) or not topic.author:
            fields["author"] = message.from_address
        if date is not None and (topic.start_date is None or more_ancient):
            fields["start_date"] = date
        if more_recent:
            fields["last_update_date"] = date

    new_tags = [tag for tag in message.tags if tag not in topic.tags]
    if new_tags:
        fields["tags"] = [*topic.tags, *new_tags]
    return fields


def new_topic(message: Message) -> Topic:
    tags = list(message.tags)
    if message.type not in tags:
        tags.append(message.type)
    return Topic(
        topic_id=message.topic_id,
        subject=message.topic_subject or message.subject,
        start_date=message.decoded_date,
        last_update_date=message.decoded_date,
        author=message.from_address,
        type=message.type,
        tags=tags,
    )


def _effective_limit(*limits: int | None) -> int | None:
    given = [limit for limit in limits if limit is not None]
    return min(given) if given else None


async def check_source(
    descriptor: MailSourceConfig,
    *,
    timeout: float = 30.0,
    retry: RetryConfig | None = None,
    source_factory: SourceFactory = open_mail_source,
) -> int | ConnectionErrorKind:
    """Connect read-only and count unseen messages, without ingesting anything.

    Returns the count, or the classified error kind when the source cannot
    be reached, opened or read.
    """
    try:
        source = source_factory(descriptor, timeout=timeout, retry=retry, readonly=True)
        async with source:
            count = await source.count_unseen()
    except MailSourceError as exc:
        logger.warning("mail_source_check_failed", source=descriptor.name, kind=exc.kind.value, error=str(exc))
        return exc.kind
    logger.info("mail_source_checked", source=descriptor.name, unseen=count)
    return count


class IngestionCoordinator:
    """Owns the session state machine and the per-process session lock."""

    def __init__(
        self,
        config: ArchiveConfig,
        store: Store,
        *,
        parser: MessageParser | None = None,
        raw_store: RawMailStore | None = None,
        source_factory: SourceFactory = open_mail_source,
    ) -> None:
        self._config = config
        self._store = store
        self._parser = parser or MessageParser(config.session)
        self._raw_store = raw_store if raw_store is not None else RawMailStore(config.s3)
        self._source_factory = source_factory
        self._classifier = TypeClassifier(config.types)
        self._tagger = MailingListTagger(config.mailing_lists)
        self._resolver = TopicResolver(store)

        self._lock = threading.Lock()
        self.state: SessionState = SessionState.IDLE
        self.last_report: SessionReport | None = None

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def run_session(
        self,
        max_messages: int | None = None,
        cancel: asyncio.Event | None = None,
    ) -> SessionReport:
        """Run one ingestion pass over every configured source.

        Returns at once, without doing anything, when a session is already
        running.  *max_messages* caps the messages fetched per source;
        setting *cancel* stops the session before the next source or
        message.
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("session_already_in_progress")
            return SessionReport(state=SessionState.IDLE, already_in_progress=True)

        report = SessionReport(state=SessionState.RUNNING)
        self.state = SessionState.RUNNING
        logger.info("session_started", sources=len(self._config.sources))
        try:
            await self._run(report, max_messages, cancel or asyncio.Event())
        except SessionFatalError as exc:
            logger.exception("session_aborted")
            report.state = SessionState.FAILED
            report.error = str(exc)
        except Exception as exc:
            logger.exception("session_failed")
            report.state = SessionState.FAILED
            report.error = str(exc)
        finally:
            if report.state is SessionState.RUNNING:
                report.state = SessionState.CANCELLED
            report.finished_at = datetime.now(UTC)
            self.state = report.state
            self.last_report = report
            self._lock.release()
            logger.info(
                "session_finished",
                state=report.state.value,
                seen=report.seen,
                loaded=report.loaded,
                skipped=report.skipped,
                failed=report.failed,
            )
        return report

    async def _run(self, report: SessionReport, max_messages: int | None, cancel: asyncio.Event) -> None:
        try:
            index = await SessionIndex.load(self._store)
        except Exception as exc:
            raise SessionFatalError(f"Cannot load archive index: {exc}") from exc

        if self._raw_store.enabled:
            await self._raw_store.start()
        try:
            for descriptor in self._config.sources:
                if cancel.is_set():
                    break
                source_report = SourceReport(source=descriptor.name)
                report.sources.append(source_report)
                limit = _effective_limit(max_messages, self._config.session.max_messages, descriptor.max_messages)
                await self._ingest_source(descriptor, index, source_report, limit, cancel)
        finally:
            if self._raw_store.enabled:
                await self._raw_store.stop()

        if cancel.is_set():
            logger.info("session_cancelled")
            report.state = SessionState.CANCELLED
        else:
            report.state = SessionState.COMPLETED

    async def _ingest_source(
        self,
        descriptor: MailSourceConfig,
        index: SessionIndex,
        report: SourceReport,
        limit: int | None,
        cancel: asyncio.Event,
    ) -> None:
        log = logger.bind(source=descriptor.name)
        try:
            source = self._source_factory(
                descriptor,
                timeout=self._config.session.connect_timeout_seconds,
                retry=self._config.retry,
            )
            async with source:
                mails = await source.fetch_unseen(limit)
                report.seen = len(mails)
                log.info("mail_source_fetched", fetched=len(mails))
                for position, mail in enumerate(mails):
                    if cancel.is_set():
                        log.info("source_ingestion_cancelled", remaining=len(mails) - position)
                        return
                    await self._ingest_mail(source, mail, index, report)
        except MailSourceError as exc:
            report.error = exc.kind
            log.error("mail_source_failed", kind=exc.kind.value, error=str(exc))
        except Exception:
            report.error = ConnectionErrorKind.UNEXPECTED_FAILURE
            log.exception("mail_source_failed", kind=report.error.value)

    async def _ingest_mail(self, source: MailSource, mail: FetchedMail, index: SessionIndex, report: SourceReport) -> None:
        message_id: str | None = None
        try:
            raw_ref = None
            if self._raw_store.enabled:
                raw_ref = await self._raw_store.upload_raw_eml(source.name, mail.raw_bytes)
            message = self._parser.parse(mail.raw_bytes, source=source.name)
            message_id = message.message_id
            message.raw_ref = raw_ref
            loaded = await self.ingest_message(message, index)
        except Exception:
            report.failed += 1
            logger.exception("message_ingestion_failed", source=source.name, uid=mail.uid, message_id=message_id)
            return
        if loaded:
            report.loaded += 1
        else:
            report.skipped += 1

        # Left unseen on failure, so the next pass fetches the mail again.
        try:
            await source.mark_seen(mail.uid)
        except MailSourceError as exc:
            logger.warning(
                "mail_mark_seen_failed",
                source=source.name,
                uid=mail.uid,
                message_id=message_id,
                kind=exc.kind.value,
            )

    # ------------------------------------------------------------------
    # Single message
    # ------------------------------------------------------------------

    async def ingest_message(self, message: Message, index: SessionIndex) -> bool:
        """Store a parsed message against *index*.

        Returns False for a message already in the archive; its stored topic
        link is corrected when resolution now points at another topic.
        """
        message.type = self._classifier.classify(message)
        message.tags = self._tagger.tags_for(message)

        if index.has_message(message.message_id):
            await self._correct_duplicate(message, index)
            return False

        resolution = await self._resolver.resolve(message, index)
        message.topic_id = resolution.topic_id
        if resolution.is_new:
            topic = new_topic(message)
            location_ref = await self._store.create_topic(topic)
            index.add_topic(topic.topic_id, location_ref, topic.subject)
            logger.info("topic_created", topic_id=topic.topic_id, message_id=message.message_id)
        else:
            await self._update_topic(resolution.topic_id, message)

        location_ref = await self._store.create_message(message)
        index.add_message(message.message_id, location_ref, message.subject, message.topic_id)
        logger.info(
            "message_loaded",
            message_id=message.message_id,
            topic_id=message.topic_id,
            step=resolution.step.value,
            type=message.type,
        )
        await self._ingest_embedded(message, index)
        return True

    async def _correct_duplicate(self, message: Message, index: SessionIndex) -> None:
        known = index.messages[message.message_id]
        resolution = await self._resolver.resolve(message.model_copy(deep=True), index)
        if resolution.is_new or resolution.topic_id == known.topic_id:
            logger.debug("message_already_loaded", message_id=message.message_id)
            return
        await self._store.update_message_topic_link(message.message_id, resolution.topic_id)
        index.relink_message(message.message_id, resolution.topic_id)
        logger.info(
            "message_topic_relinked",
            message_id=message.message_id,
            old_topic_id=known.topic_id,
            topic_id=resolution.topic_id,
        )

    async def _update_topic(self, topic_id: str, message: Message) -> None:
        topic = await self._store.load_topic(topic_id)
        if topic is None:
            logger.warning("topic_missing_from_store", topic_id=topic_id, message_id=message.message_id)
            return
        fields = topic_update_fields(topic, message)
        if fields:
            await self._store.update_topic(topic_id, fields)
            logger.debug("topic_updated", topic_id=topic_id, fields=sorted(fields))

    async def _ingest_embedded(self, parent: Message, index: SessionIndex) -> None:
        for child in parent.embedded_messages:
            if index.has_message(child.message_id):
                logger.debug("attached_mail_already_loaded", message_id=child.message_id)
                continue
            try:
                child.topic_id = parent.topic_id
                child.type = self._classifier.classify(child)
                child.tags = self._tagger.tags_for(child)
                location_ref = await self._store.create_message(child)
            except Exception:
                logger.exception("attached_mail_ingestion_failed", message_id=child.message_id, parent=parent.message_id)
                continue
            index.add_message(child.message_id, location_ref, child.subject, child.topic_id)
            logger.info("attached_mail_loaded", message_id=child.message_id, parent=parent.message_id)
            await self._ingest_embedded(child, index)
