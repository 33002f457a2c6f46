"""Session-scoped snapshot of the known topics and known messages."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from .models import KnownMessage, KnownTopic

if TYPE_CHECKING:
    from .store import Store

logger = structlog.get_logger()


class SessionIndex:
    """Known-Topic and Known-Message indices for one ingestion session.

    Loaded once when a session starts and mutated only by the coordinator,
    so messages later in the same pass resolve against earlier ones.
    """

    def __init__(
        self,
        topics: dict[str, KnownTopic] | None = None,
        messages: dict[str, KnownMessage] | None = None,
    ) -> None:
        self.topics: dict[str, KnownTopic] = dict(topics or {})
        self.messages: dict[str, KnownMessage] = dict(messages or {})

    @classmethod
    async def load(cls, store: Store) -> SessionIndex:
        topics = await store.load_known_topics()
        messages = await store.load_known_messages()
        logger.info("session_index_loaded", topics=len(topics), messages=len(messages))
        return cls(topics, messages)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def has_topic(self, topic_id: str) -> bool:
        return topic_id in self.topics

    def has_message(self, message_id: str) -> bool:
        return message_id in self.messages

    def topics_with_subject(self, subject: str) -> list[str]:
        """Topic ids whose subject equals *subject*, trimmed and case-insensitive."""
        wanted = subject.strip().casefold()
        return [
            topic_id
            for topic_id, topic in self.topics.items()
            if topic.subject.strip().casefold() == wanted
        ]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_topic(self, topic_id: str, location_ref: str, subject: str) -> None:
        self.topics[topic_id] = KnownTopic(location_ref=location_ref, subject=subject)

    def add_message(self, message_id: str, location_ref: str, subject: str, topic_id: str) -> None:
        self.messages[message_id] = KnownMessage(
            subject=subject,
            topic_id=topic_id,
            location_ref=location_ref,
        )

    def relink_message(self, message_id: str, topic_id: str) -> None:
        known = self.messages[message_id]
        self.messages[message_id] = KnownMessage(
            subject=known.subject,
            topic_id=topic_id,
            location_ref=known.location_ref,
        )

    def __len__(self) -> int:
        return len(self.messages)
