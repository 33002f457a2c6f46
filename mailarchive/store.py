"""The persistence boundary of the mail archive core."""

from __future__ import annotations

import abc
from typing import Any

import structlog

from .errors import StoreError
from .models import KnownMessage, KnownTopic, Message, MessageLink, Topic

logger = structlog.get_logger()


class Store(abc.ABC):
    """Abstract persistence store for topics and messages.

    Every call is individually atomic; the core never needs a transaction
    spanning several records.  Implementations raise :class:`StoreError`
    for failures of the backing store.
    """

    @abc.abstractmethod
    async def load_known_topics(self) -> dict[str, KnownTopic]:
        """Return ``topic_id -> KnownTopic`` for every archived topic."""

    @abc.abstractmethod
    async def load_known_messages(self) -> dict[str, KnownMessage]:
        """Return ``message_id -> KnownMessage`` for every archived message."""

    @abc.abstractmethod
    async def create_topic(self, topic: Topic) -> str:
        """Persist a new topic and return its location reference."""

    @abc.abstractmethod
    async def update_topic(self, topic_id: str, fields: dict[str, Any]) -> None:
        """Update the given :class:`Topic` fields of an existing topic."""

    @abc.abstractmethod
    async def create_message(self, message: Message) -> str:
        """Persist a new message (with attachments) and return its location reference."""

    @abc.abstractmethod
    async def update_message_topic_link(self, message_id: str, topic_id: str) -> None:
        """Re-point an archived message at another topic."""

    @abc.abstractmethod
    async def load_message_link(self, message_id: str) -> MessageLink | None:
        """Stored ``in_reply_to`` and topic subject of an archived message."""

    @abc.abstractmethod
    async def load_topic(self, topic_id: str) -> Topic | None:
        """Full stored record of an archived topic."""

    async def close(self) -> None:
        """Release backing resources.  The default does nothing."""


class InMemoryStore(Store):
    """Dictionary-backed store, used for dry runs and tests."""

    def __init__(self) -> None:
        self.topics: dict[str, Topic] = {}
        self.messages: dict[str, Message] = {}

    async def load_known_topics(self) -> dict[str, KnownTopic]:
        return {
            topic_id: KnownTopic(location_ref=_topic_ref(topic_id), subject=topic.subject)
            for topic_id, topic in self.topics.items()
        }

    async def load_known_messages(self) -> dict[str, KnownMessage]:
        return {
            message_id: KnownMessage(
                subject=message.subject,
                topic_id=message.topic_id,
                location_ref=_message_ref(message_id),
            )
            for message_id, message in self.messages.items()
        }

    async def create_topic(self, topic: Topic) -> str:
        if topic.topic_id in self.topics:
            raise StoreError(f"Topic {topic.topic_id!r} already exists")
        self.topics[topic.topic_id] = topic.model_copy(deep=True)
        return _topic_ref(topic.topic_id)

    async def update_topic(self, topic_id: str, fields: dict[str, Any]) -> None:
        topic = self.topics.get(topic_id)
        if topic is None:
            raise StoreError(f"Unknown topic {topic_id!r}")
        self.topics[topic_id] = topic.model_copy(update=fields)

    async def create_message(self, message: Message) -> str:
        if message.message_id in self.messages:
            raise StoreError(f"Message {message.message_id!r} already exists")
        # Embedded messages are persisted as records of their own.
        self.messages[message.message_id] = message.model_copy(
            update={"embedded_messages": []},
            deep=True,
        )
        return _message_ref(message.message_id)

    async def update_message_topic_link(self, message_id: str, topic_id: str) -> None:
        message = self.messages.get(message_id)
        if message is None:
            raise StoreError(f"Unknown message {message_id!r}")
        message.topic_id = topic_id

    async def load_message_link(self, message_id: str) -> MessageLink | None:
        message = self.messages.get(message_id)
        if message is None:
            return None
        return MessageLink(
            in_reply_to=message.in_reply_to,
            topic_subject=message.topic_subject or message.subject,
        )

    async def load_topic(self, topic_id: str) -> Topic | None:
        topic = self.topics.get(topic_id)
        return topic.model_copy(deep=True) if topic is not None else None


def _topic_ref(topic_id: str) -> str:
    return f"topic:{topic_id}"


def _message_ref(message_id: str) -> str:
    return f"message:{message_id}"
