"""Topic resolution: which conversation does a new message belong to?

Steps, first success wins:

1. reply-chain walk through archived ancestors with similar subjects;
2. direct hit on the message's own topic id (similar subject required);
3. exact (trimmed, case-insensitive) subject match, only for replies or
   for topic ids already seen once;
4. new topic, keyed by the message id (suffixed ``#n`` if that is taken
   too) when the topic id is taken.

The resolver never mutates the session index; the coordinator does that
once the result is persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import structlog

from .index import SessionIndex
from .models import SHORT_FIELD_MAX, Message
from .similarity import similar
from .store import Store

logger = structlog.get_logger()


class ResolutionStep(str, Enum):
    REPLY_CHAIN = "reply_chain"
    TOPIC_ID = "topic_id"
    SUBJECT = "subject"
    NEW_TOPIC = "new_topic"


@dataclass(frozen=True)
class Resolution:
    topic_id: str
    is_new: bool
    step: ResolutionStep


class TopicResolver:
    def __init__(self, store: Store) -> None:
        self._store = store

    async def resolve(self, message: Message, index: SessionIndex) -> Resolution:
        """Resolve the topic of *message* against *index*.

        Sets ``message.is_first_in_topic`` when no ancestor was found, and on
        a new topic whose id is already taken rewrites ``message.topic_id``
        to an unused id derived from the message id and clears
        ``message.in_reply_to``.
        """
        subject = message.topic_subject or message.subject

        ancestor_topic = await self._walk_reply_chain(message, subject, index)
        if ancestor_topic is not None:
            return Resolution(ancestor_topic, is_new=False, step=ResolutionStep.REPLY_CHAIN)
        message.is_first_in_topic = True

        known = index.topics.get(message.topic_id)
        if known is not None:
            if similar(subject, known.subject):
                return Resolution(message.topic_id, is_new=False, step=ResolutionStep.TOPIC_ID)
            logger.debug(
                "topic_subject_too_different",
                message_id=message.message_id,
                topic_id=message.topic_id,
            )

        for topic_id in index.topics_with_subject(subject):
            if message.in_reply_to or index.has_topic(message.topic_id):
                return Resolution(topic_id, is_new=False, step=ResolutionStep.SUBJECT)

        if index.has_topic(message.topic_id):
            logger.debug(
                "topic_id_collision",
                message_id=message.message_id,
                topic_id=message.topic_id,
            )
            message.topic_id = _unused_topic_id(message.message_id, index)
            message.in_reply_to = ""
        return Resolution(message.topic_id, is_new=True, step=ResolutionStep.NEW_TOPIC)

    async def _walk_reply_chain(
        self,
        message: Message,
        subject: str,
        index: SessionIndex,
    ) -> str | None:
        """Topic id of the furthest similar ancestor, or None when no hop was made."""
        reply_id = message.in_reply_to
        tracked_subject = subject
        last_matched: str | None = None
        visited: set[str] = {message.message_id}

        while reply_id and index.has_message(reply_id) and reply_id not in visited:
            visited.add(reply_id)
            link = await self._store.load_message_link(reply_id)
            if link is None:
                break
            if not similar(tracked_subject, link.topic_subject):
                logger.debug("reply_chain_subject_too_different", message_id=message.message_id, ancestor=reply_id)
                break
            last_matched = reply_id
            tracked_subject = link.topic_subject
            reply_id = link.in_reply_to

        if reply_id and reply_id in visited:
            logger.warning("reply_chain_cycle", message_id=message.message_id, ancestor=reply_id)
        if last_matched is None:
            return None
        return index.messages[last_matched].topic_id


def _unused_topic_id(message_id: str, index: SessionIndex) -> str:
    """*message_id*, suffixed ``#n`` while that topic id is taken."""
    candidate = message_id
    n = 0
    while index.has_topic(candidate):
        n += 1
        suffix = f"#{n}"
        candidate = message_id[: SHORT_FIELD_MAX - len(suffix)] + suffix
    return candidate
