"""Tests for mailarchive.index."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from mailarchive.index import SessionIndex
from mailarchive.models import KnownMessage, KnownTopic


class TestSessionIndex:
    @pytest.mark.asyncio
    async def test_load_from_store(self):
        store = AsyncMock()
        store.load_known_topics.return_value = {"T1": KnownTopic(location_ref="topics/1", subject="Budget")}
        store.load_known_messages.return_value = {
            "<a>": KnownMessage(subject="Budget", topic_id="T1", location_ref="messages/1"),
        }

        index = await SessionIndex.load(store)

        assert index.has_topic("T1")
        assert index.has_message("<a>")
        assert len(index) == 1

    def test_add_and_relink(self):
        index = SessionIndex()
        index.add_topic("T1", "topics/1", "Budget")
        index.add_message("<a>", "messages/1", "Budget", "T1")

        index.relink_message("<a>", "T2")

        assert index.messages["<a>"] == KnownMessage(subject="Budget", topic_id="T2", location_ref="messages/1")

    def test_topics_with_subject_is_trimmed_and_case_insensitive(self):
        index = SessionIndex()
        index.add_topic("T1", "topics/1", " Budget 2025 ")
        index.add_topic("T2", "topics/2", "Other")
        index.add_topic("T3", "topics/3", "BUDGET 2025")

        assert index.topics_with_subject("budget 2025") == ["T1", "T3"]
        assert index.topics_with_subject("missing") == []

    def test_snapshot_is_copied(self):
        topics = {"T1": KnownTopic(location_ref="topics/1", subject="Budget")}
        index = SessionIndex(topics)
        index.add_topic("T2", "topics/2", "Other")
        assert "T2" not in topics
