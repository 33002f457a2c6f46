"""Tests for mailarchive.envelope."""

from __future__ import annotations

import email
import email.policy
from datetime import UTC, datetime

from tests.conftest import build_plain_email

from mailarchive.envelope import decode_date, extract_envelope, first_message_id


def _envelope(raw: bytes, **kwargs):
    msg = email.message_from_bytes(raw, policy=email.policy.default)
    return extract_envelope(msg, **kwargs)


class TestExtractEnvelope:
    def test_basic_headers(self, plain_eml_bytes: bytes):
        env = _envelope(plain_eml_bytes)
        assert env.message_id == "<test-001@example.com>"
        assert env.subject == "Test Subject"
        assert env.from_address == "sender@example.com"
        assert env.to == "recipient@example.com"
        assert env.date == "Mon, 02 Jun 2025 12:00:00 +0000"
        assert env.decoded_date == datetime(2025, 6, 2, 12, 0, tzinfo=UTC)

    def test_topic_id_defaults_to_message_id(self, plain_eml_bytes: bytes):
        env = _envelope(plain_eml_bytes)
        assert env.topic_id == "<test-001@example.com>"
        assert env.topic_subject == "Test Subject"

    def test_topic_id_from_first_reference(self):
        raw = build_plain_email(
            message_id="<c@example.com>",
            references="<a@example.com> <b@example.com>",
            in_reply_to="<b@example.com>",
        )
        env = _envelope(raw)
        assert env.topic_id == "<a@example.com>"
        assert env.in_reply_to == "<b@example.com>"

    def test_thread_index_cropped(self):
        thread_index = "AdQx" + "A" * 60
        raw = build_plain_email(thread_index=thread_index, references="<a@example.com>")
        assert _envelope(raw).topic_id == thread_index[:30]
        assert _envelope(raw, crop_topic_ids=False).topic_id == thread_index

    def test_thread_topic_preferred(self):
        raw = build_plain_email(subject="RE: budget", thread_topic="budget")
        env = _envelope(raw)
        assert env.topic_subject == "budget"
        assert env.subject == "RE: budget"

    def test_missing_headers_are_empty(self):
        raw = build_plain_email(message_id=None, date=None)
        env = _envelope(raw)
        assert env.message_id == ""
        assert env.topic_id == ""
        assert env.decoded_date is None
        assert env.cc == ""


class TestFirstMessageId:
    def test_takes_first_token(self):
        assert first_message_id("<a@x> (comment) <b@x>") == "<a@x>"

    def test_raw_value_without_brackets(self):
        assert first_message_id("  plain-id  ") == "plain-id"


class TestDecodeDate:
    def test_rfc2822_with_offset(self):
        assert decode_date("Mon, 02 Jun 2025 14:00:00 +0200") == datetime(2025, 6, 2, 12, 0, tzinfo=UTC)

    def test_fallback_format(self):
        decoded = decode_date("2025-06-02 12:00", ["%Y-%m-%d %H:%M"])
        assert decoded == datetime(2025, 6, 2, 12, 0, tzinfo=UTC)

    def test_undecodable(self):
        assert decode_date("sometime last week") is None
        assert decode_date("") is None
