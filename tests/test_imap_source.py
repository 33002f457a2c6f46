"""Tests for mailarchive.sources.imap."""

from __future__ import annotations

import imaplib
import socket
import time
from unittest.mock import MagicMock, patch

import pytest

from mailarchive.config import MailSourceConfig, RetryConfig
from mailarchive.errors import MailSourceError
from mailarchive.models import ConnectionErrorKind
from mailarchive.sources import FetchedMail, ImapSource


@pytest.fixture
def source(source_config: MailSourceConfig, retry_config: RetryConfig) -> ImapSource:
    return ImapSource(source_config, timeout=5.0, retry=retry_config)


def _make_mock_imap(
    *,
    search_uids: list[bytes] | None = None,
    fetch_data: dict[bytes, bytes] | None = None,
    select_status: str = "OK",
    fetch_delay: float = 0.0,
) -> MagicMock:
    """Create a mock imaplib.IMAP4_SSL with programmed responses."""
    mock = MagicMock()
    mock.state = "SELECTED"
    mock.login.return_value = ("OK", [b"Logged in"])
    mock.select.return_value = (select_status, [b"1"])
    mock.close.return_value = ("OK", [b"Closed"])
    mock.logout.return_value = ("BYE", [b"Bye"])

    uid_data = b" ".join(search_uids) if search_uids else b""
    mock.uid.side_effect = _make_uid_handler(uid_data, fetch_data or {}, fetch_delay)
    return mock


def _make_uid_handler(search_data: bytes, fetch_data: dict[bytes, bytes], delay: float = 0.0):
    """Build a side_effect function for mock.uid() that handles SEARCH, FETCH and STORE."""

    def handler(command: str, *args):
        if command == "SEARCH":
            return ("OK", [search_data])
        elif command == "STORE":
            return ("OK", [b"1 (FLAGS (\\Seen))"])
        elif command == "FETCH":
            time.sleep(delay)
            uid = args[0].encode() if isinstance(args[0], str) else args[0]
            raw = fetch_data.get(uid, b"")
            if raw:
                return ("OK", [(b"1 (UID %s BODY[] {%d})" % (uid, len(raw)), raw)])
            return ("OK", [None])
        return ("OK", [b""])

    return handler


class TestImapSourceConnect:
    @pytest.mark.asyncio
    async def test_connect_ssl(self, source: ImapSource):
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap()
            MockSSL.return_value = mock_conn
            await source.connect()
            MockSSL.assert_called_once_with("imap.test.com", 993, timeout=5.0)
            mock_conn.login.assert_called_once_with("testuser", "testpass")
            mock_conn.select.assert_called_once_with("INBOX", readonly=False)
            assert source.connected

    @pytest.mark.asyncio
    async def test_connect_plain_imap(self, retry_config: RetryConfig):
        descriptor = MailSourceConfig(name="plain", host="imap.test.com", protocol="imap", username="u", password="p")
        source = ImapSource(descriptor, timeout=5.0, retry=retry_config)
        with patch("mailarchive.sources.imap.imaplib.IMAP4") as MockIMAP:
            MockIMAP.return_value = _make_mock_imap()
            await source.connect()
            MockIMAP.assert_called_once_with("imap.test.com", 143, timeout=5.0)

    @pytest.mark.asyncio
    async def test_readonly_select(self, source_config: MailSourceConfig, retry_config: RetryConfig):
        source = ImapSource(source_config, retry=retry_config, readonly=True)
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap()
            MockSSL.return_value = mock_conn
            await source.connect()
            mock_conn.select.assert_called_once_with("INBOX", readonly=True)

    @pytest.mark.asyncio
    async def test_folder_with_spaces_is_quoted(self, retry_config: RetryConfig):
        descriptor = MailSourceConfig(name="x", host="h", username="u", password="p", folder="Sent Items")
        source = ImapSource(descriptor, retry=retry_config)
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap()
            MockSSL.return_value = mock_conn
            await source.connect()
            mock_conn.select.assert_called_once_with('"Sent Items"', readonly=False)

    @pytest.mark.asyncio
    async def test_connect_twice_is_illegal_state(self, source: ImapSource):
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            MockSSL.return_value = _make_mock_imap()
            await source.connect()
            with pytest.raises(MailSourceError) as exc_info:
                await source.connect()
        assert exc_info.value.kind is ConnectionErrorKind.ILLEGAL_STATE


class TestImapSourceErrors:
    @pytest.mark.asyncio
    async def test_login_rejected(self, source: ImapSource):
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap()
            mock_conn.login.side_effect = imaplib.IMAP4.error("AUTHENTICATIONFAILED")
            MockSSL.return_value = mock_conn
            with pytest.raises(MailSourceError) as exc_info:
                await source.connect()
        assert exc_info.value.kind is ConnectionErrorKind.AUTHENTICATION_FAILED
        mock_conn.logout.assert_called_once()
        assert not source.connected

    @pytest.mark.asyncio
    async def test_folder_not_found(self, source: ImapSource):
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            MockSSL.return_value = _make_mock_imap(select_status="NO")
            with pytest.raises(MailSourceError) as exc_info:
                await source.connect()
        assert exc_info.value.kind is ConnectionErrorKind.FOLDER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_unknown_host(self, source: ImapSource):
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL", side_effect=socket.gaierror(-2, "Name or service not known")):
            with pytest.raises(MailSourceError) as exc_info:
                await source.connect()
        assert exc_info.value.kind is ConnectionErrorKind.UNKNOWN_HOST

    @pytest.mark.asyncio
    async def test_connection_refused_is_retried(self, source_config: MailSourceConfig):
        retry = RetryConfig(max_attempts=3, initial_wait_seconds=0, max_wait_seconds=0)
        source = ImapSource(source_config, retry=retry)
        with patch(
            "mailarchive.sources.imap.imaplib.IMAP4_SSL",
            side_effect=[ConnectionRefusedError(), ConnectionRefusedError(), _make_mock_imap()],
        ) as MockSSL:
            await source.connect()
        assert MockSSL.call_count == 3
        assert source.connected

    @pytest.mark.asyncio
    async def test_connection_error_after_retries(self, source_config: MailSourceConfig):
        retry = RetryConfig(max_attempts=2, initial_wait_seconds=0, max_wait_seconds=0)
        source = ImapSource(source_config, retry=retry)
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL", side_effect=TimeoutError()) as MockSSL:
            with pytest.raises(MailSourceError) as exc_info:
                await source.connect()
        assert exc_info.value.kind is ConnectionErrorKind.CONNECTION_ERROR
        assert MockSSL.call_count == 2

    @pytest.mark.asyncio
    async def test_auth_failure_not_retried(self, source_config: MailSourceConfig):
        retry = RetryConfig(max_attempts=3, initial_wait_seconds=0, max_wait_seconds=0)
        source = ImapSource(source_config, retry=retry)
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap()
            mock_conn.login.side_effect = imaplib.IMAP4.error("bad credentials")
            MockSSL.return_value = mock_conn
            with pytest.raises(MailSourceError):
                await source.connect()
        assert MockSSL.call_count == 1

    @pytest.mark.asyncio
    async def test_illegal_state_from_server_library(self, source: ImapSource):
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap()
            mock_conn.uid.side_effect = imaplib.IMAP4.error("command SEARCH illegal in state AUTH, only allowed in states SELECTED")
            MockSSL.return_value = mock_conn
            await source.connect()
            with pytest.raises(MailSourceError) as exc_info:
                await source.fetch_unseen()
        assert exc_info.value.kind is ConnectionErrorKind.ILLEGAL_STATE

    @pytest.mark.asyncio
    async def test_fetch_before_connect(self, source: ImapSource):
        with pytest.raises(MailSourceError) as exc_info:
            await source.fetch_unseen()
        assert exc_info.value.kind is ConnectionErrorKind.ILLEGAL_STATE


class TestImapSourceFetch:
    @pytest.mark.asyncio
    async def test_fetch_empty(self, source: ImapSource):
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            MockSSL.return_value = _make_mock_imap(search_uids=[])
            await source.connect()
            assert await source.fetch_unseen() == []

    @pytest.mark.asyncio
    async def test_fetch_unseen_messages(self, source: ImapSource, plain_eml_bytes: bytes):
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap(
                search_uids=[b"1", b"2"],
                fetch_data={b"1": plain_eml_bytes, b"2": plain_eml_bytes},
            )
            MockSSL.return_value = mock_conn
            await source.connect()
            results = await source.fetch_unseen()
        assert [r.uid for r in results] == ["1", "2"]
        assert all(isinstance(r, FetchedMail) for r in results)
        assert results[0].raw_bytes == plain_eml_bytes
        mock_conn.uid.assert_any_call("SEARCH", None, "UNSEEN")
        mock_conn.uid.assert_any_call("FETCH", "1", "(BODY.PEEK[])")
        assert not any(c.args[0] == "STORE" for c in mock_conn.uid.call_args_list)

    @pytest.mark.asyncio
    async def test_fetch_respects_max(self, source: ImapSource, plain_eml_bytes: bytes):
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            MockSSL.return_value = _make_mock_imap(
                search_uids=[b"1", b"2", b"3"],
                fetch_data={b"1": plain_eml_bytes, b"2": plain_eml_bytes, b"3": plain_eml_bytes},
            )
            await source.connect()
            results = await source.fetch_unseen(2)
        assert [r.uid for r in results] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_fetch_skips_empty_responses(self, source: ImapSource, plain_eml_bytes: bytes):
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            MockSSL.return_value = _make_mock_imap(search_uids=[b"1", b"2"], fetch_data={b"2": plain_eml_bytes})
            await source.connect()
            results = await source.fetch_unseen()
        assert [r.uid for r in results] == ["2"]

    @pytest.mark.asyncio
    async def test_slow_batch_is_timed_per_message(
        self,
        source_config: MailSourceConfig,
        retry_config: RetryConfig,
        plain_eml_bytes: bytes,
    ):
        source = ImapSource(source_config, timeout=0.5, retry=retry_config)
        uids = [b"1", b"2", b"3", b"4", b"5"]
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            MockSSL.return_value = _make_mock_imap(
                search_uids=uids,
                fetch_data={uid: plain_eml_bytes for uid in uids},
                fetch_delay=0.2,
            )
            await source.connect()
            results = await source.fetch_unseen()
        assert [r.uid for r in results] == ["1", "2", "3", "4", "5"]

    @pytest.mark.asyncio
    async def test_mark_seen(self, source: ImapSource):
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap()
            MockSSL.return_value = mock_conn
            await source.connect()
            await source.mark_seen("7")
        mock_conn.uid.assert_called_with("STORE", "7", "+FLAGS", "(\\Seen)")

    @pytest.mark.asyncio
    async def test_mark_seen_rejected(self, source: ImapSource):
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap()
            mock_conn.uid.side_effect = None
            mock_conn.uid.return_value = ("NO", [b"read-only folder"])
            MockSSL.return_value = mock_conn
            await source.connect()
            with pytest.raises(MailSourceError) as exc_info:
                await source.mark_seen("7")
        assert exc_info.value.kind is ConnectionErrorKind.UNEXPECTED_FAILURE

    @pytest.mark.asyncio
    async def test_count_unseen(self, source: ImapSource):
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            MockSSL.return_value = _make_mock_imap(search_uids=[b"4", b"7", b"9"])
            await source.connect()
            assert await source.count_unseen() == 3


class TestImapSourceClose:
    @pytest.mark.asyncio
    async def test_context_manager_closes(self, source: ImapSource):
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap()
            MockSSL.return_value = mock_conn
            async with source:
                assert source.connected
        mock_conn.close.assert_called_once()
        mock_conn.logout.assert_called_once()
        assert not source.connected

    @pytest.mark.asyncio
    async def test_close_tolerates_server_errors(self, source: ImapSource):
        with patch("mailarchive.sources.imap.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap()
            mock_conn.close.side_effect = imaplib.IMAP4.error("already closed")
            mock_conn.logout.side_effect = OSError("broken pipe")
            MockSSL.return_value = mock_conn
            await source.connect()
            await source.close()
        assert not source.connected

    @pytest.mark.asyncio
    async def test_close_when_never_connected(self, source: ImapSource):
        await source.close()
