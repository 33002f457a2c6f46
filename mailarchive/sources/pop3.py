"""POP3 / POP3S mail source wrapping stdlib poplib."""

from __future__ import annotations

import poplib

import structlog

from ..errors import MailSourceError
from ..models import ConnectionErrorKind
from .base import FetchedMail, MailSource, classify_error

logger = structlog.get_logger()


class Pop3Source(MailSource):
    """Reads the maildrop of a POP3 account.

    POP3 has neither folders nor seen flags: every message waiting in the
    maildrop counts as unseen, and nothing is deleted on the server.
    Duplicate detection across passes is left to the session index.
    """

    _conn: poplib.POP3 | None = None

    def _connect_sync(self) -> None:
        d = self.descriptor
        if d.protocol.lower() == "pop3s":
            conn: poplib.POP3 = poplib.POP3_SSL(d.host, d.effective_port, timeout=self._timeout)
        else:
            conn = poplib.POP3(d.host, d.effective_port, timeout=self._timeout)
        self._conn = conn
        try:
            conn.user(d.username)
            conn.pass_(d.password.get_secret_value())
        except poplib.error_proto as exc:
            self._quit_quietly()
            raise MailSourceError(ConnectionErrorKind.AUTHENTICATION_FAILED, str(exc)) from exc
        except Exception:
            self._quit_quietly()
            raise

    def _list_unseen_sync(self, max_messages: int | None) -> list[str]:
        count, _size = self._require_conn().stat()
        logger.debug("pop3_maildrop_listed", source=self.name, messages=count)
        if max_messages is not None:
            count = min(count, max_messages)
        return [str(number) for number in range(1, count + 1)]

    def _fetch_sync(self, uid: str) -> FetchedMail | None:
        _response, lines, _octets = self._require_conn().retr(int(uid))
        return FetchedMail(uid=uid, raw_bytes=b"\r\n".join(lines) + b"\r\n")

    def _count_unseen_sync(self) -> int:
        count, _size = self._require_conn().stat()
        return count

    def _close_sync(self) -> None:
        self._quit_quietly()

    def _require_conn(self) -> poplib.POP3:
        if self._conn is None:
            raise MailSourceError(ConnectionErrorKind.ILLEGAL_STATE, f"{self.name} has no open connection")
        return self._conn

    def _quit_quietly(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            conn.quit()
        except (poplib.error_proto, OSError):
            pass

    def _classify(self, exc: BaseException, operation: str) -> ConnectionErrorKind:
        if isinstance(exc, poplib.error_proto):
            return ConnectionErrorKind.UNEXPECTED_FAILURE
        return classify_error(exc)
