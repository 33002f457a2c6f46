"""IMAP / IMAPS mail source wrapping stdlib imaplib."""

from __future__ import annotations

import imaplib

import structlog

from ..errors import MailSourceError
from ..models import ConnectionErrorKind
from .base import FetchedMail, MailSource, classify_error

logger = structlog.get_logger()


def _mailbox_name(folder: str) -> str:
    if " " in folder and not folder.startswith('"'):
        return f'"{folder}"'
    return folder


class ImapSource(MailSource):
    """Reads unseen messages from one IMAP folder.

    Messages are fetched with ``BODY.PEEK[]``, which leaves them unseen;
    the coordinator flags each one ``\\Seen`` once it is archived, so mail
    that failed or was never reached is fetched again next pass.  Opened
    ``readonly`` (connection checks), the folder is examined only.
    """

    _conn: imaplib.IMAP4 | None = None

    # ------------------------------------------------------------------
    # Synchronous helpers (run in thread)
    # ------------------------------------------------------------------

    def _connect_sync(self) -> None:
        d = self.descriptor
        if d.protocol.lower() == "imaps":
            conn: imaplib.IMAP4 = imaplib.IMAP4_SSL(d.host, d.effective_port, timeout=self._timeout)
        else:
            conn = imaplib.IMAP4(d.host, d.effective_port, timeout=self._timeout)
        self._conn = conn
        try:
            try:
                conn.login(d.username, d.password.get_secret_value())
            except imaplib.IMAP4.abort:
                raise
            except imaplib.IMAP4.error as exc:
                raise MailSourceError(ConnectionErrorKind.AUTHENTICATION_FAILED, str(exc)) from exc

            status, data = conn.select(_mailbox_name(d.folder), readonly=self._readonly)
            if status != "OK":
                raise MailSourceError(
                    ConnectionErrorKind.FOLDER_NOT_FOUND,
                    f"Cannot select folder {d.folder!r}: {data!r}",
                )
        except Exception:
            self._logout_quietly()
            raise

    def _list_unseen_sync(self, max_messages: int | None) -> list[str]:
        uids = [uid.decode() for uid in self._search_unseen(self._require_conn())]
        logger.debug("imap_unseen_listed", source=self.name, folder=self.descriptor.folder, unseen=len(uids))
        return uids if max_messages is None else uids[:max_messages]

    def _fetch_sync(self, uid: str) -> FetchedMail | None:
        status, msg_data = self._require_conn().uid("FETCH", uid, "(BODY.PEEK[])")
        if status != "OK" or not msg_data or not msg_data[0]:
            return None
        raw_bytes: bytes = msg_data[0][1]  # type: ignore[index]
        return FetchedMail(uid=uid, raw_bytes=raw_bytes)

    def _mark_seen_sync(self, uid: str) -> None:
        status, data = self._require_conn().uid("STORE", uid, "+FLAGS", "(\\Seen)")
        if status != "OK":
            raise MailSourceError(ConnectionErrorKind.UNEXPECTED_FAILURE, f"Cannot flag {uid} seen: {data!r}")

    def _count_unseen_sync(self) -> int:
        return len(self._search_unseen(self._require_conn()))

    def _close_sync(self) -> None:
        self._logout_quietly()

    def _search_unseen(self, conn: imaplib.IMAP4) -> list[bytes]:
        status, data = conn.uid("SEARCH", None, "UNSEEN")
        if status != "OK":
            raise MailSourceError(ConnectionErrorKind.UNEXPECTED_FAILURE, f"UNSEEN search failed: {data!r}")
        if not data or not data[0]:
            return []
        return data[0].split()

    def _require_conn(self) -> imaplib.IMAP4:
        if self._conn is None:
            raise MailSourceError(ConnectionErrorKind.ILLEGAL_STATE, f"{self.name} has no open connection")
        return self._conn

    def _logout_quietly(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        if conn.state == "SELECTED":
            try:
                conn.close()
            except (imaplib.IMAP4.error, OSError):
                pass
        try:
            conn.logout()
        except (imaplib.IMAP4.error, OSError):
            pass

    # ------------------------------------------------------------------
    # Error taxonomy
    # ------------------------------------------------------------------

    def _classify(self, exc: BaseException, operation: str) -> ConnectionErrorKind:
        if isinstance(exc, imaplib.IMAP4.abort):
            return ConnectionErrorKind.CONNECTION_ERROR
        if isinstance(exc, imaplib.IMAP4.error):
            if "illegal in state" in str(exc).lower():
                return ConnectionErrorKind.ILLEGAL_STATE
            return ConnectionErrorKind.UNEXPECTED_FAILURE
        return classify_error(exc)
