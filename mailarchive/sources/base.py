"""MailSource, the ABC every mailbox protocol implements.

Protocol libraries (``imaplib``, ``poplib``) are blocking; every call runs
in a worker thread via ``asyncio.to_thread()`` under ``asyncio.wait_for``
so no operation can stall a session past the configured timeout.
"""

from __future__ import annotations

import abc
import asyncio
import socket
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from ..config import MailSourceConfig, RetryConfig
from ..errors import MailSourceError
from ..models import ConnectionErrorKind
from ..retry import with_retry

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class FetchedMail:
    """Raw bytes of one message, as returned by the server."""

    uid: str
    raw_bytes: bytes


def classify_error(exc: BaseException) -> ConnectionErrorKind:
    """Map a transport-level exception onto the connection error taxonomy."""
    if isinstance(exc, MailSourceError):
        return exc.kind
    if isinstance(exc, socket.gaierror):
        return ConnectionErrorKind.UNKNOWN_HOST
    if isinstance(exc, (TimeoutError, OSError, EOFError)):
        return ConnectionErrorKind.CONNECTION_ERROR
    return ConnectionErrorKind.UNEXPECTED_FAILURE


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, MailSourceError) and exc.kind is ConnectionErrorKind.CONNECTION_ERROR


class MailSource(abc.ABC):
    """One remote mailbox.

    Usage::

        async with source:
            for mail in await source.fetch_unseen(50):
                ...
                await source.mark_seen(mail.uid)

    Subclasses implement the ``_*_sync`` hooks, which run in a worker
    thread, and may refine :meth:`_classify` for protocol exceptions.
    """

    def __init__(
        self,
        descriptor: MailSourceConfig,
        *,
        timeout: float = 30.0,
        retry: RetryConfig | None = None,
        readonly: bool = False,
    ) -> None:
        self.descriptor = descriptor
        self._timeout = timeout
        self._retry = retry or RetryConfig()
        self._readonly = readonly
        self._connected = False

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def connected(self) -> bool:
        return self._connected

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection, log in and select the folder.

        Transient connection errors are retried; everything else is raised
        at once as :class:`MailSourceError`.
        """
        if self._connected:
            raise MailSourceError(ConnectionErrorKind.ILLEGAL_STATE, f"{self.name} is already connected")

        @with_retry(self._retry, retryable=is_transient)
        async def _attempt() -> None:
            await self._call(self._connect_sync, operation="connect")

        await _attempt()
        self._connected = True
        logger.info(
            "mail_source_connected",
            source=self.name,
            host=self.descriptor.host,
            protocol=self.descriptor.protocol,
            folder=self.descriptor.folder,
        )

    async def close(self) -> None:
        """Release the connection.  Safe to call when not connected."""
        if not self._connected:
            return
        self._connected = False
        try:
            await self._call(self._close_sync, operation="close")
        except MailSourceError as exc:
            logger.warning("mail_source_close_failed", source=self.name, kind=exc.kind.value)
        else:
            logger.info("mail_source_closed", source=self.name)

    async def __aenter__(self) -> MailSource:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def fetch_unseen(self, max_messages: int | None = None) -> list[FetchedMail]:
        """Up to *max_messages* unseen messages, in server order.

        Each message is a separate timed call, so a slow but healthy batch
        never exceeds the timeout as a whole.  Fetching leaves the server
        flags alone; call :meth:`mark_seen` once a message is archived.
        """
        self._require_connected()
        uids = await self._call(self._list_unseen_sync, max_messages, operation="list_unseen")
        mails: list[FetchedMail] = []
        for uid in uids:
            mail = await self._call(self._fetch_sync, uid, operation="fetch")
            if mail is None:
                logger.warning("mail_source_fetch_empty", source=self.name, uid=uid)
                continue
            mails.append(mail)
        logger.debug("mail_source_fetched", source=self.name, fetched=len(mails))
        return mails

    async def mark_seen(self, uid: str) -> None:
        """Flag message *uid* as seen, so later passes skip it."""
        self._require_connected()
        await self._call(self._mark_seen_sync, uid, operation="mark_seen")

    async def count_unseen(self) -> int:
        self._require_connected()
        return await self._call(self._count_unseen_sync, operation="count_unseen")

    def _require_connected(self) -> None:
        if not self._connected:
            raise MailSourceError(ConnectionErrorKind.ILLEGAL_STATE, f"{self.name} is not connected")

    # ------------------------------------------------------------------
    # Thread offloading
    # ------------------------------------------------------------------

    async def _call(self, func: Callable[..., T], *args: Any, operation: str) -> T:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), self._timeout)
        except MailSourceError:
            raise
        except Exception as exc:
            kind = self._classify(exc, operation)
            logger.debug(
                "mail_source_operation_failed",
                source=self.name,
                operation=operation,
                kind=kind.value,
                error=repr(exc),
            )
            raise MailSourceError(kind, f"{operation} failed: {exc!r}") from exc

    def _classify(self, exc: BaseException, operation: str) -> ConnectionErrorKind:
        return classify_error(exc)

    # ------------------------------------------------------------------
    # Protocol hooks (run in a worker thread)
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def _connect_sync(self) -> None: ...

    @abc.abstractmethod
    def _list_unseen_sync(self, max_messages: int | None) -> list[str]: ...

    @abc.abstractmethod
    def _fetch_sync(self, uid: str) -> FetchedMail | None: ...

    def _mark_seen_sync(self, uid: str) -> None:
        """No-op for protocols without seen flags."""

    @abc.abstractmethod
    def _count_unseen_sync(self) -> int: ...

    @abc.abstractmethod
    def _close_sync(self) -> None: ...
