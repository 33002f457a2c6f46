"""Graceful shutdown handling via SIGTERM / SIGINT."""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Callable

import structlog

logger = structlog.get_logger()


def install_signal_handlers(
    shutdown_event: asyncio.Event,
    *,
    session_in_progress: Callable[[], bool] | None = None,
) -> None:
    """Register SIGTERM and SIGINT handlers that set *shutdown_event*.

    The event doubles as the coordinator's cancel token: a running session
    stops at the next message boundary.  *session_in_progress* reports
    whether a session is running, so the log says what the signal cut short.
    """
    loop = asyncio.get_running_loop()

    def _handle(sig: signal.Signals) -> None:
        if shutdown_event.is_set():
            logger.info("shutdown_already_requested", signal=sig.name)
            return
        cancelling = session_in_progress is not None and session_in_progress()
        logger.info("shutdown_signal_received", signal=sig.name, cancelling_session=cancelling)
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _handle, sig)
