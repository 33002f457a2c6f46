"""Tests for mailarchive.shutdown."""

from __future__ import annotations

import asyncio
import os
import signal
from unittest.mock import MagicMock

import pytest

from mailarchive.shutdown import install_signal_handlers


class TestInstallSignalHandlers:
    @pytest.mark.asyncio
    async def test_sigterm_sets_event(self):
        event = asyncio.Event()
        install_signal_handlers(event)

        assert not event.is_set()
        os.kill(os.getpid(), signal.SIGTERM)
        # The loop needs an I/O poll cycle to drain the signal self-pipe.
        await asyncio.sleep(0.05)
        assert event.is_set()

    @pytest.mark.asyncio
    async def test_handlers_registered_for_both_signals(self):
        event = asyncio.Event()
        install_signal_handlers(event)
        loop = asyncio.get_running_loop()

        assert loop.remove_signal_handler(signal.SIGTERM) is True
        assert loop.remove_signal_handler(signal.SIGINT) is True

    @pytest.mark.asyncio
    async def test_reports_running_session(self):
        event = asyncio.Event()
        in_progress = MagicMock(return_value=True)
        install_signal_handlers(event, session_in_progress=in_progress)

        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.sleep(0.05)

        assert event.is_set()
        in_progress.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_repeated_signal_keeps_event_set(self):
        event = asyncio.Event()
        in_progress = MagicMock(return_value=False)
        install_signal_handlers(event, session_in_progress=in_progress)

        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.sleep(0.05)
        os.kill(os.getpid(), signal.SIGINT)
        await asyncio.sleep(0.05)

        assert event.is_set()
        in_progress.assert_called_once_with()
