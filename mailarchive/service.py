"""ArchiveService wires the store and coordinator and runs them.

Three entry points, one per CLI command:

* :meth:`ArchiveService.load` runs a single session;
* :meth:`ArchiveService.check` tests every (or one) configured source;
* :meth:`ArchiveService.serve` runs a session every poll interval next to
  the FastAPI health server, until SIGTERM / SIGINT.
"""

from __future__ import annotations

import asyncio
import time

import structlog
import uvicorn

from .config import ArchiveConfig
from .coordinator import IngestionCoordinator, check_source
from .health import create_health_app
from .models import ConnectionErrorKind, ServiceStatus, SessionReport
from .shutdown import install_signal_handlers
from .sql_store import SqlStore
from .store import Store

logger = structlog.get_logger()


class ArchiveService:
    name = "mailarchive"

    def __init__(
        self,
        config: ArchiveConfig,
        *,
        store: Store | None = None,
        coordinator: IngestionCoordinator | None = None,
    ) -> None:
        self.config = config
        self.status: ServiceStatus = ServiceStatus.STARTING
        self.start_time: float = time.monotonic()

        self._store = store if store is not None else SqlStore(config.database_url)
        self.coordinator = coordinator or IngestionCoordinator(config, self._store)
        self._shutdown_event = asyncio.Event()

    async def _open_store(self) -> None:
        if isinstance(self._store, SqlStore):
            await self._store.create_schema()

    # ------------------------------------------------------------------
    # One-shot commands
    # ------------------------------------------------------------------

    async def load(self, max_messages: int | None = None) -> SessionReport:
        """Run a single ingestion session and return its report."""
        await self._open_store()
        try:
            return await self.coordinator.run_session(max_messages)
        finally:
            await self._store.close()

    async def check(self, source_name: str | None = None) -> dict[str, int | ConnectionErrorKind]:
        """Unseen-message count (or error kind) per configured source."""
        descriptors = self.config.sources
        if source_name is not None:
            descriptors = [d for d in descriptors if d.name == source_name]
            if not descriptors:
                raise KeyError(f"No mail source named {source_name!r}")

        results: dict[str, int | ConnectionErrorKind] = {}
        for descriptor in descriptors:
            results[descriptor.name] = await check_source(
                descriptor,
                timeout=self.config.session.connect_timeout_seconds,
                retry=self.config.retry,
            )
        return results

    # ------------------------------------------------------------------
    # Serve mode
    # ------------------------------------------------------------------

    async def _run_session_loop(self) -> None:
        """Run a session, then wait one poll interval (or until shutdown)."""
        logger.info("session_loop_started", interval=self.config.session.poll_interval_seconds)
        self.status = ServiceStatus.RUNNING
        try:
            while not self._shutdown_event.is_set():
                await self.coordinator.run_session(cancel=self._shutdown_event)
                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=self.config.session.poll_interval_seconds,
                    )
                except TimeoutError:
                    pass
        finally:
            logger.info("session_loop_stopped")

    async def _run_health_server(self) -> None:
        """Start the FastAPI health server and shut it down on signal."""
        app = create_health_app(self)
        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=self.config.session.health_port,
            log_level="warning",
        )
        server = uvicorn.Server(config)

        # Run until the shutdown event fires
        serve_task = asyncio.create_task(server.serve())
        await self._shutdown_event.wait()
        server.should_exit = True
        await serve_task

    async def serve(self) -> None:
        """Run sessions periodically until a shutdown signal arrives."""
        install_signal_handlers(
            self._shutdown_event,
            session_in_progress=lambda: self.coordinator.in_progress,
        )
        self.start_time = time.monotonic()
        logger.info("service_starting", sources=[d.name for d in self.config.sources])

        await self._open_store()
        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self._run_session_loop())
                tg.create_task(self._run_health_server())
        except* Exception:
            logger.exception("service_task_group_error")
        finally:
            self.status = ServiceStatus.STOPPING
            await self._store.close()
            self.status = ServiceStatus.STOPPED
            logger.info("service_stopped")

    def shutdown(self) -> None:
        """Ask a running :meth:`serve` to stop after the current message."""
        self._shutdown_event.set()
