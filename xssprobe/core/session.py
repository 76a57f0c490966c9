"""
Scan Session - owns every component for one scan.

The configuration is snapshotted when the session is built, so edits made
while a scan runs only apply to the next session. Entering the session clears
the environment cache and starts the dispatcher; leaving it stops the
dispatcher, fails whatever is still queued and lets sink deliveries finish.
"""

import time
import uuid
from typing import Any, Callable, Dict, Optional

from xssprobe.core.config import ScanConfig, settings
from xssprobe.core.dispatcher import ProbeDispatcher
from xssprobe.core.orchestrator import DetectionOrchestrator, make_token
from xssprobe.core.scanner import PageScanner
from xssprobe.core.transport import HttpxTransport, ProbeTransport
from xssprobe.reporting.notifier import LoggingSink, VulnerabilitySink
from xssprobe.tools.waf.fingerprinter import EnvironmentFingerprinter
from xssprobe.utils.logger import get_logger

logger = get_logger("core.session")


class ScanSession:
    """
    Usage:
        async with ScanSession(ScanConfig.load("scan.json")) as session:
            results = await session.scanner.scan_page(url, html, headers)
    """

    def __init__(
        self,
        config: ScanConfig,
        transport: Optional[ProbeTransport] = None,
        sink: Optional[VulnerabilitySink] = None,
        fingerprinter: Optional[EnvironmentFingerprinter] = None,
        token_factory: Callable[[], str] = make_token,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_id = uuid.uuid4().hex[:8]
        self.config = config.snapshot()
        self._owns_transport = transport is None
        self.transport = transport or HttpxTransport()
        self.sink = sink or LoggingSink()
        self.fingerprinter = fingerprinter or EnvironmentFingerprinter(clock=clock)
        self.dispatcher = ProbeDispatcher.from_config(self.transport, self.config, clock=clock)
        self.orchestrator = DetectionOrchestrator(
            self.dispatcher,
            self.config,
            fingerprinter=self.fingerprinter,
            sink=self.sink,
            token_factory=token_factory,
            server_filtering=settings.SERVER_AWARE_FILTERING,
        )
        self.scanner = PageScanner(self.orchestrator, self.config)
        self.started_at: Optional[float] = None

    async def start(self) -> None:
        self.fingerprinter.clear_cache()
        self.dispatcher.start()
        self.started_at = time.time()
        logger.info(f"[{self.session_id}] Scan session started")

    async def close(self) -> None:
        await self.dispatcher.stop()
        dropped = self.dispatcher.cancel_pending("session closed")
        if dropped:
            logger.warning(f"[{self.session_id}] {dropped} queued probes discarded at shutdown")
        await self.orchestrator.wait_for_notifications()
        await self.sink.close()
        if self._owns_transport:
            await self.transport.close()
        logger.info(f"[{self.session_id}] Scan session closed: {self.get_stats()}")

    async def __aenter__(self) -> "ScanSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "duration": round(time.time() - self.started_at, 2) if self.started_at else 0.0,
            "detection": self.orchestrator.get_stats(),
            "dispatcher": self.dispatcher.get_stats(),
        }
