"""
Periodic domain verification.

Runs ``DomainVerificationEngine.verify_all`` on a fixed interval. The
engine does blocking DNS I/O, so each run is pushed to a worker thread and
the event loop only handles timing and shutdown.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

from mailtrust.common.exceptions import ConflictError

from .engine import BatchReport, DomainVerificationEngine

logger = logging.getLogger(__name__)


class HealthCheckScheduler:
    """Re-verifies all domains every ``interval_seconds``."""

    def __init__(self, engine: DomainVerificationEngine, interval_seconds: float = 3600) -> None:
        self.engine = engine
        self.interval_seconds = interval_seconds
        self._running = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self.last_report: Optional[BatchReport] = None
        self.runs = 0

        logger.info("HealthCheckScheduler initialized with %ss interval", interval_seconds)

    @classmethod
    def from_settings(
        cls, engine: DomainVerificationEngine, settings: Any
    ) -> Optional["HealthCheckScheduler"]:
        """
        Build a scheduler from ``settings.scheduler``.

        Returns:
            The scheduler, or None when scheduling is disabled.
        """
        if not settings.scheduler.enabled:
            logger.info("Scheduled health checks are disabled")
            return None
        return cls(engine, interval_seconds=settings.scheduler.interval_seconds)

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_once(self) -> BatchReport:
        """Verify all domains once, off the event loop."""
        report = await asyncio.to_thread(self.engine.verify_all)
        self.last_report = report
        self.runs += 1
        logger.info(
            "Verification run finished: %d verified, %d failed",
            len(report.verified), len(report.failed),
        )
        return report

    async def start(self) -> None:
        """
        Run verification until ``stop`` is called.

        Raises:
            ConflictError: If the scheduler is already running.
        """
        if self._running:
            raise ConflictError("Health check scheduler is already running")

        self._running = True
        self._shutdown_event = asyncio.Event()
        logger.info("Starting health check scheduler at %s", datetime.now().isoformat())

        try:
            while not self._shutdown_event.is_set():
                try:
                    await self.run_once()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.exception("Verification run failed: %s", e)

                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(), timeout=self.interval_seconds
                    )
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("Health check scheduler cancelled")
        finally:
            self._running = False
            logger.info("Health check scheduler stopped")

    async def stop(self) -> None:
        """Signal the loop to exit after the current run."""
        if not self._running:
            logger.warning("Health check scheduler is not running")
            return
        if self._shutdown_event:
            self._shutdown_event.set()
