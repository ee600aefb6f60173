"""Background anchor loop with exponential backoff and graceful shutdown."""

from __future__ import annotations

import asyncio
import contextlib

from herdledger.core.config import Settings
from herdledger.core.logging import get_logger
from herdledger.modules.audit.anchoring_service import AnchorCycleResult, AnchoringService

logger = get_logger(__name__)


class AnchorScheduler:
    """Run anchor cycles every ``interval_seconds`` until stopped.

    After a failed cycle the next attempt waits
    ``min(backoff_base * 2 ** (failures - 1), backoff_max)`` instead of the
    regular interval. Cycle errors are logged and never propagate.
    """

    def __init__(
        self,
        anchoring_service: AnchoringService,
        *,
        interval_seconds: float,
        backoff_base_seconds: float,
        backoff_max_seconds: float,
    ) -> None:
        self._service = anchoring_service
        self._interval = interval_seconds
        self._backoff_base = backoff_base_seconds
        self._backoff_max = backoff_max_seconds
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.consecutive_failures = 0
        self.cycles_run = 0

    @classmethod
    def from_settings(cls, anchoring_service: AnchoringService, settings: Settings) -> AnchorScheduler:
        return cls(
            anchoring_service,
            interval_seconds=settings.anchor_interval_seconds,
            backoff_base_seconds=settings.anchor_backoff_base_seconds,
            backoff_max_seconds=settings.anchor_backoff_max_seconds,
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_delay(self) -> float:
        """Seconds to wait before the next cycle."""
        if self.consecutive_failures == 0:
            return self._interval
        backoff = self._backoff_base * 2 ** (self.consecutive_failures - 1)
        return float(min(backoff, self._backoff_max))

    async def run_once(self) -> AnchorCycleResult | None:
        """Run one cycle, recording success or failure. Never raises."""
        self.cycles_run += 1
        try:
            result = await self._service.run_anchor_cycle()
        except Exception as exc:
            self.consecutive_failures += 1
            logger.warning(
                "anchor_cycle_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                consecutive_failures=self.consecutive_failures,
                retry_in_seconds=self.next_delay(),
                exc_info=True,
            )
            return None
        self.consecutive_failures = 0
        return result

    async def _run(self) -> None:
        logger.info("anchor_scheduler_started", interval_seconds=self._interval)
        try:
            while not self._stop_event.is_set():
                await self.run_once()
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.next_delay())
        finally:
            logger.info("anchor_scheduler_stopped", cycles_run=self.cycles_run)

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="audit-anchor-scheduler")

    async def stop(self) -> None:
        """Signal the loop to exit and wait for an in-flight cycle to finish."""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
