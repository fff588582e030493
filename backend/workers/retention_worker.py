"""
Retention worker - periodic expiry cleanup and confidence decay

Each cycle:
1. RetentionService.cleanup_expired()  (delete expired claims + votes,
   recompute touched pairs)
2. RetentionService.recalculate_confidence()  (recency decay for every
   remaining aggregate)
3. sleep retention_interval_seconds

Graceful shutdown on SIGTERM/SIGINT: the current cycle finishes, the sleep
is cut short.
"""
import asyncio
import logging
import signal
from typing import Optional

from services.retention import RetentionService

logger = logging.getLogger(__name__)


class RetentionWorker:

    def __init__(
        self,
        retention: RetentionService,
        interval_seconds: int = 3600,
        batch_size: int = 1000,
        worker_name: str = "retention-worker",
    ):
        self.retention = retention
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.worker_name = worker_name
        self.running = False
        self.cycles_completed = 0
        self.cycles_failed = 0
        self._wakeup: Optional[asyncio.Event] = None

    async def run_once(self) -> dict:
        """One cleanup + recalculation pass"""
        cleanup = await self.retention.cleanup_expired(batch_size=self.batch_size)
        recalculation = await self.retention.recalculate_confidence()
        return {
            'cleanup': cleanup.to_dict(),
            'recalculation': recalculation.to_dict(),
        }

    async def start(self):
        self._setup_signal_handlers()
        self._wakeup = asyncio.Event()
        self.running = True
        logger.info(f"[{self.worker_name}] Started, interval={self.interval_seconds}s")

        while self.running:
            try:
                summary = await self.run_once()
                self.cycles_completed += 1
                logger.info(
                    f"[{self.worker_name}] Cycle {self.cycles_completed}: "
                    f"deleted {summary['cleanup']['claims_deleted']} claims, "
                    f"updated {summary['recalculation']['updated']} aggregates"
                )
            except asyncio.CancelledError:
                logger.info(f"[{self.worker_name}] Received cancellation signal")
                break
            except Exception as e:
                self.cycles_failed += 1
                logger.error(f"[{self.worker_name}] Cycle failed: {e}", exc_info=True)

            if not self.running:
                break
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

        logger.info(
            f"[{self.worker_name}] Shutting down. "
            f"Cycles: {self.cycles_completed}, Failed: {self.cycles_failed}"
        )

    def stop(self):
        self.running = False
        if self._wakeup is not None:
            self._wakeup.set()

    def _setup_signal_handlers(self):
        """Setup graceful shutdown on SIGTERM/SIGINT"""
        def shutdown_handler(signum, frame):
            logger.info(f"[{self.worker_name}] Received signal {signum}, shutting down...")
            self.stop()

        signal.signal(signal.SIGTERM, shutdown_handler)
        signal.signal(signal.SIGINT, shutdown_handler)
