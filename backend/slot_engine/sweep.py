"""
Expiration Sweep
----------------
Periodic scan that expires slots whose expires_at has passed.

- Runs as an APScheduler interval job owned by ExpirationSweep (start/stop).
- Single-flight: a run that starts while another is in flight is skipped.
- Collect-and-continue: one slot failing to expire never stops the others.

STARTUP USAGE:
    sweep = ExpirationSweep(engine, store)
    sweep.start()
    ...
    sweep.stop()
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import SWEEP_INTERVAL_SECONDS
from .errors import SlotEngineError
from .lifecycle import SlotLifecycleEngine
from .models import utc_now
from .store import EntitlementStore

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "slot_expiration_sweep"


@dataclass
class SweepReport:
    """Aggregated statistics for one sweep run."""
    run_id: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    skipped: bool = False

    found: int = 0
    expired: int = 0
    already_inactive: int = 0
    failed: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)

    def complete(self):
        self.completed_at = datetime.now(timezone.utc)

    @property
    def duration_seconds(self) -> float:
        if not self.completed_at:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def log_summary(self):
        logger.info(
            f"SWEEP_STATS | run_id={self.run_id} | found={self.found} | "
            f"expired={self.expired} | already_inactive={self.already_inactive} | "
            f"failed={self.failed} | duration={self.duration_seconds:.2f}s"
        )
        if self.failures:
            logger.warning(f"SWEEP_FAILURES | run_id={self.run_id} | first 5: {self.failures[:5]}")


class ExpirationSweep:

    def __init__(
        self,
        engine: SlotLifecycleEngine,
        store: EntitlementStore,
        interval_seconds: int = SWEEP_INTERVAL_SECONDS,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.engine = engine
        self.store = store
        self.interval_seconds = interval_seconds
        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self._in_flight = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.get_job(SWEEP_JOB_ID) is not None

    def start(self) -> None:
        """
        Register the sweep job and start the scheduler if this sweep owns it.

        Call from inside a running event loop.
        """
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(timezone=timezone.utc)

        self._scheduler.add_job(
            self._scheduled_run,
            IntervalTrigger(seconds=self.interval_seconds),
            id=SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.interval_seconds,
        )

        if self._owns_scheduler and not self._scheduler.running:
            self._scheduler.start()

        logger.info(f"Expiration sweep registered: every {self.interval_seconds}s")

    def stop(self) -> None:
        if self._scheduler is None:
            return

        if self._scheduler.get_job(SWEEP_JOB_ID):
            self._scheduler.remove_job(SWEEP_JOB_ID)

        if self._owns_scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        logger.info("Expiration sweep stopped")

    async def _scheduled_run(self):
        try:
            await self.run_once()
        except Exception as e:
            # Next tick is the retry
            logger.error(f"=== SWEEP FAILED: {e} ===", exc_info=True)

    async def run_once(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Expire every slot that is past its expires_at.

        Raises:
            StoreUnavailableError: expired slots could not be listed
        """
        report = SweepReport(run_id=str(uuid.uuid4())[:8])

        if self._in_flight.locked():
            report.skipped = True
            report.complete()
            logger.warning(f"Sweep {report.run_id} skipped: previous sweep still in flight")
            return report

        async with self._in_flight:
            now = now or utc_now()
            expired_slots = await self.store.get_expired_slots(now)
            report.found = len(expired_slots)

            for slot in expired_slots:
                try:
                    if await self.engine.expire(slot, now):
                        report.expired += 1
                    else:
                        report.already_inactive += 1
                except SlotEngineError as e:
                    report.failed += 1
                    report.failures.append({**e.to_dict(), "slot_id": slot.id, "holder_id": slot.holder_id})
                    logger.error(f"Failed to expire slot {slot.id}: {e}")
                except Exception as e:
                    report.failed += 1
                    report.failures.append({
                        "error_code": "UNEXPECTED",
                        "message": repr(e),
                        "slot_id": slot.id,
                        "holder_id": slot.holder_id,
                    })
                    logger.error(f"Unexpected error expiring slot {slot.id}: {e}", exc_info=True)

            report.complete()

        report.log_summary()
        return report
