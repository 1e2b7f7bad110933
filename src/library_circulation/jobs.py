"""
Scheduled circulation jobs.

Three sweeps keep circulation state moving without anyone at the desk:

1. Overdue sweep: Active loans past due become Overdue, members are told
   once, and fines are accrued up to date
2. Pickup sweep: uncollected holds past their deadline expire and their
   copies pass to the next member in the queue
3. Availability sweep: any title with both a waiting queue and an Available
   copy gets its queue fulfilled

Every sweep is idempotent, so a run that is interrupted or repeated is
harmless. ``CirculationScheduler.run_forever`` repeats them on an interval
inside an asyncio event loop; the sweeps themselves run in a worker thread.
"""

import asyncio
import logging
import signal
import sys
from datetime import datetime

from pydantic import BaseModel, Field

from .config import get_config
from .database.session import get_db_manager
from .desk import CirculationDesk
from .models import Reservation
from .observability import configure_logging, initialize_observability
from .services import OverdueSweepReport

logger = logging.getLogger(__name__)


class SweepSummary(BaseModel):
    """Outcome of one pass over all three sweeps."""

    started_at: datetime
    overdue: OverdueSweepReport | None = None
    expired_pickups: list[Reservation] = Field(default_factory=list)
    fulfilled: list[Reservation] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class CirculationScheduler:
    """Runs the circulation sweeps once or on a fixed interval."""

    def __init__(self, desk: CirculationDesk, interval_seconds: float | None = None):
        self.desk = desk
        self.interval_seconds = interval_seconds or desk.config.sweep_interval_seconds
        self.runs = 0

    def run_once(self) -> SweepSummary:
        """Run the overdue, pickup and availability sweeps in that order."""
        summary = SweepSummary(started_at=self.desk.clock())

        overdue = self.desk.run_overdue_sweep()
        if overdue.ok:
            summary.overdue = overdue.value
        else:
            summary.errors.append(f"overdue sweep: {overdue.error.message}")

        expired = self.desk.expire_stale_pickups()
        if expired.ok:
            summary.expired_pickups = expired.value or []
        else:
            summary.errors.append(f"pickup sweep: {expired.error.message}")

        fulfilled = self.desk.run_availability_sweep()
        summary.fulfilled = fulfilled.value or []

        self.runs += 1
        logger.info(
            "Circulation sweep finished: %d newly overdue, %d holds expired, %d reservations fulfilled",
            summary.overdue.loans_marked_overdue if summary.overdue else 0,
            len(summary.expired_pickups),
            len(summary.fulfilled),
        )
        return summary

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        """Sweep every ``interval_seconds`` until ``stop_event`` is set.

        A sweep that raises is logged and the loop carries on with the next
        interval.
        """
        stop_event = stop_event or asyncio.Event()
        logger.info("Circulation scheduler started (every %ss)", self.interval_seconds)

        while not stop_event.is_set():
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:
                logger.exception("Circulation sweep failed")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except TimeoutError:
                continue

        logger.info("Circulation scheduler stopped after %d run(s)", self.runs)


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main() -> None:
    """Run the circulation sweeps until interrupted.

    Started via the ``library-circulation-sweeps`` entry point or
    ``python -m library_circulation.jobs``. SIGINT and SIGTERM stop the loop
    after the sweep in progress finishes.
    """
    config = get_config()
    configure_logging(config)
    initialize_observability()

    logger.info("=" * 60)
    logger.info("Library Circulation Sweeps")
    logger.info("Database: %s", config.get_database_url())
    logger.info("Interval: %ss", config.sweep_interval_seconds)
    logger.info("=" * 60)

    try:
        get_db_manager().init_database()
        scheduler = CirculationScheduler(CirculationDesk(config=config))
        asyncio.run(_serve(scheduler))
    except KeyboardInterrupt:
        logger.info("Sweeps stopped by user")
    except Exception:
        logger.exception("Circulation scheduler failed")
        sys.exit(1)


async def _serve(scheduler: CirculationScheduler) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop_event.set)
    await scheduler.run_forever(stop_event)


if __name__ == "__main__":
    main()
