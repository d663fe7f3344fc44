import datetime
import logging
from dataclasses import dataclass
from threading import Event, Thread
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

import config
from clock import SystemClock
from database import Database
from models import AuctionStatus, OPEN_STATUSES
from repository import AuctionRepository

logger = logging.getLogger(__name__)


def next_status(status: AuctionStatus, start_at: datetime.datetime,
                end_at: datetime.datetime, now: datetime.datetime) -> Optional[AuctionStatus]:
    """Where the clock says this auction should be, or None to stay put.

    A boundary instant belongs to the later state.
    """
    if status == AuctionStatus.ACTIVE:
        if now >= end_at:
            # the window went by without ever opening
            return AuctionStatus.EXPIRED
        if now >= start_at:
            return AuctionStatus.IN_PROGRESS
    elif status == AuctionStatus.IN_PROGRESS:
        if now >= end_at:
            return AuctionStatus.COMPLETED
    return None


@dataclass
class TickReport:
    evaluated: int = 0
    transitioned: int = 0
    failed: int = 0


class LifecycleEngine:
    """Moves auctions along active -> in-progress -> completed (or expired)."""

    def __init__(self, database: Database, clock=None):
        self.database = database
        self.clock = clock or SystemClock()

    def tick(self) -> TickReport:
        now = self.clock.now()
        report = TickReport()

        with self.database.session() as session:
            auctions = AuctionRepository(session).find_by_status_and_window(OPEN_STATUSES)

        for auction in auctions:
            report.evaluated += 1
            target = next_status(auction.status, auction.start_at, auction.end_at, now)
            if target is None:
                continue
            try:
                with self.database.session() as session:
                    changed = AuctionRepository(session).update_status(
                        auction.id, target, expected_status=auction.status)
                    session.commit()
            except SQLAlchemyError:
                logger.exception('Could not move auction %s from %s to %s',
                                 auction.id, auction.status.value, target.value)
                report.failed += 1
                continue
            if changed:
                report.transitioned += 1
                logger.info('Auction %s: %s -> %s', auction.id,
                            auction.status.value, target.value)

        logger.debug('Tick at %s: %s', now, report)
        return report


class LifecycleScheduler(Thread):
    """Background thread calling LifecycleEngine.tick on a fixed period."""

    def __init__(self, engine: LifecycleEngine, interval: float = config.LIFECYCLE_TICK_SECONDS):
        super().__init__(daemon=True, name='lifecycle-scheduler')
        self.engine = engine
        self.interval = interval
        self._stop_event = Event()

    def run(self):
        while not self._stop_event.is_set():
            try:
                self.engine.tick()
            except Exception:
                logger.exception('Lifecycle tick failed')
            self._stop_event.wait(self.interval)

    def stop(self, timeout: Optional[float] = None):
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout)
