from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import logging

from sqlalchemy.orm import Session

from boxoffice.database import SessionLocal
from boxoffice.errors import ConflictError
from boxoffice.services.reservation import ReservationService

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "reservation_sweep"


@dataclass
class SweepResult:
    expired: int = 0
    skipped: int = 0
    failed: int = 0


def sweep_expired_reservations(db: Optional[Session] = None, now: Optional[datetime] = None) -> SweepResult:
    """
    Expire every overdue pending reservation and release its tickets.

    One bad record is logged and skipped; it never stops the rest of the
    sweep. Reservations already finished by a lazy read or a payment count
    as skipped.
    """
    owns_session = db is None
    if owns_session:
        db = SessionLocal()

    result = SweepResult()
    try:
        overdue_ids = ReservationService.list_overdue_ids(db, now)
        logger.info(f"Found {len(overdue_ids)} expired reservations to process")

        for reservation_id in overdue_ids:
            try:
                ReservationService.expire(db, reservation_id, now)
                result.expired += 1
            except ConflictError as e:
                result.skipped += 1
                logger.debug(f"Skipped reservation {reservation_id}: {e}")
            except Exception as e:
                db.rollback()
                result.failed += 1
                logger.error(f"Error expiring reservation {reservation_id}: {e}")
    finally:
        if owns_session:
            db.close()

    logger.info(
        f"Sweep finished: {result.expired} expired, {result.skipped} skipped, {result.failed} failed"
    )
    return result


class ReservationSweeper:
    """Owns the background job that reclaims abandoned reservations."""

    def __init__(self, interval_minutes: int, jobstore_url: Optional[str] = None):
        self.interval_minutes = interval_minutes
        jobstores = {}
        if jobstore_url:
            jobstores["default"] = SQLAlchemyJobStore(url=jobstore_url)
        self.scheduler = AsyncIOScheduler(jobstores=jobstores)

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self):
        """Start sweeping now and then every ``interval_minutes``."""
        self.scheduler.start()
        self.scheduler.add_job(
            sweep_expired_reservations,
            "interval",
            minutes=self.interval_minutes,
            id=SWEEP_JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            next_run_time=datetime.now()
        )
        logger.info(f"Reservation sweeper started, running every {self.interval_minutes} minutes")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Reservation sweeper stopped")

    def run_once(self, db: Optional[Session] = None) -> SweepResult:
        return sweep_expired_reservations(db)
