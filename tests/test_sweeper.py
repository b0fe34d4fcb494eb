import asyncio
from datetime import datetime, timedelta

from boxoffice.models.reservation import ReservationState
from boxoffice.services.reservation import ConfirmationSource, ReservationService
from boxoffice.services import scheduler
from boxoffice.services.scheduler import (
    SWEEP_JOB_ID, ReservationSweeper, sweep_expired_reservations
)

from conftest import attendees, force_overdue, reload_event


def test_sweep_expires_only_overdue_pending(db, make_event, buyer, other_buyer, admin):
    event = make_event(capacity=10)
    overdue = ReservationService.create(db, event.id, buyer, 2, attendees(2, "Overdue"))
    fresh = ReservationService.create(db, event.id, other_buyer, 3, attendees(3, "Fresh"))
    paid = ReservationService.create(db, event.id, admin, 1, attendees(1, "Paid"))
    ReservationService.confirm_paid(db, paid.id, "pi_1", ConfirmationSource.MANUAL)
    force_overdue(db, overdue.id)

    result = sweep_expired_reservations(db)

    assert (result.expired, result.skipped, result.failed) == (1, 0, 0)
    assert ReservationService.get(db, overdue.id).state == ReservationState.EXPIRED
    assert ReservationService.get(db, fresh.id).state == ReservationState.PENDING
    assert ReservationService.get(db, paid.id).state == ReservationState.PAID
    assert reload_event(db, event.id).reserved == 4


def test_sweep_with_nothing_to_do(db, make_event, buyer):
    event = make_event()
    ReservationService.create(db, event.id, buyer, 1, attendees(1))

    result = sweep_expired_reservations(db)

    assert (result.expired, result.skipped, result.failed) == (0, 0, 0)


def test_sweep_continues_past_a_failing_record(db, make_event, buyer, other_buyer, monkeypatch):
    event = make_event(capacity=10)
    broken = ReservationService.create(db, event.id, buyer, 1, attendees(1, "Broken"))
    healthy = ReservationService.create(db, event.id, other_buyer, 2, attendees(2, "Healthy"))
    force_overdue(db, broken.id)
    force_overdue(db, healthy.id)

    original_expire = ReservationService.expire

    def flaky_expire(session, reservation_id, now=None):
        if reservation_id == broken.id:
            raise RuntimeError("disk on fire")
        return original_expire(session, reservation_id, now)

    monkeypatch.setattr(ReservationService, "expire", staticmethod(flaky_expire))
    result = sweep_expired_reservations(db)
    monkeypatch.undo()

    assert (result.expired, result.skipped, result.failed) == (1, 0, 1)
    assert reload_event(db, event.id).reserved == 1

    # The next run picks up what the failed one left behind
    assert sweep_expired_reservations(db).expired == 1
    assert reload_event(db, event.id).reserved == 0


def test_sweep_counts_already_finished_reservations_as_skipped(db, make_event, buyer, monkeypatch):
    event = make_event()
    reservation = ReservationService.create(db, event.id, buyer, 1, attendees(1))
    later = datetime.utcnow() + timedelta(days=2)
    # Another caller expires it between the listing and the sweep's own attempt
    monkeypatch.setattr(
        ReservationService, "list_overdue_ids",
        staticmethod(lambda session, now=None: [reservation.id, reservation.id])
    )

    result = sweep_expired_reservations(db, now=later)

    assert (result.expired, result.skipped) == (1, 1)
    assert reload_event(db, event.id).reserved == 0


def test_run_once_uses_given_session(db, make_event, buyer):
    event = make_event()
    reservation = ReservationService.create(db, event.id, buyer, 1, attendees(1))
    force_overdue(db, reservation.id)

    result = ReservationSweeper(interval_minutes=5).run_once(db)

    assert result.expired == 1


def test_sweeper_schedules_interval_job(monkeypatch):
    monkeypatch.setattr(scheduler, "sweep_expired_reservations", lambda: None)

    async def scenario():
        sweeper = ReservationSweeper(interval_minutes=7)
        sweeper.start()
        try:
            job = sweeper.scheduler.get_job(SWEEP_JOB_ID)
            assert sweeper.running
            assert job is not None
            assert job.trigger.interval == timedelta(minutes=7)
            assert job.max_instances == 1
            assert job.coalesce
        finally:
            sweeper.stop()
        assert not sweeper.running

    asyncio.run(scenario())
