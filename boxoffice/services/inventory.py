"""Inventory ledger: the per-event ``reserved`` counter.

Both mutations are single conditional UPDATE statements evaluated by the
database, so concurrent requests can never read a count, decide in Python and
write back a stale value. Neither method commits; they run inside the
caller's transaction alongside the reservation row they belong to.
"""

from datetime import datetime
from typing import Optional
import logging

from sqlalchemy.orm import Session

from boxoffice.errors import CapacityError, ErrorCode, NotFoundError, ValidationError
from boxoffice.models.event import Event

logger = logging.getLogger(__name__)


class InventoryService:
    @staticmethod
    def try_reserve(
        db: Session,
        event_id: int,
        quantity: int,
        now: Optional[datetime] = None
    ) -> None:
        """
        Atomically add ``quantity`` to the event's reserved count.

        The increment only happens if the event is active, has not taken place
        yet, and the new count stays within capacity.

        Raises:
            CapacityError: INSUFFICIENT_CAPACITY, EVENT_INACTIVE or EVENT_PAST.
            NotFoundError: the event does not exist.
        """
        if quantity < 1:
            raise ValidationError(ErrorCode.INVALID_QUANTITY, "Quantity must be at least 1")

        now = now or datetime.utcnow()
        updated = db.query(Event).filter(
            Event.id == event_id,
            Event.active.is_(True),
            Event.occurs_at > now,
            Event.reserved + quantity <= Event.capacity
        ).update(
            {Event.reserved: Event.reserved + quantity},
            synchronize_session=False
        )

        if updated == 1:
            logger.info(f"Reserved {quantity} ticket(s) for event {event_id}")
            return

        raise InventoryService._rejection(db, event_id, quantity, now)

    @staticmethod
    def _rejection(db: Session, event_id: int, quantity: int, now: datetime) -> Exception:
        # Read only to explain the rejected update, never to decide a write
        event = db.query(Event).filter(Event.id == event_id).populate_existing().first()

        if not event:
            return NotFoundError(ErrorCode.EVENT_NOT_FOUND, "Event not found")
        if not event.active:
            return CapacityError(ErrorCode.EVENT_INACTIVE, "This event is not open for booking")
        if event.occurs_at <= now:
            return CapacityError(ErrorCode.EVENT_PAST, "This event has already taken place")

        logger.info(
            f"Rejected {quantity} ticket(s) for event {event_id}: "
            f"{event.available} of {event.capacity} left"
        )
        return CapacityError(
            ErrorCode.INSUFFICIENT_CAPACITY,
            f"Only {event.available} ticket(s) available"
        )

    @staticmethod
    def release(db: Session, event_id: int, quantity: int) -> bool:
        """
        Atomically give ``quantity`` tickets back to the event.

        Callers guarantee one release per reservation through its state
        transition. The floor condition keeps a buggy replay from driving the
        counter negative; it is logged instead.
        """
        updated = db.query(Event).filter(
            Event.id == event_id,
            Event.reserved >= quantity
        ).update(
            {Event.reserved: Event.reserved - quantity},
            synchronize_session=False
        )

        if updated != 1:
            logger.error(
                f"Release of {quantity} ticket(s) for event {event_id} matched no row; "
                f"counter left unchanged"
            )
            return False

        logger.info(f"Released {quantity} ticket(s) for event {event_id}")
        return True

    @staticmethod
    def availability(db: Session, event_id: int) -> Event:
        event = db.query(Event).filter(Event.id == event_id).populate_existing().first()
        if not event:
            raise NotFoundError(ErrorCode.EVENT_NOT_FOUND, "Event not found")
        return event
