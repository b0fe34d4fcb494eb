"""Reservation state machine.

    pending --> paid | cancelled | expired

Every transition is one conditional UPDATE matching ``state = 'pending'``, so
of two racing callers exactly one moves the row and the other observes the
result. Releases to the inventory ledger happen in the same transaction as
the transition that justifies them, which makes them single-fire.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence
import enum
import logging
import secrets
import string
import time

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from boxoffice.config import get_settings
from boxoffice.errors import (
    CapacityError, ConflictError, ErrorCode, NotFoundError, ValidationError
)
from boxoffice.models.event import Event
from boxoffice.models.reservation import Reservation, ReservationState
from boxoffice.schemas.identity import CurrentUser
from boxoffice.schemas.reservation import Attendee
from boxoffice.services.discount import DiscountService, round2
from boxoffice.services.inventory import InventoryService

settings = get_settings()
logger = logging.getLogger(__name__)

TICKET_ALPHABET = string.ascii_uppercase + string.digits


class ConfirmationSource(str, enum.Enum):
    POLL = "poll"
    CALLBACK = "callback"
    MANUAL = "manual"


@dataclass
class ConfirmationResult:
    reservation: Reservation
    newly_paid: bool


class ReservationService:
    @staticmethod
    def generate_ticket_number() -> str:
        stamp = str(int(time.time() * 1000))[-6:]
        suffix = "".join(secrets.choice(TICKET_ALPHABET) for _ in range(6))
        return f"TKT-{stamp}-{suffix}"

    @staticmethod
    def validate_request(quantity: int, attendees: Sequence[Attendee]) -> list[dict]:
        """Check quantity and attendee list; return the cleaned attendees."""
        max_quantity = settings.max_tickets_per_reservation
        if quantity < 1 or quantity > max_quantity:
            raise ValidationError(
                ErrorCode.INVALID_QUANTITY,
                f"Quantity must be between 1 and {max_quantity}"
            )

        if len(attendees) != quantity:
            raise ValidationError(
                ErrorCode.ATTENDEE_COUNT_MISMATCH,
                "Number of attendees must match quantity"
            )

        cleaned = []
        seen = set()
        for attendee in attendees:
            first_name = attendee.first_name.strip()
            last_name = attendee.last_name.strip()
            if not first_name or not last_name:
                raise ValidationError(
                    ErrorCode.INVALID_ATTENDEE,
                    "Every attendee needs a first and last name"
                )

            key = " ".join(attendee.full_name.split()).lower()
            if key in seen:
                raise ValidationError(ErrorCode.DUPLICATE_ATTENDEE, "Attendee names must be unique")
            seen.add(key)
            cleaned.append({"first_name": first_name, "last_name": last_name})

        return cleaned

    @staticmethod
    def create(
        db: Session,
        event_id: int,
        buyer: CurrentUser,
        quantity: int,
        attendees: Sequence[Attendee],
        discount_code: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Reservation:
        """
        Hold ``quantity`` tickets for the buyer and open a pending reservation.

        The ledger increment and the reservation insert commit together; if
        the ledger refuses, nothing is written.
        """
        now = now or datetime.utcnow()
        cleaned_attendees = ReservationService.validate_request(quantity, attendees)

        event = db.query(Event).filter(Event.id == event_id).first()
        if not event:
            raise NotFoundError(ErrorCode.EVENT_NOT_FOUND, "Event not found")
        if not event.active:
            raise CapacityError(ErrorCode.EVENT_INACTIVE, "This event is not open for booking")
        if event.occurs_at <= now:
            raise CapacityError(ErrorCode.EVENT_PAST, "This event has already taken place")

        unit_price = round2(event.ticket_price)
        subtotal = round2(unit_price * quantity)
        discount_amount = Decimal("0.00")
        total_amount = subtotal
        applied_code = None

        if discount_code:
            try:
                quote = DiscountService.quote(db, discount_code, buyer.id, subtotal, now)
            except NotFoundError:
                raise ValidationError(ErrorCode.INVALID_DISCOUNT, "Discount code not found")
            applied_code = quote.code
            discount_amount = quote.discount_amount
            total_amount = quote.final_amount

        try:
            InventoryService.try_reserve(db, event_id, quantity, now)

            reservation = Reservation(
                ticket_number=ReservationService.generate_ticket_number(),
                event_id=event_id,
                buyer_id=buyer.id,
                buyer_email=buyer.email,
                quantity=quantity,
                attendees=cleaned_attendees,
                unit_price=unit_price,
                subtotal=subtotal,
                discount_code=applied_code,
                discount_amount=discount_amount,
                total_amount=total_amount,
                state=ReservationState.PENDING,
                expires_at=now + timedelta(hours=settings.reservation_ttl_hours)
            )
            db.add(reservation)
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(reservation)
        logger.info(
            f"Reservation {reservation.id} ({reservation.ticket_number}) created for buyer "
            f"{buyer.id}: {quantity} ticket(s) to event {event_id}, expires {reservation.expires_at}"
        )
        return reservation

    @staticmethod
    def _load(db: Session, reservation_id: int) -> Optional[Reservation]:
        return db.query(Reservation).options(
            joinedload(Reservation.event)
        ).filter(
            Reservation.id == reservation_id
        ).populate_existing().first()

    @staticmethod
    def confirm_paid(
        db: Session,
        reservation_id: int,
        external_payment_ref: Optional[str],
        source: ConfirmationSource,
        now: Optional[datetime] = None
    ) -> ConfirmationResult:
        """
        Mark a reservation paid. Safe to call any number of times.

        Only the call that performs the pending -> paid transition redeems the
        discount; replays return the paid reservation with ``newly_paid``
        False.

        Raises:
            ConflictError: EXPIRED if the hold ran out first, ALREADY_TERMINAL
                if it was cancelled.
            NotFoundError: unknown reservation.
        """
        now = now or datetime.utcnow()
        updated = db.query(Reservation).filter(
            Reservation.id == reservation_id,
            Reservation.state == ReservationState.PENDING,
            Reservation.expires_at > now
        ).update(
            {
                Reservation.state: ReservationState.PAID,
                Reservation.expires_at: None,
                Reservation.external_payment_ref: external_payment_ref,
                Reservation.paid_at: now
            },
            synchronize_session=False
        )
        db.commit()

        reservation = ReservationService._load(db, reservation_id)
        if reservation is None:
            raise NotFoundError(ErrorCode.RESERVATION_NOT_FOUND, "Reservation not found")

        if updated == 1:
            logger.info(
                f"Reservation {reservation_id} paid via {source.value} "
                f"(payment {external_payment_ref})"
            )
            ReservationService._redeem_discount(db, reservation)
            return ConfirmationResult(reservation=reservation, newly_paid=True)

        if reservation.state == ReservationState.PAID:
            logger.info(
                f"Reservation {reservation_id} already paid; {source.value} confirmation is a no-op"
            )
            return ConfirmationResult(reservation=reservation, newly_paid=False)

        if reservation.state == ReservationState.PENDING:
            try:
                ReservationService.expire(db, reservation_id, now)
            except ConflictError:
                pass

        if reservation.state == ReservationState.CANCELLED:
            raise ConflictError(ErrorCode.ALREADY_TERMINAL, "This reservation was cancelled")

        raise ConflictError(
            ErrorCode.EXPIRED,
            "This reservation has expired. Please create a new reservation."
        )

    @staticmethod
    def _redeem_discount(db: Session, reservation: Reservation) -> None:
        if not reservation.discount_code:
            return
        # Payment already happened; bookkeeping failures must not undo it
        try:
            redeemed = DiscountService.redeem(
                db, reservation.discount_code, reservation.buyer_id, reservation.id
            )
        except (NotFoundError, SQLAlchemyError) as e:
            db.rollback()
            logger.error(
                f"Could not record discount {reservation.discount_code} for reservation "
                f"{reservation.id}: {e}"
            )
            return

        if not redeemed:
            logger.error(
                f"Discount {reservation.discount_code} was already used by buyer {reservation.buyer_id} "
                f"but reservation {reservation.id} was paid at the discounted price; needs manual reconciliation"
            )

    @staticmethod
    def cancel(
        db: Session,
        reservation_id: int,
        requested_by: CurrentUser,
        now: Optional[datetime] = None
    ) -> Reservation:
        """Cancel a pending reservation and give its tickets back."""
        now = now or datetime.utcnow()
        reservation = ReservationService.get(db, reservation_id, requested_by, now)

        if reservation.state == ReservationState.PAID:
            raise ConflictError(ErrorCode.PAID_NOT_CANCELLABLE, "Cannot cancel a paid reservation")
        if reservation.is_terminal:
            raise ConflictError(ErrorCode.ALREADY_TERMINAL, f"Reservation is already {reservation.state.value}")

        try:
            updated = db.query(Reservation).filter(
                Reservation.id == reservation_id,
                Reservation.state == ReservationState.PENDING
            ).update(
                {
                    Reservation.state: ReservationState.CANCELLED,
                    Reservation.cancelled_at: now
                },
                synchronize_session=False
            )
            if updated == 1:
                InventoryService.release(db, reservation.event_id, reservation.quantity)
            db.commit()
        except Exception:
            db.rollback()
            raise

        reservation = ReservationService._load(db, reservation_id)
        if updated != 1:
            # Lost a race with payment, the sweeper or another cancel
            if reservation.state == ReservationState.PAID:
                raise ConflictError(ErrorCode.PAID_NOT_CANCELLABLE, "Cannot cancel a paid reservation")
            raise ConflictError(ErrorCode.ALREADY_TERMINAL, f"Reservation is already {reservation.state.value}")

        logger.info(f"Reservation {reservation_id} cancelled by {requested_by.id}")
        return reservation

    @staticmethod
    def expire(db: Session, reservation_id: int, now: Optional[datetime] = None) -> Reservation:
        """
        Expire an overdue pending reservation and release its tickets.

        Raises:
            ConflictError: ALREADY_TERMINAL if another caller got there first,
                NOT_EXPIRED if the hold is still running.
            NotFoundError: unknown reservation.
        """
        now = now or datetime.utcnow()
        try:
            updated = db.query(Reservation).filter(
                Reservation.id == reservation_id,
                Reservation.state == ReservationState.PENDING,
                Reservation.expires_at <= now
            ).update(
                {Reservation.state: ReservationState.EXPIRED},
                synchronize_session=False
            )
            if updated == 1:
                reservation = ReservationService._load(db, reservation_id)
                InventoryService.release(db, reservation.event_id, reservation.quantity)
            db.commit()
        except Exception:
            db.rollback()
            raise

        reservation = ReservationService._load(db, reservation_id)
        if reservation is None:
            raise NotFoundError(ErrorCode.RESERVATION_NOT_FOUND, "Reservation not found")

        if updated == 1:
            logger.info(
                f"Expired reservation {reservation.ticket_number} and freed "
                f"{reservation.quantity} ticket(s) for event {reservation.event_id}"
            )
            return reservation

        if reservation.is_terminal:
            raise ConflictError(ErrorCode.ALREADY_TERMINAL, f"Reservation is already {reservation.state.value}")
        raise ConflictError(ErrorCode.NOT_EXPIRED, "Reservation has not expired yet")

    @staticmethod
    def _refresh_if_overdue(db: Session, reservation: Reservation, now: datetime) -> Reservation:
        """Expire on read so no caller ever sees a stale pending hold."""
        if not reservation.is_overdue(now):
            return reservation
        try:
            return ReservationService.expire(db, reservation.id, now)
        except ConflictError:
            return ReservationService._load(db, reservation.id)

    @staticmethod
    def get(
        db: Session,
        reservation_id: int,
        requested_by: Optional[CurrentUser] = None,
        now: Optional[datetime] = None
    ) -> Reservation:
        """Fetch a reservation; buyers only see their own."""
        reservation = ReservationService._load(db, reservation_id)
        if reservation is None:
            raise NotFoundError(ErrorCode.RESERVATION_NOT_FOUND, "Reservation not found")
        if requested_by and not requested_by.is_admin and reservation.buyer_id != requested_by.id:
            raise NotFoundError(ErrorCode.RESERVATION_NOT_FOUND, "Reservation not found")
        return ReservationService._refresh_if_overdue(db, reservation, now or datetime.utcnow())

    @staticmethod
    def get_by_session_ref(db: Session, session_ref: str) -> Optional[Reservation]:
        return db.query(Reservation).filter(
            Reservation.external_session_ref == session_ref
        ).populate_existing().first()

    @staticmethod
    def record_checkout_session(db: Session, reservation_id: int, session_ref: str) -> bool:
        """Store the gateway session on a reservation that is still pending."""
        updated = db.query(Reservation).filter(
            Reservation.id == reservation_id,
            Reservation.state == ReservationState.PENDING
        ).update(
            {Reservation.external_session_ref: session_ref},
            synchronize_session=False
        )
        db.commit()
        return updated == 1

    @staticmethod
    def _refresh_all(db: Session, reservations: list[Reservation], now: datetime) -> list[Reservation]:
        return [ReservationService._refresh_if_overdue(db, r, now) for r in reservations]

    @staticmethod
    def list_for_buyer(db: Session, buyer_id: str, now: Optional[datetime] = None) -> list[Reservation]:
        reservations = db.query(Reservation).options(
            joinedload(Reservation.event)
        ).filter(
            Reservation.buyer_id == buyer_id
        ).order_by(Reservation.created_at.desc(), Reservation.id.desc()).all()
        return ReservationService._refresh_all(db, reservations, now or datetime.utcnow())

    @staticmethod
    def list_all(
        db: Session,
        state: Optional[ReservationState] = None,
        now: Optional[datetime] = None
    ) -> list[Reservation]:
        query = db.query(Reservation).options(joinedload(Reservation.event))
        if state:
            query = query.filter(Reservation.state == state)
        reservations = query.order_by(Reservation.created_at.desc(), Reservation.id.desc()).all()
        return ReservationService._refresh_all(db, reservations, now or datetime.utcnow())

    @staticmethod
    def list_expiring_soon(
        db: Session,
        within: timedelta,
        now: Optional[datetime] = None
    ) -> list[Reservation]:
        """Pending reservations whose hold ends within the given window."""
        now = now or datetime.utcnow()
        return db.query(Reservation).options(joinedload(Reservation.event)).filter(
            Reservation.state == ReservationState.PENDING,
            Reservation.expires_at > now,
            Reservation.expires_at <= now + within
        ).order_by(Reservation.expires_at.asc()).all()

    @staticmethod
    def list_overdue_ids(db: Session, now: Optional[datetime] = None) -> list[int]:
        now = now or datetime.utcnow()
        rows = db.query(Reservation.id).filter(
            Reservation.state == ReservationState.PENDING,
            Reservation.expires_at <= now
        ).all()
        return [row.id for row in rows]
