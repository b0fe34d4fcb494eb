"""Checkout and payment reconciliation.

A paid checkout reaches us twice: the buyer's browser comes back and polls
(``confirm_by_poll``), and the gateway posts a signed callback
(``confirm_by_callback``). Both end in ``ReservationService.confirm_paid``,
so whichever lands first does the work and the other is a no-op.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
import logging

from sqlalchemy.orm import Session

from boxoffice.config import get_settings
from boxoffice.errors import (
    CapacityError, ConflictError, ErrorCode, GatewayError, NotFoundError, ValidationError
)
from boxoffice.models.reservation import Reservation, ReservationState
from boxoffice.schemas.identity import CurrentUser
from boxoffice.services.discount import DiscountService
from boxoffice.services.gateway import GatewaySession, LineItem, PaymentGateway
from boxoffice.services.reservation import ConfirmationSource, ReservationService

settings = get_settings()
logger = logging.getLogger(__name__)

TICKET_METADATA_TYPE = "ticket"
HANDLED_EVENT_TYPES = {
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
}


@dataclass
class CheckoutSession:
    reservation_id: int
    session_ref: str
    redirect_url: str


@dataclass
class PollResult:
    reservation: Reservation
    paid: bool
    newly_paid: bool = False


@dataclass
class CallbackResult:
    event_type: str
    handled: bool
    reservation: Optional[Reservation] = None
    newly_paid: bool = False
    needs_reconciliation: bool = False


class PaymentService:
    @staticmethod
    def to_minor_units(amount: Decimal) -> int:
        return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @staticmethod
    def build_line_items(reservation: Reservation) -> list[LineItem]:
        """Describe the purchase from the reservation's price snapshot."""
        title = reservation.event.title
        return [LineItem(
            name=f"{title} - Tickets",
            description=f"{reservation.quantity} ticket(s) for {title} ({reservation.ticket_number})",
            unit_amount=PaymentService.to_minor_units(reservation.unit_price),
            quantity=reservation.quantity
        )]

    @staticmethod
    def open_checkout(
        db: Session,
        gateway: PaymentGateway,
        reservation_id: int,
        buyer: CurrentUser,
        now: Optional[datetime] = None
    ) -> CheckoutSession:
        """
        Start (or resume) payment for a pending reservation.

        A gateway failure leaves the reservation pending with its tickets
        held, so the buyer can retry until the hold expires.
        """
        now = now or datetime.utcnow()
        reservation = ReservationService.get(db, reservation_id, buyer, now)

        if reservation.state == ReservationState.PAID:
            raise ConflictError(ErrorCode.ALREADY_TERMINAL, "This reservation is already paid")
        if reservation.state == ReservationState.EXPIRED:
            raise ConflictError(
                ErrorCode.EXPIRED,
                "This reservation has expired. Please create a new reservation."
            )
        if reservation.state == ReservationState.CANCELLED:
            raise ConflictError(ErrorCode.ALREADY_TERMINAL, "This reservation was cancelled")
        if reservation.event.occurs_at <= now:
            raise CapacityError(ErrorCode.EVENT_PAST, "This event has already taken place")
        if reservation.discount_code and DiscountService.code_redeemed_by(
            db, reservation.discount_code, reservation.buyer_id
        ):
            # Used on another reservation since this one was quoted
            raise ValidationError(
                ErrorCode.DISCOUNT_ALREADY_USED,
                "You have already used this discount code (limited to 1 use per user). "
                "Please cancel and create a new reservation."
            )

        if reservation.external_session_ref:
            try:
                existing = gateway.retrieve_session(reservation.external_session_ref)
                if existing.is_open:
                    logger.info(
                        f"Reusing open checkout session {existing.id} for reservation {reservation_id}"
                    )
                    return CheckoutSession(reservation_id, existing.id, existing.url)
            except GatewayError as e:
                logger.warning(f"Could not reuse checkout session for reservation {reservation_id}: {e}")

        success_url = f"{settings.frontend_url}/ticket-checkout/success?session_id={{CHECKOUT_SESSION_ID}}"
        cancel_url = f"{settings.frontend_url}/ticket-checkout/cancel?reservation_id={reservation_id}"

        session = gateway.create_checkout_session(
            line_items=PaymentService.build_line_items(reservation),
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={
                "type": TICKET_METADATA_TYPE,
                "reservation_id": str(reservation.id),
                "ticket_number": reservation.ticket_number,
                "buyer_id": reservation.buyer_id
            },
            customer_email=reservation.buyer_email,
            discount_amount=PaymentService.to_minor_units(reservation.discount_amount or 0),
            discount_label=f"Discount: {reservation.discount_code}" if reservation.discount_code else None
        )

        if not ReservationService.record_checkout_session(db, reservation_id, session.id):
            raise ConflictError(
                ErrorCode.ALREADY_TERMINAL,
                "This reservation changed state during checkout"
            )

        logger.info(f"Checkout session {session.id} opened for reservation {reservation_id}")
        return CheckoutSession(reservation_id, session.id, session.url)

    @staticmethod
    def _find_reservation(db: Session, session: GatewaySession) -> Optional[Reservation]:
        reservation = ReservationService.get_by_session_ref(db, session.id)
        if reservation is not None:
            return reservation

        # A retried checkout replaces the stored ref; an older session can
        # still be the one that got paid
        reservation_id = session.metadata.get("reservation_id")
        if not reservation_id or not str(reservation_id).isdigit():
            return None
        return db.query(Reservation).filter(
            Reservation.id == int(reservation_id)
        ).populate_existing().first()

    @staticmethod
    def confirm_by_poll(
        db: Session,
        gateway: PaymentGateway,
        session_ref: str,
        buyer: Optional[CurrentUser] = None,
        now: Optional[datetime] = None
    ) -> PollResult:
        """
        Check a checkout session on behalf of the returning buyer.

        An unpaid session is not an error: the result says ``paid=False`` and
        the client keeps polling.
        """
        session = gateway.retrieve_session(session_ref)

        reservation = PaymentService._find_reservation(db, session)
        if reservation is None:
            raise NotFoundError(ErrorCode.RESERVATION_NOT_FOUND, "Reservation not found")
        if buyer and not buyer.is_admin and reservation.buyer_id != buyer.id:
            raise NotFoundError(ErrorCode.RESERVATION_NOT_FOUND, "Reservation not found")

        if not session.is_paid:
            reservation = ReservationService.get(db, reservation.id, now=now)
            return PollResult(reservation=reservation, paid=False)

        try:
            result = ReservationService.confirm_paid(
                db, reservation.id, session.payment_intent, ConfirmationSource.POLL, now
            )
        except ConflictError as e:
            logger.error(
                f"Payment {session.payment_intent} captured for reservation {reservation.id} "
                f"but confirmation was refused ({e.code.value}); needs manual reconciliation"
            )
            raise

        return PollResult(reservation=result.reservation, paid=True, newly_paid=result.newly_paid)

    @staticmethod
    def confirm_by_callback(
        db: Session,
        gateway: PaymentGateway,
        payload: bytes,
        signature: Optional[str],
        now: Optional[datetime] = None
    ) -> CallbackResult:
        """
        Handle a gateway callback. Nothing is read or written before the
        signature checks out.
        """
        if not signature:
            raise GatewayError(ErrorCode.SIGNATURE_INVALID, "Missing signature")

        event = gateway.construct_event(payload, signature)
        logger.info(f"Received gateway event: {event.type}")

        if event.type not in HANDLED_EVENT_TYPES or event.session is None:
            return CallbackResult(event_type=event.type, handled=False)

        session = event.session
        if session.metadata.get("type") != TICKET_METADATA_TYPE or not session.is_paid:
            return CallbackResult(event_type=event.type, handled=False)

        reservation = PaymentService._find_reservation(db, session)
        if reservation is None:
            logger.warning(f"Gateway event {event.type} for unknown session {session.id}")
            return CallbackResult(event_type=event.type, handled=False)

        try:
            result = ReservationService.confirm_paid(
                db, reservation.id, session.payment_intent, ConfirmationSource.CALLBACK, now
            )
        except ConflictError as e:
            logger.error(
                f"Payment {session.payment_intent} captured for reservation {reservation.id} "
                f"but confirmation was refused ({e.code.value}); needs manual reconciliation"
            )
            return CallbackResult(
                event_type=event.type,
                handled=True,
                reservation=ReservationService.get(db, reservation.id, now=now),
                needs_reconciliation=True
            )

        return CallbackResult(
            event_type=event.type,
            handled=True,
            reservation=result.reservation,
            newly_paid=result.newly_paid
        )
