from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Enum, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from boxoffice.database import Base
import enum


class ReservationState(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


TERMINAL_STATES = frozenset({
    ReservationState.PAID,
    ReservationState.CANCELLED,
    ReservationState.EXPIRED,
})


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    ticket_number = Column(String(32), unique=True, nullable=False)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    buyer_id = Column(String(64), nullable=False, index=True)
    buyer_email = Column(String(255), nullable=True)
    quantity = Column(Integer, nullable=False)
    attendees = Column(JSON, nullable=False, default=list)

    unit_price = Column(Numeric(10, 2), nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)
    discount_code = Column(String(64), nullable=True)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False)

    state = Column(Enum(ReservationState), nullable=False, default=ReservationState.PENDING, index=True)
    expires_at = Column(DateTime, nullable=True, index=True)
    external_session_ref = Column(String(255), nullable=True, index=True)
    external_payment_ref = Column(String(255), nullable=True)

    paid_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    event = relationship("Event", back_populates="reservations")

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def is_overdue(self, now) -> bool:
        """True for a pending reservation whose hold has run out."""
        return (
            self.state == ReservationState.PENDING
            and self.expires_at is not None
            and now >= self.expires_at
        )
