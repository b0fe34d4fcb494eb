from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from boxoffice.database import Base


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("capacity >= 1", name="ck_events_capacity_positive"),
        CheckConstraint("reserved >= 0 AND reserved <= capacity", name="ck_events_reserved_bounds"),
    )

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    ticket_price = Column(Numeric(10, 2), nullable=False, default=0)
    capacity = Column(Integer, nullable=False, default=100)
    # Only the inventory ledger writes this column
    reserved = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    occurs_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    reservations = relationship("Reservation", back_populates="event")

    @property
    def available(self) -> int:
        return max(0, self.capacity - self.reserved)

    @property
    def sold_out(self) -> bool:
        return self.reserved >= self.capacity
