from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional
from boxoffice.models.reservation import ReservationState


class Attendee(BaseModel):
    first_name: str = Field(max_length=100)
    last_name: str = Field(max_length=100)

    @property
    def full_name(self) -> str:
        return f"{self.first_name.strip()} {self.last_name.strip()}"


class ReservationCreate(BaseModel):
    event_id: int
    quantity: int
    attendees: list[Attendee]
    discount_code: Optional[str] = None


class EventInfo(BaseModel):
    id: int
    title: str
    occurs_at: datetime
    ticket_price: Decimal

    class Config:
        from_attributes = True


class ReservationResponse(BaseModel):
    id: int
    ticket_number: str
    event_id: int
    buyer_id: str
    quantity: int
    attendees: list[Attendee]
    unit_price: Decimal
    subtotal: Decimal
    discount_code: Optional[str]
    discount_amount: Decimal
    total_amount: Decimal
    state: ReservationState
    expires_at: Optional[datetime]
    external_payment_ref: Optional[str]
    paid_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: Optional[datetime]
    event: Optional[EventInfo] = None

    class Config:
        from_attributes = True


class AvailabilityResponse(BaseModel):
    event_id: int
    capacity: int
    reserved: int
    available: int
    sold_out: bool


class CheckoutResponse(BaseModel):
    reservation_id: int
    session_ref: str
    redirect_url: str
    publishable_key: str = ""


class PaymentStatusResponse(BaseModel):
    paid: bool
    reservation: ReservationResponse


class ManualConfirmRequest(BaseModel):
    external_payment_ref: str


class SweepResponse(BaseModel):
    expired: int
    skipped: int
    failed: int
