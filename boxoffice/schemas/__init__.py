from boxoffice.schemas.identity import CurrentUser
from boxoffice.schemas.reservation import (
    Attendee, ReservationCreate, ReservationResponse, AvailabilityResponse,
    CheckoutResponse, PaymentStatusResponse, ManualConfirmRequest, SweepResponse
)
from boxoffice.schemas.discount import (
    DiscountCreate, DiscountUpdate, DiscountResponse, QuoteRequest, QuoteResponse
)

__all__ = [
    "CurrentUser",
    "Attendee", "ReservationCreate", "ReservationResponse", "AvailabilityResponse",
    "CheckoutResponse", "PaymentStatusResponse", "ManualConfirmRequest", "SweepResponse",
    "DiscountCreate", "DiscountUpdate", "DiscountResponse", "QuoteRequest", "QuoteResponse"
]
