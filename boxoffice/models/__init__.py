from boxoffice.models.event import Event
from boxoffice.models.reservation import Reservation, ReservationState
from boxoffice.models.discount import Discount, DiscountKind, DiscountRedemption

__all__ = [
    "Event",
    "Reservation",
    "ReservationState",
    "Discount",
    "DiscountKind",
    "DiscountRedemption",
]
