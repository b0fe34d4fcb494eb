from boxoffice.services.inventory import InventoryService
from boxoffice.services.discount import DiscountService
from boxoffice.services.reservation import ReservationService
from boxoffice.services.payment import PaymentService
from boxoffice.services.email import EmailService

__all__ = [
    "InventoryService",
    "DiscountService",
    "ReservationService",
    "PaymentService",
    "EmailService",
]
