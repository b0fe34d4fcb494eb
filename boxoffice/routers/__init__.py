from boxoffice.routers.events import router as events_router
from boxoffice.routers.reservations import router as reservations_router
from boxoffice.routers.payments import router as payments_router
from boxoffice.routers.discounts import router as discounts_router
from boxoffice.routers.admin import router as admin_router

__all__ = [
    "events_router",
    "reservations_router",
    "payments_router",
    "discounts_router",
    "admin_router"
]
