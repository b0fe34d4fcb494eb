from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from boxoffice.config import get_settings
from boxoffice.database import get_db
from boxoffice.middleware.security import limiter
from boxoffice.schemas.identity import CurrentUser
from boxoffice.schemas.reservation import CheckoutResponse, ReservationCreate, ReservationResponse
from boxoffice.services.auth import get_current_user_required
from boxoffice.services.gateway import PaymentGateway, get_gateway
from boxoffice.services.payment import PaymentService
from boxoffice.services.reservation import ReservationService

router = APIRouter(prefix="/reservations", tags=["reservations"])
settings = get_settings()


@router.post("", response_model=ReservationResponse, status_code=201)
@limiter.limit(settings.rate_limit_reservations)
async def create_reservation(
    request: Request,
    payload: ReservationCreate,
    user: CurrentUser = Depends(get_current_user_required),
    db: Session = Depends(get_db)
):
    return ReservationService.create(
        db,
        event_id=payload.event_id,
        buyer=user,
        quantity=payload.quantity,
        attendees=payload.attendees,
        discount_code=payload.discount_code
    )


@router.get("", response_model=list[ReservationResponse])
async def my_reservations(
    user: CurrentUser = Depends(get_current_user_required),
    db: Session = Depends(get_db)
):
    return ReservationService.list_for_buyer(db, user.id)


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: int,
    user: CurrentUser = Depends(get_current_user_required),
    db: Session = Depends(get_db)
):
    return ReservationService.get(db, reservation_id, user)


@router.post("/{reservation_id}/cancel", response_model=ReservationResponse)
async def cancel_reservation(
    reservation_id: int,
    user: CurrentUser = Depends(get_current_user_required),
    db: Session = Depends(get_db)
):
    return ReservationService.cancel(db, reservation_id, user)


@router.post("/{reservation_id}/checkout", response_model=CheckoutResponse)
async def open_checkout(
    reservation_id: int,
    user: CurrentUser = Depends(get_current_user_required),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    checkout = PaymentService.open_checkout(db, gateway, reservation_id, user)
    return CheckoutResponse(
        reservation_id=checkout.reservation_id,
        session_ref=checkout.session_ref,
        redirect_url=checkout.redirect_url,
        publishable_key=settings.stripe_publishable_key
    )
