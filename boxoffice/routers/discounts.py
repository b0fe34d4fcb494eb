from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from boxoffice.config import get_settings
from boxoffice.database import get_db
from boxoffice.middleware.security import limiter
from boxoffice.schemas.discount import (
    DiscountCreate, DiscountResponse, DiscountUpdate, QuoteRequest, QuoteResponse
)
from boxoffice.schemas.identity import CurrentUser
from boxoffice.services.auth import get_current_admin, get_current_user_required
from boxoffice.services.discount import DiscountService

router = APIRouter(prefix="/discounts", tags=["discounts"])
settings = get_settings()


@router.post("/quote", response_model=QuoteResponse)
@limiter.limit(settings.rate_limit_reservations)
async def quote_discount(
    request: Request,
    payload: QuoteRequest,
    user: CurrentUser = Depends(get_current_user_required),
    db: Session = Depends(get_db)
):
    quote = DiscountService.quote(db, payload.code, user.id, payload.subtotal)
    return QuoteResponse(
        code=quote.code,
        kind=quote.kind,
        value=quote.value,
        subtotal=quote.subtotal,
        discount_amount=quote.discount_amount,
        final_amount=quote.final_amount
    )


@router.get("", response_model=list[DiscountResponse])
async def list_discounts(
    admin: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return DiscountService.list_all(db)


@router.post("", response_model=DiscountResponse, status_code=201)
async def create_discount(
    payload: DiscountCreate,
    admin: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return DiscountService.create(db, payload)


@router.get("/{discount_id}", response_model=DiscountResponse)
async def get_discount(
    discount_id: int,
    admin: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return DiscountService.get(db, discount_id)


@router.put("/{discount_id}", response_model=DiscountResponse)
async def update_discount(
    discount_id: int,
    payload: DiscountUpdate,
    admin: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return DiscountService.update(db, discount_id, payload)


@router.post("/{discount_id}/toggle", response_model=DiscountResponse)
async def toggle_discount(
    discount_id: int,
    admin: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return DiscountService.toggle(db, discount_id)


@router.delete("/{discount_id}", status_code=204)
async def delete_discount(
    discount_id: int,
    admin: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    DiscountService.delete(db, discount_id)
