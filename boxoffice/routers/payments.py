from fastapi import APIRouter, Depends, Request, Header, BackgroundTasks, Query
from sqlalchemy.orm import Session

from boxoffice.database import get_db
from boxoffice.schemas.identity import CurrentUser
from boxoffice.schemas.reservation import PaymentStatusResponse, ReservationResponse
from boxoffice.services.auth import get_current_user_required
from boxoffice.services.email import queue_ticket_confirmation
from boxoffice.services.gateway import PaymentGateway, get_gateway
from boxoffice.services.payment import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.get("/verify", response_model=PaymentStatusResponse)
async def verify_payment(
    background_tasks: BackgroundTasks,
    session_id: str = Query(..., min_length=1),
    user: CurrentUser = Depends(get_current_user_required),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    result = PaymentService.confirm_by_poll(db, gateway, session_id, user)

    if result.newly_paid:
        queue_ticket_confirmation(background_tasks, result.reservation)

    return PaymentStatusResponse(
        paid=result.paid,
        reservation=ReservationResponse.model_validate(result.reservation)
    )


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    stripe_signature: str = Header(None, alias="stripe-signature"),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db)
):
    payload = await request.body()
    result = PaymentService.confirm_by_callback(db, gateway, payload, stripe_signature)

    if result.newly_paid:
        queue_ticket_confirmation(background_tasks, result.reservation)

    return {"status": "success", "handled": result.handled}
