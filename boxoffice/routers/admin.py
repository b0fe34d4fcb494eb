from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from boxoffice.config import get_settings
from boxoffice.database import get_db
from boxoffice.models.reservation import ReservationState
from boxoffice.schemas.identity import CurrentUser
from boxoffice.schemas.reservation import ManualConfirmRequest, ReservationResponse, SweepResponse
from boxoffice.services.auth import get_current_admin
from boxoffice.services.email import queue_ticket_confirmation
from boxoffice.services.reservation import ConfirmationSource, ReservationService
from boxoffice.services.scheduler import sweep_expired_reservations

router = APIRouter(prefix="/admin", tags=["admin"])
settings = get_settings()


@router.get("/reservations", response_model=list[ReservationResponse])
async def all_reservations(
    state: Optional[ReservationState] = None,
    admin: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return ReservationService.list_all(db, state)


@router.get("/reservations/expiring-soon", response_model=list[ReservationResponse])
async def expiring_soon(
    minutes: Optional[int] = None,
    admin: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    window = timedelta(minutes=minutes or settings.expiring_soon_minutes)
    return ReservationService.list_expiring_soon(db, window)


@router.post("/reservations/sweep", response_model=SweepResponse)
async def run_sweep(
    admin: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    result = sweep_expired_reservations(db)
    return SweepResponse(expired=result.expired, skipped=result.skipped, failed=result.failed)


@router.post("/reservations/{reservation_id}/confirm", response_model=ReservationResponse)
async def confirm_manually(
    reservation_id: int,
    payload: ManualConfirmRequest,
    background_tasks: BackgroundTasks,
    admin: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    result = ReservationService.confirm_paid(
        db, reservation_id, payload.external_payment_ref, ConfirmationSource.MANUAL
    )
    if result.newly_paid:
        queue_ticket_confirmation(background_tasks, result.reservation)
    return result.reservation
