from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from boxoffice.database import get_db
from boxoffice.schemas.reservation import AvailabilityResponse
from boxoffice.services.inventory import InventoryService

router = APIRouter(prefix="/events", tags=["events"])


@router.get("/{event_id}/availability", response_model=AvailabilityResponse)
async def event_availability(event_id: int, db: Session = Depends(get_db)):
    event = InventoryService.availability(db, event_id)
    return AvailabilityResponse(
        event_id=event.id,
        capacity=event.capacity,
        reserved=event.reserved,
        available=event.available,
        sold_out=event.sold_out
    )
