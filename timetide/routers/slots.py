"""Public slot lookup for an event type."""
import logging
from datetime import date

from fastapi import APIRouter, Depends, Query

from timetide.application.slot_service import SlotService
from timetide.dependencies import get_slot_service
from timetide.schemas import SlotsResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["slots"])


@router.get("/slots", response_model=SlotsResponse)
def get_slots(
    event_type_id: str = Query(..., alias="eventTypeId"),
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    timezone: str = Query("UTC"),
    service: SlotService = Depends(get_slot_service),
):
    """Bookable slots grouped by date in the invitee's timezone."""
    result = service.get_slots(event_type_id, start_date, end_date, timezone)
    return result.to_dict()
