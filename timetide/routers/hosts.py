"""Host onboarding, availability schedules and event types.

All routes here change configuration and sit behind the admin key.
"""
import logging
from datetime import date

from fastapi import APIRouter, Depends, Response

from timetide.application.configuration import ConfigurationService
from timetide.dependencies import get_configuration_service, require_admin_key
from timetide.schemas import (
    CreateEventTypeRequest, CreateHostRequest, CreateScheduleRequest, DaySlotsRequest,
    EventTypeOut, HostOut, OverrideRequest, ScheduleOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["configuration"], dependencies=[Depends(require_admin_key)])


@router.post("/hosts", status_code=201, response_model=HostOut)
def create_host(payload: CreateHostRequest, service: ConfigurationService = Depends(get_configuration_service)):
    host = service.create_host(payload.name, payload.email, payload.timezone)
    default = service.schedules.get_default(str(host.id))
    return HostOut(
        id=str(host.id),
        name=host.name,
        email=host.email,
        timezone=host.timezone,
        defaultScheduleId=str(default.id) if default else None,
    )


@router.post("/hosts/{host_id}/schedules", status_code=201, response_model=ScheduleOut)
def create_schedule(host_id: str, payload: CreateScheduleRequest,
                    service: ConfigurationService = Depends(get_configuration_service)):
    weekly = {day: [r.as_tuple() for r in ranges] for day, ranges in payload.weekly.items()}
    schedule = service.create_schedule(host_id, payload.name, payload.timezone, weekly, payload.make_default)
    return ScheduleOut.from_schedule(schedule)


@router.put("/schedules/{schedule_id}/days/{day_of_week}", response_model=ScheduleOut)
def replace_day(schedule_id: str, day_of_week: int, payload: DaySlotsRequest,
                service: ConfigurationService = Depends(get_configuration_service)):
    schedule = service.replace_day_slots(schedule_id, day_of_week, [r.as_tuple() for r in payload.ranges])
    return ScheduleOut.from_schedule(schedule)


@router.post("/schedules/{schedule_id}/default", response_model=ScheduleOut)
def set_default(schedule_id: str, service: ConfigurationService = Depends(get_configuration_service)):
    return ScheduleOut.from_schedule(service.set_default_schedule(schedule_id))


@router.put("/schedules/{schedule_id}/overrides/{day}")
def upsert_override(schedule_id: str, day: date, payload: OverrideRequest,
                    service: ConfigurationService = Depends(get_configuration_service)):
    override = service.upsert_override(schedule_id, day, payload.is_working, [r.as_tuple() for r in payload.ranges])
    return {
        "date": override.date.isoformat(),
        "isWorking": bool(override.is_working),
        "ranges": list(override.intervals or []),
    }


@router.delete("/schedules/{schedule_id}/overrides/{day}", status_code=204)
def delete_override(schedule_id: str, day: date, service: ConfigurationService = Depends(get_configuration_service)):
    service.delete_override(schedule_id, day)
    return Response(status_code=204)


@router.post("/hosts/{host_id}/event-types", status_code=201, response_model=EventTypeOut)
def create_event_type(host_id: str, payload: CreateEventTypeRequest,
                      service: ConfigurationService = Depends(get_configuration_service)):
    event_type = service.create_event_type(host_id, **payload.model_dump())
    return EventTypeOut.from_event_type(event_type)
