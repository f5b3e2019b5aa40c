"""Pydantic models for request/response bodies.

Adding explicit schemas improves validation, documentation and reduces
ad-hoc dict access complexity inside route handlers. Request bodies use
camelCase on the wire.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from timetide.domain.policies import parse_wall_time
from timetide.utils.time import is_valid_timezone


def _check_timezone(value: Optional[str]) -> Optional[str]:
    if value is not None and not is_valid_timezone(value):
        raise ValueError(f"Unknown timezone: {value}")
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TimeRangeIn(BaseModel):
    start: str = Field(..., description="HH:MM host-local")
    end: str = Field(..., description="HH:MM host-local, 24:00 allowed")

    @field_validator("start")
    @classmethod
    def validate_start(cls, v):
        parse_wall_time(v)
        return v

    @field_validator("end")
    @classmethod
    def validate_end(cls, v):
        parse_wall_time(v, allow_end_of_day=True)
        return v

    def as_tuple(self):
        return self.start, self.end


class SlotsResponse(BaseModel):
    slots: Dict[str, List[Dict[str, Any]]]
    truncated: bool = False
    warnings: List[str] = Field(default_factory=list)


class CreateBookingRequest(_CamelModel):
    event_type_id: str = Field(..., alias="eventTypeId")
    start_time: datetime = Field(..., alias="startTime")
    timezone: str = "UTC"
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=30)
    notes: Optional[str] = None
    responses: Optional[Dict[str, Any]] = None

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v):
        return _check_timezone(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        if "@" not in v:
            raise ValueError("email must contain @")
        return v


class CancelBookingRequest(BaseModel):
    reason: Optional[str] = None


class RescheduleBookingRequest(_CamelModel):
    start_time: datetime = Field(..., alias="startTime")
    reason: Optional[str] = None


class BookingOut(_CamelModel):
    uid: str
    event_type_id: str = Field(..., alias="eventTypeId")
    start_time: datetime = Field(..., alias="startTime")
    end_time: datetime = Field(..., alias="endTime")
    timezone: str
    status: str
    name: str
    email: str
    seats_taken: int = Field(1, alias="seatsTaken")
    cancellation_reason: Optional[str] = Field(default=None, alias="cancellationReason")
    rescheduled_from: Optional[str] = Field(default=None, alias="rescheduledFrom")

    @classmethod
    def from_booking(cls, booking, rescheduled_from_uid: Optional[str] = None) -> "BookingOut":
        return cls(
            uid=booking.uid,
            eventTypeId=str(booking.event_type_id),
            startTime=booking.start_time,
            endTime=booking.end_time,
            timezone=booking.timezone,
            status=booking.status,
            name=booking.invitee_name,
            email=booking.invitee_email,
            seatsTaken=booking.seats_taken,
            cancellationReason=booking.cancellation_reason,
            rescheduledFrom=rescheduled_from_uid,
        )


class CreateHostRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: Optional[str] = None
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v):
        return _check_timezone(v)


class CreateScheduleRequest(_CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    timezone: Optional[str] = None
    weekly: Dict[int, List[TimeRangeIn]] = Field(default_factory=dict)
    make_default: bool = Field(default=False, alias="makeDefault")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v):
        return _check_timezone(v)


class DaySlotsRequest(BaseModel):
    ranges: List[TimeRangeIn] = Field(default_factory=list)


class OverrideRequest(_CamelModel):
    is_working: bool = Field(default=True, alias="isWorking")
    ranges: List[TimeRangeIn] = Field(default_factory=list)


class ScheduleOut(_CamelModel):
    id: str
    host_id: str = Field(..., alias="hostId")
    name: str
    is_default: bool = Field(..., alias="isDefault")
    timezone: Optional[str] = None
    weekly: Dict[int, List[Dict[str, str]]] = Field(default_factory=dict)
    overrides: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    @classmethod
    def from_schedule(cls, schedule) -> "ScheduleOut":
        weekly: Dict[int, List[Dict[str, str]]] = {}
        for slot in schedule.slots:
            weekly.setdefault(slot.day_of_week, []).append({"start": slot.start_time, "end": slot.end_time})
        overrides = {
            o.date.isoformat(): {"isWorking": bool(o.is_working), "ranges": list(o.intervals or [])}
            for o in schedule.overrides
        }
        return cls(
            id=str(schedule.id),
            hostId=str(schedule.host_id),
            name=schedule.name,
            isDefault=bool(schedule.is_default),
            timezone=schedule.timezone,
            weekly=weekly,
            overrides=overrides,
        )


class HostOut(_CamelModel):
    id: str
    name: str
    email: Optional[str] = None
    timezone: str
    default_schedule_id: Optional[str] = Field(default=None, alias="defaultScheduleId")


class CreateEventTypeRequest(_CamelModel):
    title: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = None
    duration_minutes: int = Field(..., alias="durationMinutes")
    buffer_before_minutes: int = Field(0, alias="bufferBeforeMinutes")
    buffer_after_minutes: int = Field(0, alias="bufferAfterMinutes")
    minimum_notice_minutes: int = Field(60, alias="minimumNoticeMinutes")
    slot_interval_minutes: Optional[int] = Field(default=None, alias="slotIntervalMinutes")
    max_bookings_per_day: int = Field(0, alias="maxBookingsPerDay")
    seats_per_slot: int = Field(1, alias="seatsPerSlot")
    period_type: str = Field("ROLLING", alias="periodType")
    period_days: Optional[int] = Field(default=30, alias="periodDays")
    period_start_date: Optional[date] = Field(default=None, alias="periodStartDate")
    period_end_date: Optional[date] = Field(default=None, alias="periodEndDate")
    schedule_id: Optional[str] = Field(default=None, alias="scheduleId")
    requires_confirmation: bool = Field(False, alias="requiresConfirmation")


class EventTypeOut(_CamelModel):
    id: str
    host_id: str = Field(..., alias="hostId")
    title: str
    slug: str
    duration_minutes: int = Field(..., alias="durationMinutes")
    seats_per_slot: int = Field(..., alias="seatsPerSlot")
    period_type: str = Field(..., alias="periodType")
    schedule_id: Optional[str] = Field(default=None, alias="scheduleId")
    requires_confirmation: bool = Field(..., alias="requiresConfirmation")

    @classmethod
    def from_event_type(cls, event_type) -> "EventTypeOut":
        return cls(
            id=str(event_type.id),
            hostId=str(event_type.host_id),
            title=event_type.title,
            slug=event_type.slug,
            durationMinutes=event_type.duration_minutes,
            seatsPerSlot=event_type.seats_per_slot,
            periodType=event_type.period_type,
            scheduleId=str(event_type.schedule_id) if event_type.schedule_id else None,
            requiresConfirmation=bool(event_type.requires_confirmation),
        )
