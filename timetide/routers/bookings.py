"""Booking creation and lifecycle endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from timetide.application.booking_committer import BookingCommitter, Invitee
from timetide.dependencies import get_booking_committer, require_admin_key
from timetide.domain.errors import NotFoundError
from timetide.schemas import (
    BookingOut, CancelBookingRequest, CreateBookingRequest, RescheduleBookingRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _out(committer: BookingCommitter, booking) -> dict:
    rescheduled_from_uid: Optional[str] = None
    if booking.rescheduled_from_id is not None:
        original = committer.db.get(type(booking), booking.rescheduled_from_id)
        rescheduled_from_uid = original.uid if original is not None else None
    return BookingOut.from_booking(booking, rescheduled_from_uid).model_dump(by_alias=True, mode="json")


@router.post("", status_code=201)
def create_booking(payload: CreateBookingRequest, committer: BookingCommitter = Depends(get_booking_committer)):
    invitee = Invitee(
        name=payload.name,
        email=payload.email,
        timezone=payload.timezone,
        phone=payload.phone,
        notes=payload.notes,
        responses=payload.responses,
    )
    booking = committer.commit(payload.event_type_id, payload.start_time, invitee)
    return JSONResponse(status_code=201, content=_out(committer, booking))


@router.get("/{uid}")
def get_booking(uid: str, committer: BookingCommitter = Depends(get_booking_committer)):
    booking = committer.bookings.get_by_uid(uid)
    if booking is None:
        raise NotFoundError(f"Booking {uid} not found")
    return _out(committer, booking)


@router.post("/{uid}/cancel")
def cancel_booking(uid: str, payload: Optional[CancelBookingRequest] = None,
                   committer: BookingCommitter = Depends(get_booking_committer)):
    return _out(committer, committer.cancel(uid, payload.reason if payload else None))


@router.post("/{uid}/reschedule")
def reschedule_booking(uid: str, payload: RescheduleBookingRequest,
                       committer: BookingCommitter = Depends(get_booking_committer)):
    return _out(committer, committer.reschedule(uid, payload.start_time, payload.reason))


@router.post("/{uid}/confirm", dependencies=[Depends(require_admin_key)])
def confirm_booking(uid: str, committer: BookingCommitter = Depends(get_booking_committer)):
    return _out(committer, committer.confirm(uid))


@router.post("/{uid}/reject", dependencies=[Depends(require_admin_key)])
def reject_booking(uid: str, payload: Optional[CancelBookingRequest] = None,
                   committer: BookingCommitter = Depends(get_booking_committer)):
    return _out(committer, committer.reject(uid, payload.reason if payload else None))
