from sqlalchemy import (
    Column, String, Integer, DateTime, Date, Text, Boolean, ForeignKey, JSON, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator, CHAR
import uuid
import secrets
from datetime import datetime, timezone


class GUID(TypeDecorator):
    """Platform-independent GUID/UUID type.

    Uses PostgreSQL UUID when available; otherwise stores as CHAR(36).
    """
    impl = CHAR(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # pragma: no cover - trivial
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return str(value)
        return str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):  # pragma: no cover - trivial
        if value is None:
            return value
        return uuid.UUID(str(value))


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, always hands back aware UTC datetimes.

    SQLite drops tzinfo, so values are normalized on the way in and out.
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _utcnow():
    return datetime.now(timezone.utc)


def _booking_uid():
    return secrets.token_urlsafe(12)


Base = declarative_base()


class Host(Base):
    __tablename__ = "hosts"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    email = Column(String(255))
    timezone = Column(String(64), nullable=False, default="UTC")
    created_at = Column(UTCDateTime, default=_utcnow)

    schedules = relationship("AvailabilitySchedule", back_populates="host", cascade="all, delete-orphan")
    event_types = relationship("EventType", back_populates="host", cascade="all, delete-orphan")


class AvailabilitySchedule(Base):
    __tablename__ = "availability_schedules"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    host_id = Column(GUID(), ForeignKey("hosts.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)
    timezone = Column(String(64))  # falls back to the host timezone
    created_at = Column(UTCDateTime, default=_utcnow)

    host = relationship("Host", back_populates="schedules")
    slots = relationship(
        "RecurringSlot", back_populates="schedule", cascade="all, delete-orphan",
        order_by=lambda: [RecurringSlot.day_of_week, RecurringSlot.start_time],
    )
    overrides = relationship(
        "DateOverride", back_populates="schedule", cascade="all, delete-orphan",
        order_by=lambda: DateOverride.date,
    )


class RecurringSlot(Base):
    __tablename__ = "recurring_slots"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    schedule_id = Column(GUID(), ForeignKey("availability_schedules.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    start_time = Column(String(5), nullable=False)  # HH:MM host-local
    end_time = Column(String(5), nullable=False)

    schedule = relationship("AvailabilitySchedule", back_populates="slots")


class DateOverride(Base):
    __tablename__ = "date_overrides"
    __table_args__ = (UniqueConstraint("schedule_id", "date", name="uq_override_schedule_date"),)

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    schedule_id = Column(GUID(), ForeignKey("availability_schedules.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    is_working = Column(Boolean, default=True, nullable=False)
    intervals = Column(JSON, default=list)  # [{"start": "HH:MM", "end": "HH:MM"}]

    schedule = relationship("AvailabilitySchedule", back_populates="overrides")


class EventType(Base):
    __tablename__ = "event_types"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    host_id = Column(GUID(), ForeignKey("hosts.id"), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    slug = Column(String(100), nullable=False)
    description = Column(Text)
    duration_minutes = Column(Integer, nullable=False)
    buffer_before_minutes = Column(Integer, default=0, nullable=False)
    buffer_after_minutes = Column(Integer, default=0, nullable=False)
    minimum_notice_minutes = Column(Integer, default=60, nullable=False)
    slot_interval_minutes = Column(Integer)
    max_bookings_per_day = Column(Integer, default=0)
    seats_per_slot = Column(Integer, default=1, nullable=False)
    period_type = Column(String(20), default="ROLLING", nullable=False)
    period_days = Column(Integer, default=30)
    period_start_date = Column(Date)
    period_end_date = Column(Date)
    schedule_id = Column(GUID(), ForeignKey("availability_schedules.id"))
    requires_confirmation = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=_utcnow)

    host = relationship("Host", back_populates="event_types")
    schedule = relationship("AvailabilitySchedule")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (Index("ix_bookings_host_start", "host_id", "start_time"),)

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    uid = Column(String(32), unique=True, nullable=False, default=_booking_uid)
    event_type_id = Column(GUID(), ForeignKey("event_types.id"), nullable=False, index=True)
    host_id = Column(GUID(), ForeignKey("hosts.id"), nullable=False)
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    timezone = Column(String(64), nullable=False, default="UTC")
    invitee_name = Column(String(100), nullable=False)
    invitee_email = Column(String(255), nullable=False)
    invitee_phone = Column(String(30))
    invitee_notes = Column(Text)
    responses = Column(JSON)
    status = Column(String(20), default="PENDING", nullable=False)
    seats_taken = Column(Integer, default=1, nullable=False)
    cancellation_reason = Column(Text)
    cancelled_at = Column(UTCDateTime)
    rescheduled_from_id = Column(GUID(), ForeignKey("bookings.id"))
    created_at = Column(UTCDateTime, default=_utcnow)

    event_type = relationship("EventType")


class ConnectedCalendar(Base):
    __tablename__ = "connected_calendars"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    host_id = Column(GUID(), ForeignKey("hosts.id"), nullable=False, index=True)
    provider = Column(String(20), nullable=False)  # GOOGLE | OUTLOOK
    external_id = Column(String(255), nullable=False)
    access_token = Column(Text)
    is_enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=_utcnow)
