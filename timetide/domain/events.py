"""Domain layer: Domain events and event dispatcher."""
import logging
from abc import ABC
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from database.models import Booking

logger = logging.getLogger(__name__)


@dataclass
class DomainEvent(ABC):
    """Base class for domain events."""
    pass


@dataclass
class BookingCommitted(DomainEvent):
    """Event fired when a booking is written to the store."""
    booking: Booking


@dataclass
class BookingCancelled(DomainEvent):
    """Event fired when a booking is cancelled or rejected."""
    booking: Booking
    reason: Optional[str] = None


@dataclass
class BookingRescheduled(DomainEvent):
    """Event fired when a booking is moved; ``original`` is now cancelled."""
    original: Booking
    booking: Booking


class EventHandler(Protocol):
    """Interface for event handlers."""

    def handle(self, event: DomainEvent) -> None:
        """Handle the domain event."""
        pass


class EventDispatcher:
    """Simple event dispatcher for domain events.

    Dispatch runs after the transaction has committed; a failing handler is
    logged and does not undo the booking.
    """

    def __init__(self):
        self._handlers: Dict[type, List[EventHandler]] = {}

    def register_handler(self, event_type: type, handler: EventHandler) -> None:
        """Register an event handler for a specific event type."""
        if event_type not in self._handlers:
            self._handlers[event_type] = []
        self._handlers[event_type].append(handler)

    def clear(self) -> None:
        self._handlers = {}

    def dispatch(self, event: DomainEvent) -> None:
        """Dispatch an event to all registered handlers."""
        for handler in self._handlers.get(type(event), []):
            try:
                handler.handle(event)
            except Exception as e:
                logger.error(f"Handler {handler!r} failed for {type(event).__name__}: {e}")


class LoggingEventHandler:
    """Writes one audit line per booking event."""

    def handle(self, event: DomainEvent) -> None:
        if isinstance(event, BookingRescheduled):
            logger.info(f"📅 Booking {event.original.uid} rescheduled to {event.booking.uid} at {event.booking.start_time}")
        elif isinstance(event, BookingCancelled):
            logger.info(f"📅 Booking {event.booking.uid} is now {event.booking.status} ({event.reason or 'no reason'})")
        elif isinstance(event, BookingCommitted):
            logger.info(f"📅 Booking {event.booking.uid} committed for {event.booking.start_time} ({event.booking.status})")


# Global event dispatcher instance
event_dispatcher = EventDispatcher()
_audit_handler = LoggingEventHandler()
for _event_type in (BookingCommitted, BookingCancelled, BookingRescheduled):
    event_dispatcher.register_handler(_event_type, _audit_handler)
