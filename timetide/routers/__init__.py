"""Aggregate FastAPI routers for inclusion in the application."""
from . import slots, bookings, hosts, health

all_routers = [
    slots.router,
    bookings.router,
    hosts.router,
    health.router,
]
