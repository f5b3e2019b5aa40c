"""Shared FastAPI dependencies (auth, common helpers).

Centralizes cross-router logic to reduce duplication.
"""
import os

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from database.connection import get_db
from timetide import services
from timetide.application.booking_committer import BookingCommitter
from timetide.application.configuration import ConfigurationService
from timetide.application.slot_service import SlotService
from timetide.config import get_settings


def require_admin_key(x_api_key: str | None = Header(default=None, alias="X-API-Key")) -> bool:
    """Simple header-based admin key guard for configuration routes.

    Development fallback: if no key is set and the environment is
    non-production, allow requests to ease local iteration.
    """
    settings = get_settings()
    # Always re-read raw env for key to avoid stale cache during tests
    key = os.getenv("ADMIN_API_KEY") or settings.admin_api_key
    if not key and settings.environment not in ("production", "staging"):
        return True
    if not key:
        raise HTTPException(status_code=503, detail="Admin API key not configured")
    if not x_api_key or x_api_key != key:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
    return True


def get_slot_service(db: Session = Depends(get_db)) -> SlotService:
    return services.build_slot_service(db)


def get_booking_committer(db: Session = Depends(get_db)) -> BookingCommitter:
    return services.build_booking_committer(db)


def get_configuration_service(db: Session = Depends(get_db)) -> ConfigurationService:
    return ConfigurationService(db)
