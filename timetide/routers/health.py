"""Health and readiness endpoints for deployment platforms."""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from database.connection import get_db
from timetide import services

router = APIRouter()


@router.get("/health")
async def health():
    """Simple liveness check - always returns ok if service is running."""
    return {"status": "ok", "ts": datetime.now(timezone.utc).isoformat()}


@router.get("/readiness")
def readiness(db: Session = Depends(get_db)):
    """Readiness check - verifies database connectivity."""
    try:
        db.execute(text("SELECT 1"))
        database = "connected"
        ready = True
    except Exception as e:
        database = f"error: {str(e)}"
        ready = False
    return {
        "ready": ready,
        "ts": datetime.now(timezone.utc).isoformat(),
        "database": database,
        "calendar_failure_policy": services.failure_policy().value,
    }
