"""
TimeTide availability and booking service.
FastAPI app exposing slot lookup, booking and host configuration.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from database.connection import create_tables
from timetide.config import get_settings
from timetide.domain.errors import (
    CollaboratorError, ConfigurationError, ConflictError, NotFoundError, PolicyError,
)
from timetide.routers import all_routers

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()

# Initialize FastAPI
app = FastAPI(
    title="TimeTide",
    description="Availability resolution, slot generation and booking",
    version="1.0.0"
)

for router in all_routers:
    app.include_router(router)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "invalid_request", "detail": jsonable_errors(exc)})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return JSONResponse(status_code=400, content={"error": "invalid_configuration", "detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": "not_found", "detail": str(exc)})


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    logger.info(f"Booking conflict on {request.url.path}: {exc}")
    return JSONResponse(status_code=409, content={"error": "conflict", "detail": str(exc)})


@app.exception_handler(PolicyError)
async def policy_error_handler(request: Request, exc: PolicyError):
    return JSONResponse(status_code=422, content={"error": "policy_violation", "detail": str(exc)})


@app.exception_handler(CollaboratorError)
async def collaborator_error_handler(request: Request, exc: CollaboratorError):
    logger.warning(f"⚠️  Availability temporarily unavailable ({exc.source or 'calendar'}): {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": "availability_unavailable", "detail": "Availability is temporarily unavailable, please retry"},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "internal_error"})


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


@app.on_event("startup")
async def startup_event():
    """Initialize database"""
    create_tables()
    logger.info(f"🚀 TimeTide started ({settings.environment}, calendar policy {settings.calendar_failure_policy})")


@app.get("/")
async def root():
    return {
        "name": "TimeTide",
        "description": "Availability resolution and slot generation",
        "version": "1.0.0",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
