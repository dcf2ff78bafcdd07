"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlmodel import SQLModel

from notification_engine.api.campaigns import router as campaigns_router
from notification_engine.api.devices import router as devices_router
from notification_engine.api.notifications import router as notifications_router
from notification_engine.api.templates import router as templates_router
from notification_engine.config import get_settings
from notification_engine.db.session import engine
from notification_engine.errors import (
    DuplicateNotificationError,
    InvalidStateError,
    NotFoundError,
    ProviderError,
    ValidationError,
)

settings = get_settings()
logging.getLogger("notification_engine").setLevel(settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create database tables on startup."""
    # Import models to register them with SQLModel
    from notification_engine.models import (  # noqa: F401
        CampaignRecipient,
        DeviceToken,
        Notification,
        NotificationCampaign,
        NotificationTemplate,
    )
    SQLModel.metadata.create_all(engine)
    yield

app = FastAPI(
    title="Notification Engine API",
    description="Multi-channel notification dispatch, templates and campaigns",
    version="1.0.0",
    lifespan=lifespan,
)

if settings.CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# =============================================================================
# Error mapping
# =============================================================================


@app.exception_handler(ValidationError)
def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc), "field": exc.field},
    )


@app.exception_handler(NotFoundError)
def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(InvalidStateError)
def invalid_state_handler(request: Request, exc: InvalidStateError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(DuplicateNotificationError)
def duplicate_handler(request: Request, exc: DuplicateNotificationError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(ProviderError)
def provider_error_handler(request: Request, exc: ProviderError) -> JSONResponse:
    # The notification is already persisted as FAILED
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": str(exc), "error_code": exc.error_code},
    )


# Register routers
app.include_router(notifications_router)
app.include_router(templates_router)
app.include_router(campaigns_router)
app.include_router(devices_router)


@app.get("/health")
def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}
