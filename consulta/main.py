"""FastAPI application entry point: wires everything together.

Usage:
    python -m consulta.main
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from consulta import __version__
from consulta.admin.maintenance import router as maintenance_router
from consulta.api.appointments import router as appointments_router
from consulta.api.coupons import router as coupons_router
from consulta.api.dependencies import build_services
from consulta.api.errors import booking_error_handler
from consulta.api.webhooks import router as webhooks_router
from consulta.config import settings
from consulta.db.engine import async_session_factory, db_lifespan, redis_client
from consulta.errors import BookingError
from consulta.events import start_event_system, stop_event_system, subscribe, unsubscribe
from consulta.notifications import NotificationDispatcher
from consulta.security import make_audit_subscriber

# ── Logging setup ────────────────────────────────────────────────────


def configure_logging(level: str, json_output: bool) -> None:
    """Route stdlib logging to stdout and set up structlog on top of it.

    Production emits one JSON object per line for the log shipper.
    """
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(message)s" if json_output else "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(settings.log_level, json_output=settings.is_production)
logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting Consulta booking core (env=%s)", settings.environment)

    # 1. Database
    async with db_lifespan():
        logger.info("Database initialized")

        # 2. Collaborators, built once and shared by every request
        app.state.services = build_services(async_session_factory, redis_client, settings)
        if not settings.payments.mercadopago_access_token:
            logger.warning("MERCADOPAGO_ACCESS_TOKEN not set, every payment operation will fail")

        # 3. Event system
        await start_event_system()

        # 4. Audit logging, always active (global subscriber)
        audit_handler = make_audit_subscriber(async_session_factory)
        subscribe(audit_handler)

        # 5. Notifications
        dispatcher = NotificationDispatcher(settings.notifications)
        subscribe(dispatcher.on_event, event_types=dispatcher.event_types)
        if not settings.notifications.notification_webhook_url:
            logger.warning("NOTIFICATION_WEBHOOK_URL not set, notifications disabled")

        try:
            yield
        finally:
            logger.info("Shutting down Consulta...")
            await stop_event_system()
            unsubscribe(audit_handler)
            unsubscribe(dispatcher.on_event)
            logger.info("Event system stopped")

    logger.info("Consulta shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="Consulta Booking API",
    description="Booking lifecycle, cancellation/reschedule settlement and coupon pricing",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(appointments_router)
app.include_router(coupons_router)
app.include_router(webhooks_router)
app.include_router(maintenance_router)
app.add_exception_handler(BookingError, booking_error_handler)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "environment": settings.environment,
        "version": __version__,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "consulta.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
