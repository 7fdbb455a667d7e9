"""Service container and FastAPI dependencies.

Collaborators are built once at startup (``build_services``), stored on
``app.state.services`` and handed to route handlers through ``get_services``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from fastapi import Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consulta.appointments.directory import Directory
from consulta.appointments.store import AppointmentStore
from consulta.config import Settings
from consulta.coupons.validator import CouponValidator
from consulta.payments.gateway import PaymentGateway
from consulta.payments.mercadopago import MercadoPagoGateway
from consulta.security.rate_limiter import RateLimiter
from consulta.workflows import (
    BookingWorkflow,
    CancellationWorkflow,
    MaintenanceWorkflow,
    PaymentConfirmationWorkflow,
    RescheduleWorkflow,
)


@dataclass(frozen=True)
class Services:
    store: AppointmentStore
    validator: CouponValidator
    booking: BookingWorkflow
    cancellation: CancellationWorkflow
    reschedule: RescheduleWorkflow
    payments: PaymentConfirmationWorkflow
    maintenance: MaintenanceWorkflow
    rate_limiter: RateLimiter
    settings: Settings


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    redis: object,
    settings: Settings,
    gateway: PaymentGateway | None = None,
) -> Services:
    """Wire every workflow to one shared store, gateway, directory and validator."""
    gateway = gateway if gateway is not None else MercadoPagoGateway(settings.payments)
    booking_rules = settings.booking
    store = AppointmentStore(session_factory)
    directory = Directory(session_factory, booking_rules.booking_default_timezone)
    validator = CouponValidator(session_factory, directory)
    return Services(
        store=store,
        validator=validator,
        booking=BookingWorkflow(store, gateway, directory, validator, booking_rules),
        cancellation=CancellationWorkflow(store, gateway, booking_rules),
        reschedule=RescheduleWorkflow(store, gateway, directory, booking_rules),
        payments=PaymentConfirmationWorkflow(store, gateway, booking_rules),
        maintenance=MaintenanceWorkflow(store, gateway, booking_rules),
        rate_limiter=RateLimiter(redis),
        settings=settings,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


async def current_user_id(x_user_id: str = Header(..., alias="X-User-Id")) -> uuid.UUID:
    """Caller identity, asserted by the upstream auth layer."""
    try:
        return uuid.UUID(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid X-User-Id") from exc


async def is_staff(x_user_role: str | None = Header(default=None, alias="X-User-Role")) -> bool:
    """True for callers the upstream auth layer marked as admin or professional."""
    return x_user_role in ("admin", "professional")
