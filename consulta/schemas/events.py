"""SystemEvent schema: the event type that flows out of every booking outcome.

Subscribers (AuditLogger, NotificationDispatcher) consume these events
asynchronously; a failing subscriber never affects the state change that
emitted the event.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Appointment lifecycle
    APPOINTMENT_BOOKED = "appointment.booked"
    APPOINTMENT_CONFIRMED = "appointment.confirmed"
    APPOINTMENT_CANCELLED = "appointment.cancelled"
    APPOINTMENT_RESCHEDULED = "appointment.rescheduled"
    APPOINTMENT_CONFLICT = "appointment.conflict"
    RESCHEDULE_HOLD_EXPIRED = "reschedule.hold_expired"

    # Payments
    PAYMENT_INTENT_CREATED = "payment.intent_created"
    PAYMENT_STATUS_CHANGED = "payment.status_changed"
    REFUND_PROCESSED = "payment.refund_processed"
    REFUND_FAILED = "payment.refund_failed"
    GATEWAY_ERROR = "payment.gateway_error"

    # Coupons
    COUPON_REDEEMED = "coupon.redeemed"

    # System
    MAINTENANCE_RUN = "system.maintenance"


class SystemEvent(BaseModel):
    """Core event emitted by the booking workflows.

    Immutable once created. Consumed by:
    - AuditLogger → writes to audit_log table
    - NotificationDispatcher → POSTs to the notification webhook
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context (optional: maintenance events have no appointment)
    appointment_id: uuid.UUID | None = None
    actor_id: str | None = None
    actor_role: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
