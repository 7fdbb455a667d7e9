"""Audit log subscriber: persists every SystemEvent to the audit_log table.

Registered as a global subscriber. Failed refunds end up here with the
payment id and amount, which is what manual reconciliation works from.

Never raises; failures are logged and never reach the event system.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consulta.events import EventHandler
from consulta.models.audit import AuditLog
from consulta.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


def make_audit_subscriber(session_factory: async_sessionmaker[AsyncSession]) -> EventHandler:
    """Build the audit handler bound to ``session_factory``."""

    async def audit_on_event(event: SystemEvent) -> None:
        try:
            async with session_factory() as db:
                db.add(
                    AuditLog(
                        event_type=event.event_type.value,
                        appointment_id=event.appointment_id,
                        actor_id=event.actor_id,
                        actor_role=event.actor_role,
                        data=event.model_dump(mode="json", include={"id", "timestamp", "data", "source_module"}),
                    )
                )
                await db.commit()
        except Exception:
            logger.exception(
                "Failed to persist audit event: %s (appointment=%s)",
                event.event_type.value,
                event.appointment_id,
            )

    return audit_on_event
