"""Notification dispatcher: turns booking events into patient/ops notifications.

Rules decide which events notify whom and with what (pt-BR) text. Delivery
is an HTTP POST to the notification collaborator (email/SMS service)
configured in NOTIFICATION_WEBHOOK_URL.

Never raises; failures are logged and never roll back the state change
that produced the event.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from consulta.config import NotificationSettings
from consulta.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationRule:
    """Maps an event to one outbound notification."""

    name: str
    event_types: list[EventType]
    condition: Callable[[SystemEvent], bool]
    template: str  # format string over event.data keys
    audience: str  # "patient" or "ops"


def _always(_: SystemEvent) -> bool:
    return True


NOTIFICATION_RULES: list[NotificationRule] = [
    NotificationRule(
        name="booking_confirmed",
        event_types=[EventType.APPOINTMENT_CONFIRMED],
        condition=_always,
        template="Sua consulta está confirmada.",
        audience="patient",
    ),
    NotificationRule(
        name="booking_created",
        event_types=[EventType.APPOINTMENT_BOOKED],
        condition=lambda e: e.data.get("status") == "confirmed",
        template="Sua consulta de {date} às {time} está confirmada.",
        audience="patient",
    ),
    NotificationRule(
        name="booking_cancelled",
        event_types=[EventType.APPOINTMENT_CANCELLED],
        condition=_always,
        template="Sua consulta foi cancelada.",
        audience="patient",
    ),
    NotificationRule(
        name="rescheduled",
        event_types=[EventType.APPOINTMENT_RESCHEDULED],
        condition=lambda e: e.data.get("status") == "confirmed",
        template="Sua consulta foi reagendada.",
        audience="patient",
    ),
    NotificationRule(
        name="reschedule_awaiting_payment",
        event_types=[EventType.APPOINTMENT_RESCHEDULED],
        condition=lambda e: e.data.get("status") == "pending_reschedule_payment",
        template="Pague a diferença de valor para confirmar o novo horário.",
        audience="patient",
    ),
    NotificationRule(
        name="hold_expired",
        event_types=[EventType.RESCHEDULE_HOLD_EXPIRED],
        condition=_always,
        template="O pagamento da diferença não foi confirmado; sua consulta voltou ao horário anterior.",
        audience="patient",
    ),
    NotificationRule(
        name="refund_failed",
        event_types=[EventType.REFUND_FAILED],
        condition=_always,
        template="Estorno de {amount} centavos falhou e precisa de conciliação manual.",
        audience="ops",
    ),
]


def render(rule: NotificationRule, event: SystemEvent) -> str:
    """Fill the template; missing keys fall back to the raw template."""
    try:
        return rule.template.format(**event.data)
    except (KeyError, IndexError, ValueError):
        return rule.template


def matching_rules(event: SystemEvent) -> list[NotificationRule]:
    return [r for r in NOTIFICATION_RULES if event.event_type in r.event_types and r.condition(event)]


class NotificationDispatcher:
    """Event subscriber that delivers notifications over HTTP."""

    def __init__(self, config: NotificationSettings) -> None:
        self._url = config.notification_webhook_url
        self._timeout = config.notification_timeout_seconds

    @property
    def event_types(self) -> list[EventType]:
        return sorted({t for rule in NOTIFICATION_RULES for t in rule.event_types}, key=lambda t: t.value)

    async def on_event(self, event: SystemEvent) -> None:
        for rule in matching_rules(event):
            await self._deliver(rule, event)

    async def _deliver(self, rule: NotificationRule, event: SystemEvent) -> None:
        payload: dict[str, Any] = {
            "notification": rule.name,
            "audience": rule.audience,
            "appointment_id": str(event.appointment_id) if event.appointment_id else None,
            "message": render(rule, event),
            "event_id": str(event.id),
            "event_type": event.event_type.value,
        }
        if not self._url:
            logger.debug("Notification %s not sent: NOTIFICATION_WEBHOOK_URL unset", rule.name)
            return
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError:
            logger.exception("Failed to deliver notification %s for %s", rule.name, event.appointment_id)
