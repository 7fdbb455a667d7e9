"""Tests for the notification dispatcher.

Covers:
- Rule matching by event type and condition
- Template rendering (missing keys fall back to the raw text)
- Delivery payload, skipped when no URL is configured
- Delivery errors logged, never raised
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from consulta.config import NotificationSettings
from consulta.notifications.dispatcher import NOTIFICATION_RULES, NotificationDispatcher, matching_rules, render
from consulta.schemas.events import EventType, SystemEvent

# ── Helpers ──────────────────────────────────────────────────────────


def _event(event_type: EventType, **data) -> SystemEvent:
    return SystemEvent(event_type=event_type, appointment_id=uuid.uuid4(), data=data)


def _names(event: SystemEvent) -> list[str]:
    return [rule.name for rule in matching_rules(event)]


def _patch_http(mock_client_cls: MagicMock, **kwargs) -> AsyncMock:
    mock_http = AsyncMock()
    mock_http.post = AsyncMock(**kwargs)
    mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=mock_http)
    mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)
    return mock_http


# ── Rules ────────────────────────────────────────────────────────────


class TestRules:
    def test_reschedule_branches_on_status(self):
        assert _names(_event(EventType.APPOINTMENT_RESCHEDULED, status="confirmed")) == ["rescheduled"]
        assert _names(_event(EventType.APPOINTMENT_RESCHEDULED, status="pending_reschedule_payment")) == [
            "reschedule_awaiting_payment"
        ]

    def test_pending_booking_not_notified(self):
        assert _names(_event(EventType.APPOINTMENT_BOOKED, status="pending")) == []

    def test_free_booking_notified(self):
        assert _names(_event(EventType.APPOINTMENT_BOOKED, status="confirmed")) == ["booking_created"]

    def test_refund_failure_goes_to_ops(self):
        (rule,) = matching_rules(_event(EventType.REFUND_FAILED, amount=5000))
        assert rule.audience == "ops"

    def test_render(self):
        rule = next(r for r in NOTIFICATION_RULES if r.name == "booking_created")
        event = _event(EventType.APPOINTMENT_BOOKED, date="2026-03-09", time="14:00:00", status="confirmed")
        assert render(rule, event) == "Sua consulta de 2026-03-09 às 14:00:00 está confirmada."

    def test_render_missing_key(self):
        rule = next(r for r in NOTIFICATION_RULES if r.name == "refund_failed")
        assert render(rule, _event(EventType.REFUND_FAILED)) == rule.template


# ── Delivery ─────────────────────────────────────────────────────────


class TestDelivery:
    @pytest.mark.asyncio()
    async def test_posts_payload(self):
        dispatcher = NotificationDispatcher(NotificationSettings(notification_webhook_url="https://notify.example.com"))
        event = _event(EventType.APPOINTMENT_CANCELLED)
        with patch("httpx.AsyncClient") as mock_client_cls:
            mock_http = _patch_http(mock_client_cls, return_value=MagicMock())
            await dispatcher.on_event(event)

        url = mock_http.post.call_args.args[0]
        payload = mock_http.post.call_args.kwargs["json"]
        assert url == "https://notify.example.com"
        assert payload["notification"] == "booking_cancelled"
        assert payload["audience"] == "patient"
        assert payload["appointment_id"] == str(event.appointment_id)

    @pytest.mark.asyncio()
    async def test_no_url_no_request(self):
        dispatcher = NotificationDispatcher(NotificationSettings(notification_webhook_url=""))
        with patch("httpx.AsyncClient") as mock_client_cls:
            await dispatcher.on_event(_event(EventType.APPOINTMENT_CANCELLED))
        mock_client_cls.assert_not_called()

    @pytest.mark.asyncio()
    async def test_delivery_error_swallowed(self):
        dispatcher = NotificationDispatcher(NotificationSettings(notification_webhook_url="https://notify.example.com"))
        with patch("httpx.AsyncClient") as mock_client_cls:
            _patch_http(mock_client_cls, side_effect=httpx.ConnectError("refused"))
            await dispatcher.on_event(_event(EventType.APPOINTMENT_CANCELLED))

    def test_event_types_cover_rules(self):
        dispatcher = NotificationDispatcher(NotificationSettings())
        assert EventType.REFUND_FAILED in dispatcher.event_types
        assert EventType.APPOINTMENT_CONFLICT not in dispatcher.event_types
