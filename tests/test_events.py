"""Tests for the event bus and the audit subscriber.

Covers:
- Catch-all and typed subscriptions, unsubscribe
- A failing subscriber never prevents the others from running
- publish() → background worker → subscribers, drained on stop
- Stop gives up after the drain timeout when a subscriber hangs
- Audit subscriber writes one audit_log row per event, swallows DB errors
"""

from __future__ import annotations

import asyncio
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from consulta.events import EventBus
from consulta.schemas.events import EventType, SystemEvent
from consulta.security.audit import make_audit_subscriber

# ── Helpers ──────────────────────────────────────────────────────────


def _event(event_type: EventType = EventType.APPOINTMENT_CANCELLED, **data) -> SystemEvent:
    return SystemEvent(
        event_type=event_type,
        appointment_id=uuid.uuid4(),
        actor_role="system",
        data=data,
        source_module="tests",
    )


# ── Dispatch ─────────────────────────────────────────────────────────


class TestDispatch:
    @pytest.mark.asyncio()
    async def test_catch_all_and_typed(self):
        bus = EventBus()
        everything = AsyncMock()
        refunds_only = AsyncMock()
        bus.subscribe(everything)
        bus.subscribe(refunds_only, [EventType.REFUND_FAILED])

        await bus.dispatch(_event(EventType.APPOINTMENT_CANCELLED))
        await bus.dispatch(_event(EventType.REFUND_FAILED, amount=100))

        assert everything.await_count == 2
        assert refunds_only.await_count == 1

    @pytest.mark.asyncio()
    async def test_failing_subscriber_isolated(self):
        bus = EventBus()
        broken = AsyncMock(side_effect=RuntimeError("boom"))
        healthy = AsyncMock()
        bus.subscribe(broken)
        bus.subscribe(healthy)

        await bus.dispatch(_event())

        healthy.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_unsubscribe(self):
        bus = EventBus()
        handler = AsyncMock()
        bus.subscribe(handler, [EventType.APPOINTMENT_CANCELLED])
        bus.unsubscribe(handler)

        await bus.dispatch(_event())

        handler.assert_not_awaited()


# ── Lifecycle ────────────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio()
    async def test_publish_reaches_subscriber_through_worker(self):
        bus = EventBus()
        handler = AsyncMock()
        bus.subscribe(handler)

        event = _event()
        await bus.publish(event)
        assert bus.running
        await bus.stop()

        handler.assert_awaited_once_with(event)
        assert not bus.running

    @pytest.mark.asyncio()
    async def test_stop_bounded_by_drain_timeout(self):
        bus = EventBus(drain_timeout=0.05)

        async def hangs(event: SystemEvent) -> None:
            await asyncio.sleep(60)

        bus.subscribe(hangs)
        await bus.publish(_event())
        await bus.stop()

        assert not bus.running

    @pytest.mark.asyncio()
    async def test_stop_without_start(self):
        await EventBus().stop()


# ── Audit ────────────────────────────────────────────────────────────


def _make_session_factory(session: AsyncMock) -> MagicMock:
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory


class TestAudit:
    @pytest.mark.asyncio()
    async def test_writes_row(self):
        session = AsyncMock()
        session.add = MagicMock()
        handler = make_audit_subscriber(_make_session_factory(session))
        event = _event(EventType.REFUND_FAILED, payment_id="pay-1", amount=5000)

        await handler(event)

        row = session.add.call_args.args[0]
        assert row.event_type == "payment.refund_failed"
        assert row.appointment_id == event.appointment_id
        assert row.data["data"] == {"payment_id": "pay-1", "amount": 5000}
        assert row.data["id"] == str(event.id)
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_db_failure_swallowed(self):
        session = AsyncMock()
        session.add = MagicMock()
        session.commit = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("down")))
        handler = make_audit_subscriber(_make_session_factory(session))

        await handler(_event())
