"""Tests for the appointment store.

Covers:
- Transition table (allowed and refused transitions)
- Compare-and-set: returned row becomes the new record, version bumped
- Lost race: zero rows → ConcurrencyConflict and rollback
- SQLAlchemy failures wrapped as PersistenceError
- Status guards on mark_confirmed / update_for_reschedule / revert
- Settling payment ids and the checkout deadline written alongside the status
- Unpaid sweep keyed on the checkout deadline, creation time as fallback
"""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime, time, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from consulta.appointments.store import AppointmentStore, check_transition
from consulta.errors import ConcurrencyConflict, InvalidTransition, PersistenceError
from consulta.models.enums import AppointmentStatus, PaymentStatus
from consulta.schemas.booking import AppointmentRecord, RescheduleChange

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)

# ── Helpers ──────────────────────────────────────────────────────────


def _make_appointment(**overrides) -> AppointmentRecord:
    data = {
        "id": uuid.uuid4(),
        "patient_id": uuid.uuid4(),
        "professional_id": uuid.uuid4(),
        "tenant_id": uuid.uuid4(),
        "scheduled_date": date(2026, 3, 5),
        "scheduled_time": time(15, 0),
        "timezone": "America/Sao_Paulo",
        "status": AppointmentStatus.CONFIRMED,
        "payment_status": PaymentStatus.PAID,
        "amount": 10000,
        "gateway_reference": "pref-1",
        "version": 3,
    }
    data.update(overrides)
    return AppointmentRecord(**data)


def _row_for(record: AppointmentRecord, **changes) -> dict:
    """What UPDATE ... RETURNING hands back."""
    row = record.model_dump()
    row.update(changes)
    row["version"] = record.version + 1
    for key in ("status", "payment_status", "previous_status"):
        if hasattr(row[key], "value"):
            row[key] = row[key].value
    return row


def _make_store(returned_row: dict | None) -> tuple[AppointmentStore, AsyncMock]:
    result = MagicMock()
    result.mappings.return_value.one_or_none.return_value = returned_row
    session = AsyncMock()
    session.execute = AsyncMock(return_value=result)
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return AppointmentStore(factory), session


# ── Transition table ─────────────────────────────────────────────────


class TestTransitions:
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED),
            (AppointmentStatus.PENDING, AppointmentStatus.CANCELLED),
            (AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED),
            (AppointmentStatus.CONFIRMED, AppointmentStatus.PENDING_RESCHEDULE_PAYMENT),
            (AppointmentStatus.PENDING_RESCHEDULE_PAYMENT, AppointmentStatus.CONFIRMED),
            (AppointmentStatus.PENDING_RESCHEDULE_PAYMENT, AppointmentStatus.CANCELLED),
        ],
    )
    def test_allowed(self, current, target):
        check_transition(_make_appointment(status=current), target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (AppointmentStatus.CANCELLED, AppointmentStatus.CONFIRMED),
            (AppointmentStatus.CANCELLED, AppointmentStatus.CANCELLED),
            (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED),
            (AppointmentStatus.PENDING, AppointmentStatus.PENDING_RESCHEDULE_PAYMENT),
        ],
    )
    def test_refused(self, current, target):
        with pytest.raises(InvalidTransition):
            check_transition(_make_appointment(status=current), target)


# ── Compare-and-set ──────────────────────────────────────────────────


class TestCompareAndSet:
    @pytest.mark.asyncio()
    async def test_cancel_returns_new_version(self):
        current = _make_appointment()
        store, session = _make_store(_row_for(current, status="cancelled", cancel_reason="patient"))

        updated = await store.mark_cancelled(current, reason="patient")

        assert updated.status is AppointmentStatus.CANCELLED
        assert updated.version == current.version + 1
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_lost_race_raises_conflict(self):
        current = _make_appointment()
        store, session = _make_store(None)

        with pytest.raises(ConcurrencyConflict):
            await store.mark_cancelled(current)

        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_statement_guards_on_seen_version(self):
        current = _make_appointment(version=7)
        store, session = _make_store(_row_for(current, payment_status="refunded"))

        await store.set_payment_status(current, PaymentStatus.REFUNDED)

        stmt = session.execute.call_args.args[0]
        sql = str(stmt.compile(compile_kwargs={"literal_binds": False}))
        assert "appointments.version = " in sql
        assert "RETURNING" in sql

    @pytest.mark.asyncio()
    async def test_database_error_wrapped(self):
        current = _make_appointment()
        store, session = _make_store(None)
        session.execute = AsyncMock(side_effect=OperationalError("UPDATE", {}, Exception("down")))

        with pytest.raises(PersistenceError):
            await store.set_payment_status(current, PaymentStatus.PAID)


# ── Status guards ────────────────────────────────────────────────────


class TestGuards:
    @pytest.mark.asyncio()
    async def test_confirm_requires_pending_or_hold(self):
        store, session = _make_store(None)
        with pytest.raises(InvalidTransition):
            await store.mark_confirmed(_make_appointment(status=AppointmentStatus.CANCELLED))
        session.execute.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_reschedule_of_held_appointment_refused(self):
        current = _make_appointment(status=AppointmentStatus.PENDING_RESCHEDULE_PAYMENT)
        change = RescheduleChange(
            professional_id=current.professional_id,
            scheduled_date=date(2026, 3, 6),
            scheduled_time=time(10, 0),
            amount=10000,
            status=AppointmentStatus.CONFIRMED,
            payment_status=PaymentStatus.PAID,
        )
        store, _ = _make_store(None)
        with pytest.raises(InvalidTransition):
            await store.update_for_reschedule(current, change)

    @pytest.mark.asyncio()
    async def test_upgrade_snapshots_previous_slot(self):
        current = _make_appointment()
        change = RescheduleChange(
            professional_id=uuid.uuid4(),
            scheduled_date=date(2026, 3, 6),
            scheduled_time=time(10, 0),
            amount=15000,
            status=AppointmentStatus.PENDING_RESCHEDULE_PAYMENT,
            payment_status=PaymentStatus.PAID,
            gateway_reference="pref-1",
            supplement_reference="pref-2",
            hold_expires_at=NOW + timedelta(hours=1),
        )
        store, session = _make_store(
            _row_for(
                current,
                professional_id=change.professional_id,
                scheduled_date=change.scheduled_date,
                scheduled_time=change.scheduled_time,
                amount=15000,
                status="pending_reschedule_payment",
                supplement_reference="pref-2",
                hold_expires_at=change.hold_expires_at,
                previous_professional_id=current.professional_id,
                previous_date=current.scheduled_date,
                previous_time=current.scheduled_time,
                previous_amount=current.amount,
                previous_status="confirmed",
            )
        )

        updated = await store.update_for_reschedule(current, change)

        assert updated.status is AppointmentStatus.PENDING_RESCHEDULE_PAYMENT
        assert updated.previous_amount == 10000
        assert updated.previous_status is AppointmentStatus.CONFIRMED
        params = session.execute.call_args.args[0].compile().params
        assert params["previous_amount"] == 10000
        assert params["previous_status"] == "confirmed"

    @pytest.mark.asyncio()
    async def test_revert_requires_snapshot(self):
        store, _ = _make_store(None)
        current = _make_appointment(status=AppointmentStatus.PENDING_RESCHEDULE_PAYMENT)
        with pytest.raises(InvalidTransition):
            await store.revert_reschedule_hold(current)


# ── Payment tracking ─────────────────────────────────────────────────


class TestPaymentTracking:
    @pytest.mark.asyncio()
    async def test_confirm_records_booking_payment(self):
        current = _make_appointment(status=AppointmentStatus.PENDING, payment_status=PaymentStatus.PENDING)
        store, session = _make_store(_row_for(current, status="confirmed", gateway_payment_id="pay-1"))

        updated = await store.mark_confirmed(current, PaymentStatus.PAID, "pay-1")

        assert updated.gateway_payment_id == "pay-1"
        params = session.execute.call_args.args[0].compile().params
        assert params["gateway_payment_id"] == "pay-1"
        assert params["payment_due_at"] is None
        assert "supplement_payment_id" not in params

    @pytest.mark.asyncio()
    async def test_settling_hold_records_difference_payment(self):
        current = _make_appointment(status=AppointmentStatus.PENDING_RESCHEDULE_PAYMENT, supplement_reference="pref-2")
        store, session = _make_store(_row_for(current, status="confirmed", supplement_payment_id="pay-2"))

        await store.mark_confirmed(current, PaymentStatus.PAID, "pay-2")

        params = session.execute.call_args.args[0].compile().params
        assert params["supplement_payment_id"] == "pay-2"
        assert "gateway_payment_id" not in params

    @pytest.mark.asyncio()
    async def test_attach_reference_records_deadline(self):
        current = _make_appointment(status=AppointmentStatus.PENDING, payment_status=PaymentStatus.UNPAID)
        due = NOW + timedelta(hours=24)
        store, session = _make_store(_row_for(current, payment_status="pending", payment_due_at=due))

        updated = await store.attach_gateway_reference(current, "pref-9", due)

        assert updated.payment_due_at == due
        params = session.execute.call_args.args[0].compile().params
        assert params["gateway_reference"] == "pref-9"
        assert params["payment_due_at"] == due

    @pytest.mark.asyncio()
    async def test_repricing_moves_deadline(self):
        current = _make_appointment(status=AppointmentStatus.PENDING, payment_status=PaymentStatus.PENDING)
        due = NOW + timedelta(hours=24)
        change = RescheduleChange(
            professional_id=current.professional_id,
            scheduled_date=date(2026, 3, 6),
            scheduled_time=time(10, 0),
            amount=15000,
            status=AppointmentStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            gateway_reference="pref-2",
            payment_due_at=due,
        )
        store, session = _make_store(_row_for(current, amount=15000, gateway_reference="pref-2", payment_due_at=due))

        await store.update_for_reschedule(current, change)

        params = session.execute.call_args.args[0].compile().params
        assert params["payment_due_at"] == due
        assert params["gateway_reference"] == "pref-2"

    @pytest.mark.asyncio()
    async def test_unpaid_sweep_keys_on_deadline(self):
        store, session = _make_store(None)
        session.execute.return_value.scalars.return_value.all.return_value = []

        rows = await store.find_unpaid_pending(NOW, NOW - timedelta(hours=24))

        assert rows == []
        sql = str(session.execute.call_args.args[0])
        assert "appointments.payment_due_at <=" in sql
        assert "appointments.payment_due_at IS NULL" in sql
        assert "appointments.created_at <" in sql
