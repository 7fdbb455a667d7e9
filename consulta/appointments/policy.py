"""Time-window rules shared by cancellation, reschedule and maintenance."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from consulta.errors import CutoffViolation, InvalidSlot
from consulta.schemas.booking import AppointmentRecord


def hours_until(appointment: AppointmentRecord, now: datetime) -> float:
    """Hours from ``now`` to the appointment's local start time (negative if past)."""
    return (appointment.scheduled_at - now).total_seconds() / 3600


def enforce_cutoff(appointment: AppointmentRecord, now: datetime, cutoff_hours: int, action: str) -> None:
    """Raise CutoffViolation if the appointment starts in less than ``cutoff_hours``.

    Always checked against the current slot, before anything is mutated.
    """
    remaining = hours_until(appointment, now)
    if remaining < cutoff_hours:
        raise CutoffViolation(
            f"{action} só é permitido até {cutoff_hours}h antes da consulta",
            appointment_id=str(appointment.id),
            hours_until=round(remaining, 2),
        )


def require_future_slot(scheduled_date: date, scheduled_time: time, tz_name: str, now: datetime) -> None:
    """Reject a target slot that has already started."""
    start = datetime.combine(scheduled_date, scheduled_time, tzinfo=ZoneInfo(tz_name))
    if start <= now:
        raise InvalidSlot("O horário escolhido precisa estar no futuro")


def hold_expiry(now: datetime, hold_minutes: int) -> datetime:
    return now + timedelta(minutes=hold_minutes)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
