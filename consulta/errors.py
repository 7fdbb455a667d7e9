"""Booking-core exception taxonomy.

Every error carries an HTTP status, a stable machine code, and a pt-BR message
safe to show to the patient. Gateway internals never reach ``message``.
"""

from __future__ import annotations

from typing import Any


class BookingError(Exception):
    """Base class for all user-facing booking failures."""

    status_code: int = 400
    code: str = "booking_error"
    default_message: str = "Não foi possível concluir a operação"

    def __init__(self, message: str | None = None, **context: Any) -> None:
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


class NotFound(BookingError):
    status_code = 404
    code = "not_found"
    default_message = "Agendamento não encontrado"


class ProfessionalNotFound(BookingError):
    status_code = 404
    code = "professional_not_found"
    default_message = "Profissional não encontrado"


class CutoffViolation(BookingError):
    """Raised before any mutation when the appointment is inside the cutoff window."""

    code = "cutoff_violation"
    default_message = "Alterações só são permitidas até 24h antes da consulta"


class InvalidCoupon(BookingError):
    """Raised on the commit path when a coupon can no longer be redeemed."""

    code = "invalid_coupon"
    default_message = "Cupom inválido"

    def __init__(self, reason: str, message: str | None = None, **context: Any) -> None:
        self.reason = reason
        super().__init__(message, **context)

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "reason": self.reason, "message": self.message}


class InvalidSlot(BookingError):
    code = "invalid_slot"
    default_message = "Horário inválido"


class SlotUnavailable(BookingError):
    status_code = 409
    code = "slot_unavailable"
    default_message = "Horário indisponível"


class InvalidTransition(BookingError):
    code = "invalid_transition"
    default_message = "Operação não permitida para o status atual do agendamento"


class GatewayError(BookingError):
    """Payment provider failure. Transient; never retried in-core."""

    status_code = 502
    code = "gateway_error"
    default_message = "Erro no provedor de pagamento"

    def __init__(self, detail: str = "", **context: Any) -> None:
        # detail is for logs only
        self.detail = detail
        super().__init__(None, **context)


class ConcurrencyConflict(BookingError):
    status_code = 409
    code = "concurrency_conflict"
    default_message = "O agendamento foi alterado por outra operação. Tente novamente"


class PersistenceError(BookingError):
    status_code = 500
    code = "persistence_error"
    default_message = "Erro ao salvar o agendamento"
