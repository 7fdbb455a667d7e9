"""Async httpx client for the Mercado Pago checkout, payments and refunds APIs.

The booking core works in integer minor units (centavos); Mercado Pago
speaks decimal reais. Conversion happens only in this module.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx

from consulta.config import PaymentSettings
from consulta.errors import GatewayError
from consulta.models.enums import GatewayPaymentStatus, PaymentKind
from consulta.schemas.payments import (
    PaymentFound,
    PaymentIntent,
    PaymentIntentRequest,
    PaymentLookup,
    PaymentNotFound,
    RefundResult,
)

logger = logging.getLogger(__name__)

# Payment types never offered at checkout
_EXCLUDED_PAYMENT_TYPES = ("debit_card", "ticket")


def to_major_units(amount: int) -> float:
    """1990 → 19.9"""
    return float(Decimal(amount) / 100)


def to_minor_units(value: Any) -> int:
    """19.9 → 1990, half-up on sub-centavo noise."""
    return int((Decimal(str(value)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _parse_status(raw: Any) -> GatewayPaymentStatus:
    try:
        return GatewayPaymentStatus(str(raw))
    except ValueError:
        logger.warning("Unknown Mercado Pago payment status: %s", raw)
        return GatewayPaymentStatus.UNKNOWN


def _parse_kind(metadata: Any) -> PaymentKind | None:
    if not isinstance(metadata, dict):
        return None
    try:
        return PaymentKind(metadata.get("kind"))
    except ValueError:
        return None


class MercadoPagoGateway:
    """PaymentGateway implementation backed by Mercado Pago.

    Endpoints:
        POST /checkout/preferences
        GET  /v1/payments/search?preference_id=...
        GET  /v1/payments/{id}
        POST /v1/payments/{id}/refunds
    Auth: Bearer access token.
    """

    def __init__(self, config: PaymentSettings) -> None:
        self._base_url = config.mercadopago_api_url.rstrip("/")
        self._access_token = config.mercadopago_access_token
        self._currency_id = config.payment_currency_id
        self._app_base_url = config.app_base_url.rstrip("/")
        self._notification_url = config.payment_notification_url
        self._max_installments = config.payment_max_installments
        self._timeout = httpx.Timeout(config.payment_timeout_seconds, connect=5.0)

    # ── PaymentGateway ───────────────────────────────────────────────

    async def create_payment_intent(self, amount: int, request: PaymentIntentRequest) -> PaymentIntent:
        if amount <= 0:
            msg = f"Payment intent amount must be positive, got {amount}"
            raise ValueError(msg)

        payload = self._build_preference(amount, request)
        data = await self._request(
            "POST",
            "/checkout/preferences",
            json=payload,
            headers={"X-Idempotency-Key": request.idempotency_key},
        )
        intent = PaymentIntent(intent_id=str(data["id"]), payment_url=str(data["init_point"]))
        logger.info(
            "Payment preference created: id=%s appointment=%s kind=%s amount=%d",
            intent.intent_id,
            request.appointment_id,
            request.kind.value,
            amount,
        )
        return intent

    async def find_payment_by_reference(self, reference: str) -> PaymentLookup:
        """Newest approved payment on the preference, else the newest attempt."""
        data = await self._request(
            "GET",
            "/v1/payments/search",
            params={"preference_id": reference, "sort": "date_created", "criteria": "desc"},
        )
        results = data.get("results") or []
        if not results:
            return PaymentNotFound(reference=reference)
        payments = [self._parse_payment(result) for result in results]
        return next((payment for payment in payments if payment.approved), payments[0])

    async def get_payment(self, payment_id: str) -> PaymentLookup:
        try:
            data = await self._request("GET", f"/v1/payments/{payment_id}")
        except GatewayError as exc:
            if exc.context.get("status_code") == 404:
                return PaymentNotFound(reference=payment_id)
            raise
        return self._parse_payment(data)

    async def refund(self, payment_id: str, amount: int) -> RefundResult:
        if amount <= 0:
            msg = f"Refund amount must be positive, got {amount}"
            raise ValueError(msg)

        data = await self._request(
            "POST",
            f"/v1/payments/{payment_id}/refunds",
            json={"amount": to_major_units(amount)},
            headers={"X-Idempotency-Key": f"refund-{payment_id}-{amount}"},
        )
        result = RefundResult(
            refund_id=str(data.get("id", "")),
            payment_id=str(data.get("payment_id", payment_id)),
            amount=to_minor_units(data.get("amount", to_major_units(amount))),
        )
        logger.info("Refund issued: payment=%s amount=%d refund=%s", payment_id, amount, result.refund_id)
        return result

    # ── Internals ────────────────────────────────────────────────────

    def _build_preference(self, amount: int, request: PaymentIntentRequest) -> dict[str, Any]:
        appointment_id = str(request.appointment_id)
        preference: dict[str, Any] = {
            "items": [
                {
                    "id": appointment_id,
                    "title": request.title,
                    "description": request.description,
                    "quantity": 1,
                    "currency_id": self._currency_id,
                    "unit_price": to_major_units(amount),
                }
            ],
            "payment_methods": {
                "excluded_payment_types": [{"id": t} for t in _EXCLUDED_PAYMENT_TYPES],
                "installments": self._max_installments,
            },
            "back_urls": {
                "success": f"{self._app_base_url}/pagamento-sucesso?agendamento={appointment_id}",
                "failure": f"{self._app_base_url}/pagamento-cancelado?agendamento={appointment_id}",
                "pending": f"{self._app_base_url}/pagamento-sucesso?agendamento={appointment_id}",
            },
            "auto_return": "approved",
            "external_reference": appointment_id,
            "metadata": {"kind": request.kind.value, "appointment_id": appointment_id},
        }
        if self._notification_url:
            preference["notification_url"] = self._notification_url
        if request.expires_in_minutes:
            expires_at = datetime.now(timezone.utc) + timedelta(minutes=request.expires_in_minutes)
            preference["expires"] = True
            preference["expiration_date_to"] = expires_at.isoformat(timespec="milliseconds")
        return preference

    def _parse_payment(self, data: dict[str, Any]) -> PaymentFound:
        return PaymentFound(
            payment_id=str(data["id"]),
            status=_parse_status(data.get("status")),
            transaction_amount=to_minor_units(data.get("transaction_amount", 0)),
            transaction_amount_refunded=to_minor_units(data.get("transaction_amount_refunded") or 0),
            external_reference=data.get("external_reference") or None,
            kind=_parse_kind(data.get("metadata")),
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        if not self._access_token:
            raise GatewayError("MERCADOPAGO_ACCESS_TOKEN not configured")

        request_headers = {"Authorization": f"Bearer {self._access_token}", **(headers or {})}
        try:
            async with httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout) as client:
                response = await client.request(method, path, json=json, params=params, headers=request_headers)
                response.raise_for_status()
                payload: dict[str, Any] = response.json()

        except httpx.TimeoutException as exc:
            logger.warning("Mercado Pago timeout on %s %s", method, path)
            raise GatewayError("timeout", path=path) from exc

        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            logger.warning("Mercado Pago HTTP %s on %s %s", status_code, method, path)
            raise GatewayError(f"http_{status_code}", path=path, status_code=status_code) from exc

        except httpx.HTTPError as exc:
            logger.warning("Mercado Pago transport error on %s %s: %s", method, path, exc)
            raise GatewayError("transport", path=path) from exc

        return payload
