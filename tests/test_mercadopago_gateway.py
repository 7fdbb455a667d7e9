"""Tests for the Mercado Pago gateway adapter.

Covers:
- Minor ↔ major unit conversion
- Preference creation: payload (unit_price in reais, metadata kind,
  expiration) and idempotency header
- Payment search: approved result preferred over newer attempts, refunded
  amount parsed, empty → PaymentNotFound
- get_payment 404 → PaymentNotFound
- Refund amount sent in reais, parsed back into centavos
- Timeout / HTTP errors / missing token → GatewayError with a generic message
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from consulta.config import PaymentSettings
from consulta.errors import GatewayError
from consulta.models.enums import GatewayPaymentStatus, PaymentKind
from consulta.payments.mercadopago import MercadoPagoGateway, to_major_units, to_minor_units
from consulta.schemas.payments import PaymentFound, PaymentIntentRequest, PaymentNotFound

APPOINTMENT_ID = uuid.UUID("6f1c2a1e-3b4d-4e5f-8a9b-0c1d2e3f4a5b")

# ── Helpers ──────────────────────────────────────────────────────────


def _make_gateway(token: str = "TEST-token") -> MercadoPagoGateway:
    return MercadoPagoGateway(
        PaymentSettings(
            mercadopago_access_token=token,
            app_base_url="https://app.example.com",
            payment_notification_url="https://api.example.com/webhooks/mercadopago",
        )
    )


def _make_response(payload: dict, status_code: int = 200) -> MagicMock:
    """Build a mock httpx.Response."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload
    resp.raise_for_status = MagicMock()
    return resp


def _make_error_response(status_code: int) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.raise_for_status = MagicMock(
        side_effect=httpx.HTTPStatusError(
            "error",
            request=httpx.Request("GET", "https://api.mercadopago.com"),
            response=httpx.Response(status_code),
        )
    )
    return resp


def _patch_http(mock_client_cls: MagicMock, **kwargs) -> AsyncMock:
    mock_http = AsyncMock()
    mock_http.request = AsyncMock(**kwargs)
    mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=mock_http)
    mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)
    return mock_http


def _make_request(kind: PaymentKind = PaymentKind.BOOKING) -> PaymentIntentRequest:
    return PaymentIntentRequest(
        appointment_id=APPOINTMENT_ID,
        kind=kind,
        title="Consulta",
        idempotency_key=f"{APPOINTMENT_ID}:booking",
        expires_in_minutes=60,
    )


# ── Units ────────────────────────────────────────────────────────────


class TestUnits:
    def test_to_major(self):
        assert to_major_units(15050) == 150.5
        assert to_major_units(1) == 0.01

    def test_to_minor(self):
        assert to_minor_units(150.5) == 15050
        assert to_minor_units("99.99") == 9999
        # float noise from the gateway
        assert to_minor_units(0.1 + 0.2) == 30


# ── Preferences ──────────────────────────────────────────────────────


class TestCreatePaymentIntent:
    @pytest.mark.asyncio()
    async def test_creates_preference(self):
        gateway = _make_gateway()
        with patch("httpx.AsyncClient") as mock_client_cls:
            mock_http = _patch_http(
                mock_client_cls,
                return_value=_make_response({"id": "pref-123", "init_point": "https://mp.com/checkout/pref-123"}),
            )
            intent = await gateway.create_payment_intent(5000, _make_request(PaymentKind.RESCHEDULE_DIFFERENCE))

        assert intent.intent_id == "pref-123"
        assert intent.payment_url == "https://mp.com/checkout/pref-123"

        method, path = mock_http.request.call_args.args
        kwargs = mock_http.request.call_args.kwargs
        assert (method, path) == ("POST", "/checkout/preferences")
        body = kwargs["json"]
        assert body["items"][0]["unit_price"] == 50.0
        assert body["items"][0]["currency_id"] == "BRL"
        assert body["external_reference"] == str(APPOINTMENT_ID)
        assert body["metadata"]["kind"] == "reschedule_difference"
        assert body["notification_url"] == "https://api.example.com/webhooks/mercadopago"
        assert body["expires"] is True
        assert kwargs["headers"]["X-Idempotency-Key"] == f"{APPOINTMENT_ID}:booking"
        assert kwargs["headers"]["Authorization"] == "Bearer TEST-token"

    @pytest.mark.asyncio()
    async def test_zero_amount_rejected(self):
        with pytest.raises(ValueError, match="positive"):
            await _make_gateway().create_payment_intent(0, _make_request())


# ── Lookups ──────────────────────────────────────────────────────────


class TestLookups:
    @pytest.mark.asyncio()
    async def test_search_finds_latest_payment(self):
        payload = {
            "results": [
                {
                    "id": 987654,
                    "status": "approved",
                    "transaction_amount": 100.0,
                    "external_reference": str(APPOINTMENT_ID),
                    "metadata": {"kind": "booking"},
                },
                {"id": 111, "status": "rejected", "transaction_amount": 100.0},
            ]
        }
        with patch("httpx.AsyncClient") as mock_client_cls:
            mock_http = _patch_http(mock_client_cls, return_value=_make_response(payload))
            lookup = await _make_gateway().find_payment_by_reference("pref-123")

        assert isinstance(lookup, PaymentFound)
        assert lookup.payment_id == "987654"
        assert lookup.approved
        assert lookup.transaction_amount == 10000
        assert lookup.kind is PaymentKind.BOOKING
        assert mock_http.request.call_args.kwargs["params"]["preference_id"] == "pref-123"

    @pytest.mark.asyncio()
    async def test_search_prefers_approved_over_newer_attempt(self):
        payload = {
            "results": [
                {"id": 222, "status": "rejected", "transaction_amount": 100.0},
                {
                    "id": 111,
                    "status": "approved",
                    "transaction_amount": 100.0,
                    "transaction_amount_refunded": 30.5,
                },
            ]
        }
        with patch("httpx.AsyncClient") as mock_client_cls:
            _patch_http(mock_client_cls, return_value=_make_response(payload))
            lookup = await _make_gateway().find_payment_by_reference("pref-123")

        assert lookup.payment_id == "111"
        assert lookup.transaction_amount_refunded == 3050
        assert lookup.refundable == 6950

    @pytest.mark.asyncio()
    async def test_search_empty(self):
        with patch("httpx.AsyncClient") as mock_client_cls:
            _patch_http(mock_client_cls, return_value=_make_response({"results": []}))
            lookup = await _make_gateway().find_payment_by_reference("pref-123")

        assert isinstance(lookup, PaymentNotFound)
        assert lookup.found is False

    @pytest.mark.asyncio()
    async def test_get_payment_404(self):
        with patch("httpx.AsyncClient") as mock_client_cls:
            _patch_http(mock_client_cls, return_value=_make_error_response(404))
            lookup = await _make_gateway().get_payment("42")

        assert isinstance(lookup, PaymentNotFound)

    @pytest.mark.asyncio()
    async def test_unknown_status_mapped(self):
        payload = {"id": 1, "status": "something_new", "transaction_amount": 10}
        with patch("httpx.AsyncClient") as mock_client_cls:
            _patch_http(mock_client_cls, return_value=_make_response(payload))
            lookup = await _make_gateway().get_payment("1")

        assert lookup.status is GatewayPaymentStatus.UNKNOWN
        assert lookup.kind is None


# ── Refunds ──────────────────────────────────────────────────────────


class TestRefund:
    @pytest.mark.asyncio()
    async def test_partial_refund(self):
        with patch("httpx.AsyncClient") as mock_client_cls:
            mock_http = _patch_http(
                mock_client_cls,
                return_value=_make_response({"id": 555, "payment_id": 987654, "amount": 50.0}),
            )
            result = await _make_gateway().refund("987654", 5000)

        assert result.amount == 5000
        assert result.refund_id == "555"
        method, path = mock_http.request.call_args.args
        assert (method, path) == ("POST", "/v1/payments/987654/refunds")
        assert mock_http.request.call_args.kwargs["json"] == {"amount": 50.0}


# ── Failures ─────────────────────────────────────────────────────────


class TestFailures:
    @pytest.mark.asyncio()
    async def test_timeout(self):
        with patch("httpx.AsyncClient") as mock_client_cls:
            _patch_http(mock_client_cls, side_effect=httpx.ReadTimeout("slow"))
            with pytest.raises(GatewayError) as exc_info:
                await _make_gateway().refund("1", 100)

        assert exc_info.value.detail == "timeout"
        assert exc_info.value.message == "Erro no provedor de pagamento"

    @pytest.mark.asyncio()
    async def test_http_error(self):
        with patch("httpx.AsyncClient") as mock_client_cls:
            _patch_http(mock_client_cls, return_value=_make_error_response(500))
            with pytest.raises(GatewayError) as exc_info:
                await _make_gateway().find_payment_by_reference("pref-1")

        assert exc_info.value.detail == "http_500"
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio()
    async def test_transport_error(self):
        with patch("httpx.AsyncClient") as mock_client_cls:
            _patch_http(mock_client_cls, side_effect=httpx.ConnectError("refused"))
            with pytest.raises(GatewayError):
                await _make_gateway().get_payment("1")

    @pytest.mark.asyncio()
    async def test_missing_token_never_calls_http(self):
        with patch("httpx.AsyncClient") as mock_client_cls:
            with pytest.raises(GatewayError):
                await _make_gateway(token="").get_payment("1")
            mock_client_cls.assert_not_called()
