"""Mercado Pago payment notification endpoint.

Answers 200 for anything it chooses to ignore so the gateway stops
redelivering; answers 502 when the payment could not be fetched so it
tries again later.
"""
# ruff: noqa: B008

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from consulta.api.dependencies import Services, get_services
from consulta.payments.signature import verify_signature
from consulta.schemas.api import PaymentNotification, WebhookAck
from consulta.schemas.payments import NotificationOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/mercadopago", response_model=WebhookAck)
async def mercadopago_webhook(
    request: Request,
    services: Services = Depends(get_services),
) -> WebhookAck:
    try:
        notification = PaymentNotification.model_validate(await request.json())
    except ValueError:
        notification = PaymentNotification()

    params = request.query_params
    topic = notification.type or params.get("type") or params.get("topic")
    # the signed id is the one in the query string
    payment_id = params.get("data.id") or notification.data.id or params.get("id")

    if topic != "payment" or not payment_id:
        logger.debug("Ignoring Mercado Pago notification type=%s", topic)
        return WebhookAck(outcome=NotificationOutcome.IGNORED.value)

    secret = services.settings.payments.mercadopago_webhook_secret
    if secret and not verify_signature(
        secret,
        request.headers.get("x-signature", ""),
        request.headers.get("x-request-id", ""),
        payment_id,
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    outcome = await services.payments.handle_notification(payment_id)
    return WebhookAck(outcome=outcome.value)
