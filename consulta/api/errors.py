"""Rendering of domain errors as HTTP responses."""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from consulta.errors import BookingError, GatewayError

logger = logging.getLogger(__name__)


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    """Render domain errors as ``{"error": code, "message": message}``."""
    if isinstance(exc, GatewayError):
        logger.warning("%s %s failed at the payment gateway: %s", request.method, request.url.path, exc.detail)
    elif exc.status_code >= 500:
        logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.code, exc.context)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
