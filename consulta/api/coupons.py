"""Coupon check route used by the checkout form. Rate limited per user."""
# ruff: noqa: B008

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status

from consulta.api.dependencies import Services, current_user_id, get_services
from consulta.schemas.api import CouponValidationResponse, ValidateCouponRequest
from consulta.security.rate_limiter import coupon_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post("/validate", response_model=CouponValidationResponse)
async def validate_coupon(
    body: ValidateCouponRequest,
    user_id: uuid.UUID = Depends(current_user_id),
    services: Services = Depends(get_services),
) -> CouponValidationResponse:
    limits = services.settings.security
    allowed, retry_after = await services.rate_limiter.check(
        coupon_key(user_id), limit=limits.coupon_rate_limit, window=limits.coupon_rate_window
    )
    if not allowed:
        logger.info("Coupon validation rate limited for user %s", user_id)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Muitas tentativas. Tente novamente em instantes",
            headers={"Retry-After": str(retry_after)},
        )

    decision = await services.validator.validate(
        body.code, body.professional_id, body.amount, body.tenant_id, user_id
    )
    return CouponValidationResponse.from_decision(decision, body.amount)
