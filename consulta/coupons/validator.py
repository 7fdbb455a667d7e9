"""Coupon validation and redemption.

validate() is read-only and safe to call from a "check my coupon" form.
redeem() is the commit path: it takes a row lock on the coupon, re-checks
both usage caps and appends to the coupon_usage ledger, so two concurrent
bookings can never both take the last use.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consulta.appointments.directory import Directory, ProfessionalProfile
from consulta.appointments.policy import utcnow
from consulta.errors import InvalidCoupon, PersistenceError
from consulta.models.coupon import Coupon, CouponUsage
from consulta.models.enums import CouponScope
from consulta.pricing import compute_price
from consulta.schemas.coupons import (
    REJECTION_MESSAGES,
    CouponAccepted,
    CouponDecision,
    CouponRecord,
    CouponRejected,
    RejectionReason,
)

logger = logging.getLogger(__name__)


def in_scope(coupon: CouponRecord, professional: ProfessionalProfile) -> bool:
    """Whether ``coupon`` may discount sessions with ``professional``."""
    if professional.tenant_id != coupon.tenant_id:
        return False

    listed = coupon.professional_scope_ids or []
    if coupon.professional_scope is CouponScope.ALL_TENANT:
        return True
    if coupon.professional_scope is CouponScope.PROFESSIONAL_LIST:
        return professional.id in listed

    # institution_professionals, optionally narrowed to a list
    if coupon.institution_id is None or coupon.institution_id not in (professional.institution_ids or []):
        return False
    return not listed or professional.id in listed


class CouponValidator:
    """Owns coupon eligibility rules and the coupon_usage ledger."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        directory: Directory,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._directory = directory
        self._clock = clock

    async def validate(
        self,
        code: str,
        professional_id: uuid.UUID,
        amount: int,
        tenant_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> CouponDecision:
        """Check ``code`` for this booking. Never writes."""
        coupon = await self._find_coupon(code, tenant_id)
        if coupon is None:
            return self._reject(RejectionReason.NOT_FOUND, code)

        now = self._clock()
        if coupon.valid_from > now:
            return self._reject(RejectionReason.NOT_YET_VALID, code)
        if coupon.valid_until is not None and coupon.valid_until < now:
            return self._reject(RejectionReason.EXPIRED, code)

        professional = await self._directory.get_professional(professional_id)
        if professional is None or not in_scope(coupon, professional):
            return self._reject(RejectionReason.OUT_OF_SCOPE, code)

        if amount < coupon.minimum_purchase_amount:
            return self._reject(RejectionReason.BELOW_MINIMUM, code)

        if coupon.maximum_uses is not None and coupon.current_usage_count >= coupon.maximum_uses:
            return self._reject(RejectionReason.USAGE_EXCEEDED, code)
        if await self._count_user_usage(coupon.id, user_id) >= coupon.uses_per_user:
            return self._reject(RejectionReason.USAGE_EXCEEDED, code)

        terms = coupon.terms
        return CouponAccepted(coupon_id=coupon.id, code=coupon.code, terms=terms, price=compute_price(amount, terms))

    async def redeem(self, decision: CouponAccepted, user_id: uuid.UUID) -> uuid.UUID:
        """Reserve one use of an accepted coupon for ``user_id``.

        Returns the coupon_usage id; the row stays unsettled until
        attach_usage() links it to the booked appointment.

        Raises:
            InvalidCoupon: the coupon was deactivated or a cap was reached
                since validation.
        """
        try:
            async with self._session_factory() as db:
                result = await db.execute(select(Coupon).where(Coupon.id == decision.coupon_id).with_for_update())
                coupon = result.scalar_one_or_none()
                if coupon is None or not coupon.is_active:
                    raise InvalidCoupon(
                        RejectionReason.NOT_FOUND.value, REJECTION_MESSAGES[RejectionReason.NOT_FOUND]
                    )

                user_uses = (
                    await db.execute(
                        select(func.count())
                        .select_from(CouponUsage)
                        .where(CouponUsage.coupon_id == coupon.id, CouponUsage.user_id == user_id)
                    )
                ).scalar_one()
                global_cap_hit = coupon.maximum_uses is not None and coupon.current_usage_count >= coupon.maximum_uses
                if global_cap_hit or user_uses >= coupon.uses_per_user:
                    raise InvalidCoupon(
                        RejectionReason.USAGE_EXCEEDED.value,
                        REJECTION_MESSAGES[RejectionReason.USAGE_EXCEEDED],
                        coupon_id=str(coupon.id),
                    )

                usage = CouponUsage(
                    id=uuid.uuid4(),
                    coupon_id=coupon.id,
                    user_id=user_id,
                    original_amount=decision.price.original,
                    discount_amount=decision.price.discount,
                    final_amount=decision.price.final,
                )
                db.add(usage)
                await db.execute(
                    update(Coupon)
                    .where(Coupon.id == coupon.id)
                    .values(current_usage_count=Coupon.current_usage_count + 1)
                )
                await db.commit()
        except SQLAlchemyError as exc:
            logger.exception("Coupon redemption failed for coupon %s", decision.coupon_id)
            raise PersistenceError() from exc

        logger.info("Coupon %s redeemed by user %s (usage=%s)", decision.code, user_id, usage.id)
        return usage.id

    async def attach_usage(self, usage_id: uuid.UUID, appointment_id: uuid.UUID) -> None:
        """Settle a reservation against the appointment it paid for."""
        try:
            async with self._session_factory() as db:
                await db.execute(
                    update(CouponUsage).where(CouponUsage.id == usage_id).values(appointment_id=appointment_id)
                )
                await db.commit()
        except SQLAlchemyError as exc:
            logger.exception("Failed to attach coupon usage %s to appointment %s", usage_id, appointment_id)
            raise PersistenceError() from exc

    async def release_usage(self, usage_id: uuid.UUID) -> None:
        """Give back an unsettled reservation after its booking failed."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    delete(CouponUsage)
                    .where(CouponUsage.id == usage_id, CouponUsage.appointment_id.is_(None))
                    .returning(CouponUsage.coupon_id)
                )
                coupon_id = result.scalar_one_or_none()
                if coupon_id is not None:
                    await db.execute(
                        update(Coupon)
                        .where(Coupon.id == coupon_id, Coupon.current_usage_count > 0)
                        .values(current_usage_count=Coupon.current_usage_count - 1)
                    )
                await db.commit()
        except SQLAlchemyError as exc:
            logger.exception("Failed to release coupon usage %s", usage_id)
            raise PersistenceError() from exc

        logger.info("Coupon usage %s released", usage_id)

    # ── Internals ────────────────────────────────────────────────────

    async def _find_coupon(self, code: str, tenant_id: uuid.UUID) -> CouponRecord | None:
        """Active coupon with this code in the tenant, matched case-insensitively."""
        stmt = select(Coupon).where(
            Coupon.tenant_id == tenant_id,
            func.upper(Coupon.code) == code.strip().upper(),
            Coupon.is_active.is_(True),
        )
        try:
            async with self._session_factory() as db:
                row = (await db.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.exception("Coupon lookup failed for tenant %s", tenant_id)
            raise PersistenceError() from exc
        return CouponRecord.model_validate(row) if row is not None else None

    async def _count_user_usage(self, coupon_id: uuid.UUID, user_id: uuid.UUID) -> int:
        stmt = (
            select(func.count())
            .select_from(CouponUsage)
            .where(CouponUsage.coupon_id == coupon_id, CouponUsage.user_id == user_id)
        )
        try:
            async with self._session_factory() as db:
                return int((await db.execute(stmt)).scalar_one())
        except SQLAlchemyError as exc:
            logger.exception("Coupon usage count failed for coupon %s", coupon_id)
            raise PersistenceError() from exc

    @staticmethod
    def _reject(reason: RejectionReason, code: str) -> CouponRejected:
        logger.info("Coupon %r rejected: %s", code, reason.value)
        return CouponRejected.because(reason)
