"""Read-only lookups of professionals and tenants."""

from __future__ import annotations

import logging
import uuid

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consulta.errors import PersistenceError
from consulta.models.professional import Professional, Tenant

logger = logging.getLogger(__name__)


class ProfessionalProfile(BaseModel):
    """What the booking core needs to know about a professional."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    display_name: str
    session_price: int
    institution_ids: list[uuid.UUID] | None = None
    is_active: bool


class Directory:
    """Professional and tenant reference data."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], default_timezone: str) -> None:
        self._session_factory = session_factory
        self._default_timezone = default_timezone

    async def get_professional(self, professional_id: uuid.UUID) -> ProfessionalProfile | None:
        """Active professional by id, or None."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Professional).where(
                        Professional.id == professional_id,
                        Professional.is_active.is_(True),
                    )
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.exception("Failed to load professional %s", professional_id)
            raise PersistenceError() from exc
        return ProfessionalProfile.model_validate(row) if row is not None else None

    async def tenant_timezone(self, tenant_id: uuid.UUID) -> str:
        """IANA timezone of the tenant, falling back to the configured default."""
        try:
            async with self._session_factory() as db:
                tz = (await db.execute(select(Tenant.timezone).where(Tenant.id == tenant_id))).scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.exception("Failed to load tenant %s", tenant_id)
            raise PersistenceError() from exc
        return tz or self._default_timezone
