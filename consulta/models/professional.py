"""Professional and Tenant models: read-only reference data for the booking core."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import Mapped, mapped_column

from consulta.models.base import Base, TimestampMixin


class Tenant(TimestampMixin, Base):
    """A white-label deployment of the platform."""

    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="America/Sao_Paulo")

    def __repr__(self) -> str:
        return f"<Tenant name={self.name} tz={self.timezone}>"


class Professional(TimestampMixin, Base):
    """A professional patients can book."""

    __tablename__ = "professionals"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True
    )
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    session_price: Mapped[int] = mapped_column(Integer, nullable=False, comment="Minor currency units")
    institution_ids: Mapped[list[uuid.UUID] | None] = mapped_column(
        ARRAY(UUID(as_uuid=True)), comment="Institutions this professional is linked to"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Professional name={self.display_name} price={self.session_price} active={self.is_active}>"
