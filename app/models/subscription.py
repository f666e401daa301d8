"""
Modelo Subscription — Plan contratado y sus límites de capacidad.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class PlanType(str, enum.Enum):
    """Tipos de plan de suscripción."""
    COMPANY = "company"    # organización con varios complejos
    COMPLEX = "complex"    # un complejo con varias clínicas
    CLINIC = "clinic"      # clínica independiente


# ── Límites por defecto de cada plan ─────────────────
PLAN_DEFAULTS: dict[PlanType, dict[str, int]] = {
    PlanType.COMPANY: {"max_complexes": 10, "max_clinics": 50, "max_staff": 500},
    PlanType.COMPLEX: {"max_complexes": 0, "max_clinics": 20, "max_staff": 100},
    PlanType.CLINIC: {"max_complexes": 0, "max_clinics": 1, "max_staff": 20},
}


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    plan_type: Mapped[PlanType] = mapped_column(
        Enum(PlanType), nullable=False, default=PlanType.CLINIC
    )
    is_active: Mapped[bool] = mapped_column(default=True)

    # ── Overrides del plan (null = usar PLAN_DEFAULTS) ──
    max_complexes: Mapped[int | None] = mapped_column(comment="Override de complejos permitidos")
    max_clinics: Mapped[int | None] = mapped_column(comment="Override de clínicas permitidas")
    max_staff: Mapped[int | None] = mapped_column(comment="Override de personal permitido")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Subscription {self.id} ({self.plan_type.value})>"
