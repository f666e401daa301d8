"""
Modelo Clinic — Unidad donde se atienden las citas.
"""

import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, Enum, ForeignKey, Index, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.organization import EntityStatus


class Clinic(Base):
    __tablename__ = "clinics"
    __table_args__ = (
        Index("idx_clinic_complex_status", "complex_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=True, index=True
    )
    complex_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("complexes.id"), nullable=True,
        comment="Complejo al que pertenece (null = clínica independiente)"
    )
    department_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("departments.id"), nullable=True, index=True
    )
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("subscriptions.id"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[EntityStatus] = mapped_column(
        Enum(EntityStatus), nullable=False, default=EntityStatus.ACTIVE
    )

    # ── Agenda ───────────────────────────────────────
    session_duration: Mapped[int] = mapped_column(
        default=30, comment="Duración por defecto de cada cita (minutos)"
    )
    room_count: Mapped[int] = mapped_column(
        default=1, comment="Consultorios: citas simultáneas que admite la clínica"
    )

    # ── Metadata de desactivación ────────────────────
    deactivated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    deactivated_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    deactivation_reason: Mapped[str | None] = mapped_column(String(500))
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @property
    def is_active(self) -> bool:
        return self.status == EntityStatus.ACTIVE and self.deleted_at is None

    def __repr__(self) -> str:
        return f"<Clinic {self.name} [{self.status.value}]>"
