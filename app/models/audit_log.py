"""
Modelo AuditLog — Registro de auditoría INMUTABLE.
INSERT-only: cambios de citas, cascadas y transferencias.
"""

import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, ForeignKey, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, JSONType


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    clinic_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clinics.id"), nullable=True, index=True,
        comment="Null para eventos de complejo o departamento"
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), index=True)

    # ── Datos del evento ─────────────────────────────
    entity: Mapped[str] = mapped_column(
        String(50), nullable=False, index=True,
        comment="Nombre de la entidad: appointment, clinic, complex, etc."
    )
    entity_id: Mapped[str] = mapped_column(
        String(36), nullable=False,
        comment="UUID del registro afectado"
    )
    action: Mapped[str] = mapped_column(
        String(40), nullable=False, index=True,
        comment="create, reschedule, cancel, transfer, deactivate, etc."
    )

    # ── Datos del cambio ─────────────────────────────
    old_data: Mapped[dict | None] = mapped_column(
        JSONType, comment="Snapshot del registro antes del cambio"
    )
    new_data: Mapped[dict | None] = mapped_column(
        JSONType, comment="Snapshot del registro después del cambio"
    )

    # ── Timestamp inmutable ──────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} on {self.entity} {self.entity_id}>"
