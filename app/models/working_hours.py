"""
Modelo WorkingHours — Horario semanal de una organización, complejo o clínica.

Cada entidad define sus propios días; nunca se heredan implícitamente del padre.
Un día sin registro se considera NO laborable.
"""

import enum
import uuid
from datetime import datetime, time

from sqlalchemy import (
    DateTime,
    Enum,
    Time,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.time_intervals import DayOfWeek
from app.database import Base


class WorkingHoursEntity(str, enum.Enum):
    """Tipos de entidad que pueden tener horario propio."""
    ORGANIZATION = "organization"
    COMPLEX = "complex"
    CLINIC = "clinic"


class WorkingHours(Base):
    __tablename__ = "working_hours"
    __table_args__ = (
        UniqueConstraint(
            "entity_type", "entity_id", "day_of_week",
            name="uq_working_hours_entity_day",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    entity_type: Mapped[WorkingHoursEntity] = mapped_column(
        Enum(WorkingHoursEntity), nullable=False
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True,
        comment="ID de la organización, complejo o clínica"
    )
    day_of_week: Mapped[DayOfWeek] = mapped_column(Enum(DayOfWeek), nullable=False)
    is_working_day: Mapped[bool] = mapped_column(default=True)

    # ── Horario (null si no es laborable) ────────────
    opening_time: Mapped[time | None] = mapped_column(Time)
    closing_time: Mapped[time | None] = mapped_column(Time)
    break_start: Mapped[time | None] = mapped_column(Time)
    break_end: Mapped[time | None] = mapped_column(Time)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        if not self.is_working_day:
            return f"<WorkingHours {self.entity_type.value}:{self.entity_id} {self.day_of_week.value} cerrado>"
        return (
            f"<WorkingHours {self.entity_type.value}:{self.entity_id} "
            f"{self.day_of_week.value} {self.opening_time}-{self.closing_time}>"
        )
