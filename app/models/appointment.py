"""
Modelo Appointment — Citas médicas con state machine de estados.

Estados válidos y transiciones:
    scheduled → confirmed → in_progress → completed
    scheduled / confirmed / in_progress → cancelled
    scheduled / confirmed / in_progress → no_show
    scheduled / confirmed → (mismo estado) al reprogramar o transferir
"""

import enum
import uuid
from datetime import date, datetime, time

from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    Time,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.time_intervals import Interval, add_minutes, interval_for
from app.database import Base


class AppointmentStatus(str, enum.Enum):
    """Estados de una cita médica."""
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"


class UrgencyLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# ── Transiciones válidas de la state machine ─────────
VALID_TRANSITIONS: dict[AppointmentStatus, list[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: [
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    ],
    AppointmentStatus.CONFIRMED: [
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    ],
    AppointmentStatus.IN_PROGRESS: [
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    ],
    # Estados terminales: no tienen transiciones
    AppointmentStatus.COMPLETED: [],
    AppointmentStatus.NO_SHOW: [],
    AppointmentStatus.CANCELLED: [],
}

# Estados que admiten reprogramación o transferencia (se mantiene el estado)
MOVABLE_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)

# Estados que no ocupan la agenda
INACTIVE_STATUSES = (AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW)

TERMINAL_STATUSES = (
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
)


def is_valid_transition(current: AppointmentStatus, new: AppointmentStatus) -> bool:
    """Verifica si una transición de estado es válida."""
    return new in VALID_TRANSITIONS.get(current, [])


class Appointment(Base):
    __tablename__ = "appointments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clinics.id"), nullable=False
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False
    )
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    service_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("services.id"), nullable=False
    )
    department_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("departments.id"), nullable=True
    )

    # ── Datos de la cita ─────────────────────────────
    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    appointment_time: Mapped[time] = mapped_column(
        Time, nullable=False, comment="Hora local de la clínica"
    )
    duration_minutes: Mapped[int] = mapped_column(nullable=False, default=30)
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )
    urgency: Mapped[UrgencyLevel] = mapped_column(
        Enum(UrgencyLevel), nullable=False, default=UrgencyLevel.MEDIUM
    )
    notes: Mapped[str | None] = mapped_column(Text)

    # ── Metadata de cancelación ──────────────────────
    cancellation_reason: Mapped[str | None] = mapped_column(String(500))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    reschedule_requested: Mapped[bool] = mapped_column(
        default=False, comment="El paciente pidió volver a reservar al cancelar"
    )

    # ── Atención ─────────────────────────────────────
    completion_notes: Mapped[str | None] = mapped_column(Text)
    diagnosis: Mapped[str | None] = mapped_column(Text)
    follow_up_required: Mapped[bool] = mapped_column(default=False)
    follow_up_notes: Mapped[str | None] = mapped_column(Text)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # ── Transferencia de doctor ──────────────────────
    previous_doctor_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    transferred_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    transferred_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))

    # ── Reprogramación ───────────────────────────────
    rescheduling_reason: Mapped[str | None] = mapped_column(String(500))
    rescheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    marked_for_rescheduling_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    marked_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    cascade_key: Mapped[str | None] = mapped_column(
        String(120), comment="Último evento de cascada que procesó la cita"
    )

    # ── Timestamps ───────────────────────────────────
    created_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # ── Índices para consultas frecuentes ────────────
    __table_args__ = (
        Index("idx_appointment_doctor_date", "doctor_id", "appointment_date"),
        Index("idx_appointment_patient_date", "patient_id", "appointment_date"),
        Index("idx_appointment_clinic_date", "clinic_id", "appointment_date"),
        Index("idx_appointment_status", "clinic_id", "status"),
    )

    @property
    def interval(self) -> Interval:
        return interval_for(self.appointment_time, self.duration_minutes)

    @property
    def end_time(self) -> str:
        return add_minutes(self.appointment_time, self.duration_minutes)

    def __repr__(self) -> str:
        return (
            f"<Appointment {self.id} [{self.status.value}] "
            f"{self.appointment_date} {self.appointment_time}>"
        )
