"""
Schemas para Appointment — citas médicas.
Incluye schemas para disponibilidad y operaciones de la state machine.
"""

from datetime import date, datetime, time
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.models.appointment import AppointmentStatus, UrgencyLevel


# ── Reserva de Citas ─────────────────────────────────

class AppointmentCreate(BaseModel):
    patient_id: UUID
    doctor_id: UUID
    clinic_id: UUID
    service_id: UUID
    department_id: UUID | None = None
    appointment_date: date
    appointment_time: time = Field(..., description="Hora local (HH:MM)")
    duration_minutes: int | None = Field(
        None, ge=5, le=480, description="Si no se envía, se usa la del servicio o la clínica"
    )
    urgency: UrgencyLevel = UrgencyLevel.MEDIUM
    notes: str | None = Field(None, max_length=2000)


class AppointmentBulkCreate(BaseModel):
    """Reserva de varias citas en una sola transacción."""
    items: list[AppointmentCreate] = Field(..., min_length=1, max_length=100)
    skip_conflicts: bool = Field(
        False, description="Omitir las citas con conflicto en lugar de fallar todo el lote"
    )
    auto_confirm: bool = Field(False, description="Crear las citas directamente confirmadas")


class AppointmentReschedule(BaseModel):
    new_date: date
    new_time: time
    reason: str | None = Field(None, max_length=500)


class AppointmentCancel(BaseModel):
    reason: str = Field(..., min_length=3, max_length=500)
    allow_reschedule: bool = Field(
        False, description="El paciente desea volver a reservar (no crea una cita nueva)"
    )

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("El motivo de cancelación es obligatorio")
        return v.strip()


class AppointmentComplete(BaseModel):
    doctor_notes: str = Field(..., max_length=5000)
    diagnosis: str | None = Field(None, max_length=2000)
    follow_up_required: bool = False
    follow_up_notes: str | None = Field(None, max_length=2000)


class AppointmentStatusChange(BaseModel):
    """Confirmar, iniciar o marcar inasistencia. Cancelar y completar tienen su propio endpoint."""
    status: AppointmentStatus

    @field_validator("status")
    @classmethod
    def simple_transitions_only(cls, v: AppointmentStatus) -> AppointmentStatus:
        if v not in (
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.NO_SHOW,
        ):
            raise ValueError("Use /cancel o /complete para ese estado")
        return v


class AppointmentDoctorTransfer(BaseModel):
    new_doctor_id: UUID
    reason: str | None = Field(None, max_length=500)


# ── Respuestas ───────────────────────────────────────

class AppointmentResponse(BaseModel):
    id: UUID
    clinic_id: UUID
    patient_id: UUID
    doctor_id: UUID
    service_id: UUID
    department_id: UUID | None = None
    appointment_date: date
    appointment_time: time
    end_time: str
    duration_minutes: int
    status: AppointmentStatus
    urgency: UrgencyLevel
    notes: str | None = None

    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: UUID | None = None
    reschedule_requested: bool = False

    completion_notes: str | None = None
    diagnosis: str | None = None
    follow_up_required: bool = False
    follow_up_notes: str | None = None

    previous_doctor_id: UUID | None = None
    transferred_at: datetime | None = None
    transferred_by: UUID | None = None

    rescheduling_reason: str | None = None
    rescheduled_at: datetime | None = None
    marked_for_rescheduling_at: datetime | None = None
    marked_by: UUID | None = None

    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AppointmentListResponse(BaseModel):
    """Respuesta paginada de listado de citas."""
    items: list[AppointmentResponse]
    total: int
    page: int
    size: int
    pages: int


class BulkSkipped(BaseModel):
    index: int
    code: str
    conflicting_appointment_id: UUID | None = None
    party: str | None = None


class AppointmentBulkResult(BaseModel):
    created: list[AppointmentResponse]
    skipped: list[BulkSkipped] = []


# ── Disponibilidad ───────────────────────────────────

class Slot(BaseModel):
    """Horario candidato calculado (no se persiste)."""
    time: str = Field(..., description="HH:MM")
    is_available: bool
    reason: str | None = None
    conflicting_appointment_id: UUID | None = None


class SuggestedTime(BaseModel):
    date: date
    time: str


class AvailabilityResponse(BaseModel):
    doctor_id: UUID
    clinic_id: UUID
    date: date
    duration_minutes: int
    is_working_day: bool
    slots: list[Slot]
