"""
Schemas de cascadas: desactivación de entidades, transferencia de clínicas
y resultado por cita.
"""

import enum
from datetime import date
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.organization import EntityStatus


class ConflictPolicy(str, enum.Enum):
    """Qué hacer con las citas afectadas por un cambio de la jerarquía."""
    RESCHEDULE = "reschedule"
    NOTIFY = "notify"
    CANCEL = "cancel"


class CascadeEntityType(str, enum.Enum):
    DEPARTMENT = "department"
    COMPLEX = "complex"
    CLINIC = "clinic"


class CascadeOutcome(str, enum.Enum):
    RESCHEDULED = "rescheduled"
    MARKED_FOR_RESCHEDULING = "marked_for_rescheduling"
    CANCELLED = "cancelled"


# ── Requests ─────────────────────────────────────────

class CascadeOptions(BaseModel):
    handle_conflicts: ConflictPolicy
    notify_patients: bool = True
    rescheduling_reason: str | None = Field(None, max_length=500)


class DeactivationRequest(CascadeOptions):
    entity_type: CascadeEntityType
    entity_id: UUID
    status: EntityStatus = EntityStatus.INACTIVE
    rebook_clinic_id: UUID | None = Field(
        None, description="Clínica donde reprogramar (política reschedule)"
    )
    target_complex_id: UUID | None = Field(
        None, description="Solo complejos: transferir sus clínicas a este complejo antes de desactivarlo"
    )
    transfer_clinic_id: UUID | None = Field(
        None, description="Clínica que recibe a los doctores y al personal transferidos"
    )
    transfer_department_id: UUID | None = Field(
        None, description="Departamento asignado al personal transferido"
    )
    transfer_doctors: bool = False
    transfer_staff: bool = False
    doctor_ids: list[UUID] = Field(
        default_factory=list, description="Doctores a transferir (vacío: todos los del alcance)"
    )
    staff_ids: list[UUID] = Field(
        default_factory=list, description="Personal no médico a transferir (vacío: todo el del alcance)"
    )
    timeout_seconds: float | None = Field(None, gt=0, le=600)

    @field_validator("status")
    @classmethod
    def must_deactivate(cls, v: EntityStatus) -> EntityStatus:
        if v == EntityStatus.ACTIVE:
            raise ValueError("El estado destino debe ser inactive o suspended")
        return v

    @model_validator(mode="after")
    def target_only_for_complex(self):
        if self.target_complex_id and self.entity_type != CascadeEntityType.COMPLEX:
            raise ValueError("target_complex_id solo aplica a complejos")
        if self.target_complex_id and self.target_complex_id == self.entity_id:
            raise ValueError("El complejo destino debe ser distinto al desactivado")
        return self

    @model_validator(mode="after")
    def staff_transfer_target(self):
        moving = self.transfer_doctors or self.transfer_staff
        if moving and not self.transfer_clinic_id:
            raise ValueError("transfer_clinic_id es obligatorio para transferir personal")
        if self.transfer_clinic_id and not moving:
            raise ValueError("transfer_clinic_id requiere transfer_doctors o transfer_staff")
        if self.transfer_department_id and not self.transfer_clinic_id:
            raise ValueError("transfer_department_id requiere transfer_clinic_id")
        if self.doctor_ids and not self.transfer_doctors:
            raise ValueError("doctor_ids requiere transfer_doctors")
        if self.staff_ids and not self.transfer_staff:
            raise ValueError("staff_ids requiere transfer_staff")
        if moving and self.target_complex_id:
            raise ValueError("Al transferir las clínicas a otro complejo el personal se queda en ellas")
        return self


class TransferClinicsRequest(CascadeOptions):
    handle_conflicts: ConflictPolicy = ConflictPolicy.NOTIFY
    source_complex_id: UUID
    target_complex_id: UUID
    clinic_ids: list[UUID] = Field(..., min_length=1)

    @field_validator("clinic_ids")
    @classmethod
    def unique_clinics(cls, v: list[UUID]) -> list[UUID]:
        if len(set(v)) != len(v):
            raise ValueError("clinic_ids contiene duplicados")
        return v

    @model_validator(mode="after")
    def different_complexes(self):
        if self.source_complex_id == self.target_complex_id:
            raise ValueError("El complejo origen y destino deben ser distintos")
        return self


# ── Resultados ───────────────────────────────────────

class AppointmentChange(BaseModel):
    appointment_id: UUID
    old_date: date
    old_time: str
    new_date: date | None = None
    new_time: str | None = None
    status: CascadeOutcome


class CascadeSummary(BaseModel):
    appointments_rescheduled: int = 0
    appointments_marked_for_rescheduling: int = 0
    appointments_cancelled: int = 0
    notifications_sent: int = 0
    rescheduled_appointments: list[AppointmentChange] = []


class TransferRecord(BaseModel):
    clinic_id: UUID
    from_complex_id: UUID | None
    to_complex_id: UUID
    staff_updated: int
    appointments_affected: int
    conflicts: list[UUID] = []


class CascadeResult(CascadeSummary):
    entity_type: CascadeEntityType
    entity_id: UUID
    status: EntityStatus
    clinics_affected: int = 0
    transfers: list[TransferRecord] = []
    doctors_transferred: int = 0
    staff_transferred: int = 0


class TransferResult(CascadeSummary):
    source_complex_id: UUID
    target_complex_id: UUID
    transfers: list[TransferRecord]
