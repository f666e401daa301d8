"""
Endpoints de citas médicas: creación (individual y masiva), consulta
y transiciones de estado.
"""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_actor_id
from app.database import get_db
from app.models.appointment import AppointmentStatus
from app.schemas.appointment import (
    AppointmentBulkCreate,
    AppointmentBulkResult,
    AppointmentCancel,
    AppointmentComplete,
    AppointmentCreate,
    AppointmentDoctorTransfer,
    AppointmentListResponse,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatusChange,
)
from app.services import appointment_service
from app.services.notification_service import Notifier, get_notifier

router = APIRouter()


# ── Creación ─────────────────────────────────────────

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    data: AppointmentCreate,
    actor_id: UUID | None = Depends(get_actor_id),
    notifier: Notifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
):
    """
    Agenda una cita. Valida horario de la clínica y conflictos de doctor,
    paciente y consultorios; ante conflicto responde 409 con horarios sugeridos.
    """
    return await appointment_service.create_appointment(
        db, data, actor_id=actor_id, notifier=notifier
    )


@router.post("/bulk", response_model=AppointmentBulkResult, status_code=status.HTTP_201_CREATED)
async def bulk_create_appointments(
    data: AppointmentBulkCreate,
    actor_id: UUID | None = Depends(get_actor_id),
    notifier: Notifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
):
    """Crea varias citas en una sola transacción."""
    return await appointment_service.bulk_create_appointments(
        db, data, actor_id=actor_id, notifier=notifier
    )


# ── Consultas ────────────────────────────────────────

@router.get("", response_model=AppointmentListResponse)
async def list_appointments(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    clinic_id: UUID | None = Query(None, description="Filtrar por clínica"),
    doctor_id: UUID | None = Query(None, description="Filtrar por doctor"),
    patient_id: UUID | None = Query(None, description="Filtrar por paciente"),
    status: AppointmentStatus | None = Query(None, description="Filtrar por estado"),
    date_from: date | None = Query(None, description="Desde fecha (YYYY-MM-DD)"),
    date_to: date | None = Query(None, description="Hasta fecha (YYYY-MM-DD)"),
    marked_only: bool = Query(False, description="Solo citas marcadas para reprogramar"),
    db: AsyncSession = Depends(get_db),
):
    """Lista citas con filtros y paginación."""
    return await appointment_service.list_appointments(
        db,
        page=page,
        size=size,
        clinic_id=clinic_id,
        doctor_id=doctor_id,
        patient_id=patient_id,
        status=status,
        date_from=date_from,
        date_to=date_to,
        marked_only=marked_only,
    )


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Obtiene el detalle de una cita por ID."""
    return await appointment_service.get_appointment(db, appointment_id)


# ── Transiciones ─────────────────────────────────────

@router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: UUID,
    data: AppointmentReschedule,
    actor_id: UUID | None = Depends(get_actor_id),
    notifier: Notifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
):
    """Mueve la cita a otra fecha u hora (mismo doctor y clínica)."""
    return await appointment_service.reschedule_appointment(
        db, appointment_id, data, actor_id=actor_id, notifier=notifier
    )


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: UUID,
    data: AppointmentCancel,
    actor_id: UUID | None = Depends(get_actor_id),
    notifier: Notifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
):
    """Cancela la cita con un motivo obligatorio."""
    return await appointment_service.cancel_appointment(
        db, appointment_id, data, actor_id=actor_id, notifier=notifier
    )


@router.post("/{appointment_id}/complete", response_model=AppointmentResponse)
async def complete_appointment(
    appointment_id: UUID,
    data: AppointmentComplete,
    actor_id: UUID | None = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """Cierra la atención registrando las notas del doctor."""
    return await appointment_service.complete_appointment(
        db, appointment_id, data, actor_id=actor_id
    )


@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
async def change_appointment_status(
    appointment_id: UUID,
    data: AppointmentStatusChange,
    actor_id: UUID | None = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Transiciones simples: confirmar, iniciar atención o registrar inasistencia.
    Cancelar y completar tienen sus propios endpoints.
    """
    return await appointment_service.change_status(
        db, appointment_id, data, actor_id=actor_id
    )


@router.post("/{appointment_id}/transfer", response_model=AppointmentResponse)
async def transfer_appointment(
    appointment_id: UUID,
    data: AppointmentDoctorTransfer,
    actor_id: UUID | None = Depends(get_actor_id),
    notifier: Notifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
):
    """Reasigna la cita a otro doctor en el mismo horario."""
    return await appointment_service.transfer_doctor(
        db, appointment_id, data, actor_id=actor_id, notifier=notifier
    )
