"""
Endpoint de disponibilidad de slots de un doctor.
"""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.appointment import AvailabilityResponse
from app.services import availability_service

router = APIRouter()


@router.get("", response_model=AvailabilityResponse)
async def get_availability(
    doctor_id: UUID = Query(..., description="ID del doctor"),
    clinic_id: UUID = Query(..., description="ID de la clínica"),
    target_date: date = Query(..., alias="date", description="Fecha (YYYY-MM-DD)"),
    duration_minutes: int | None = Query(None, ge=5, le=480, description="Duración del slot"),
    db: AsyncSession = Depends(get_db),
):
    """
    Slots del día según el horario de la clínica, con los ocupados por
    citas del doctor marcados como no disponibles.
    """
    return await availability_service.get_availability(
        db,
        doctor_id=doctor_id,
        clinic_id=clinic_id,
        target_date=target_date,
        duration_minutes=duration_minutes,
    )
