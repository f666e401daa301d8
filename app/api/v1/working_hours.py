"""
Endpoints de horarios de atención por entidad (organización, complejo, clínica).
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.deps import get_actor_id
from app.database import get_db, get_session_factory
from app.models.working_hours import WorkingHoursEntity
from app.schemas.working_hours import (
    WorkingHoursReschedulingUpdate,
    WorkingHoursResponse,
    WorkingHoursUpdate,
    WorkingHoursUpdateResult,
)
from app.services import cascade_service, working_hours_service
from app.services.notification_service import Notifier, get_notifier

router = APIRouter()


# ── Ruta fija (DEBE ir antes de /{entity_type}/{entity_id}) ──

@router.put("/clinic/{clinic_id}/with-rescheduling", response_model=WorkingHoursUpdateResult)
async def update_clinic_hours_with_rescheduling(
    clinic_id: UUID,
    data: WorkingHoursReschedulingUpdate,
    actor_id: UUID | None = Depends(get_actor_id),
    notifier: Notifier = Depends(get_notifier),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    db: AsyncSession = Depends(get_db),
):
    """
    Reemplaza el horario de la clínica y resuelve las citas futuras que
    quedan fuera según `handle_conflicts` (reschedule / notify / cancel).
    """
    return await cascade_service.update_working_hours_with_rescheduling(
        db,
        clinic_id,
        data,
        actor_id=actor_id,
        notifier=notifier,
        session_factory=session_factory,
    )


@router.get("/{entity_type}/{entity_id}", response_model=list[WorkingHoursResponse])
async def get_working_hours(
    entity_type: WorkingHoursEntity,
    entity_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Horario semanal registrado de la entidad (lunes a domingo)."""
    return await working_hours_service.get_working_hours(db, entity_type, entity_id)


@router.put("/{entity_type}/{entity_id}", response_model=list[WorkingHoursResponse])
async def replace_working_hours(
    entity_type: WorkingHoursEntity,
    entity_id: UUID,
    data: WorkingHoursUpdate,
    actor_id: UUID | None = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Reemplaza el horario semanal sin tocar citas existentes.
    Debe caber dentro del horario de la entidad padre.
    """
    return await working_hours_service.replace_working_hours(
        db, entity_type, entity_id, data.days, actor_id=actor_id
    )
