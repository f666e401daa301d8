"""
Endpoints de cambios de ciclo de vida con efecto en cascada sobre la agenda.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.deps import get_actor_id
from app.database import get_db, get_session_factory
from app.schemas.cascade import (
    CascadeResult,
    DeactivationRequest,
    TransferClinicsRequest,
    TransferResult,
)
from app.services import cascade_service
from app.services.notification_service import Notifier, get_notifier

router = APIRouter()


@router.post("/deactivate", response_model=CascadeResult)
async def deactivate_entity(
    data: DeactivationRequest,
    actor_id: UUID | None = Depends(get_actor_id),
    notifier: Notifier = Depends(get_notifier),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    db: AsyncSession = Depends(get_db),
):
    """
    Desactiva o suspende un departamento, complejo o clínica y resuelve sus
    citas futuras. Todo o nada: ante un error no queda ningún cambio.
    """
    return await cascade_service.deactivate_entity(
        db, data, actor_id=actor_id, notifier=notifier, session_factory=session_factory
    )


@router.post("/transfer-clinics", response_model=TransferResult)
async def transfer_clinics(
    data: TransferClinicsRequest,
    actor_id: UUID | None = Depends(get_actor_id),
    notifier: Notifier = Depends(get_notifier),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    db: AsyncSession = Depends(get_db),
):
    """Transfiere clínicas (y su personal) a otro complejo, respetando el plan del destino."""
    return await cascade_service.transfer_clinics(
        db, data, actor_id=actor_id, notifier=notifier, session_factory=session_factory
    )
