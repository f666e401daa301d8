"""
Servicio de la jerarquía organización → complejo → departamento → clínica.
Las altas de complejos y clínicas pasan por el validador del plan.
"""

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException, ValidationException
from app.models.clinic import Clinic
from app.models.complex import Complex
from app.models.department import Department
from app.models.organization import EntityStatus, Organization
from app.models.subscription import Subscription
from app.schemas.hierarchy import (
    ClinicCreate,
    ComplexCreate,
    DepartmentCreate,
    OrganizationCreate,
    SubscriptionCreate,
)
from app.services import plan_service

logger = logging.getLogger(__name__)


async def _save(db: AsyncSession, entity):
    db.add(entity)
    await db.flush()
    await db.refresh(entity)
    return entity


# ── Suscripciones y organizaciones ───────────────────

async def create_subscription(db: AsyncSession, data: SubscriptionCreate) -> Subscription:
    subscription = await _save(db, Subscription(**data.model_dump()))
    logger.info(f"Suscripción creada: {subscription.id} ({subscription.plan_type.value})")
    return subscription


async def create_organization(db: AsyncSession, data: OrganizationCreate) -> Organization:
    if data.subscription_id and await db.get(Subscription, data.subscription_id) is None:
        raise NotFoundException("subscription", "Suscripción no encontrada")
    organization = await _save(db, Organization(**data.model_dump()))
    logger.info(f"Organización creada: {organization.name}")
    return organization


# ── Complejos y departamentos ────────────────────────

async def get_complex(db: AsyncSession, complex_id: UUID) -> Complex:
    complex_ = await db.get(Complex, complex_id)
    if complex_ is None or complex_.deleted_at is not None:
        raise NotFoundException("complex", f"ID {complex_id}")
    return complex_


async def create_complex(db: AsyncSession, data: ComplexCreate) -> Complex:
    """Crear un complejo; cuenta contra `max_complexes` del plan de la organización."""
    await plan_service.validate_new_complex(db, data.organization_id)
    complex_ = await _save(db, Complex(**data.model_dump()))
    logger.info(f"Complejo creado: {complex_.name}")
    return complex_


async def create_department(db: AsyncSession, data: DepartmentCreate) -> Department:
    if data.complex_id:
        await get_complex(db, data.complex_id)
    department = await _save(db, Department(**data.model_dump()))
    logger.info(f"Departamento creado: {department.name}")
    return department


# ── Clínicas ─────────────────────────────────────────

async def get_clinic(db: AsyncSession, clinic_id: UUID) -> Clinic:
    clinic = await db.get(Clinic, clinic_id)
    if clinic is None or clinic.deleted_at is not None:
        raise NotFoundException("clinic", f"ID {clinic_id}")
    return clinic


async def create_clinic(db: AsyncSession, data: ClinicCreate) -> Clinic:
    """
    Crear una clínica. Si pertenece a un complejo, este debe existir y admitir
    una clínica más según su plan.
    """
    if data.complex_id:
        complex_ = await get_complex(db, data.complex_id)
        if complex_.status != EntityStatus.ACTIVE:
            raise ValidationException(
                "El complejo no está activo", code="COMPLEX_INACTIVE", complex_id=complex_.id
            )
    if data.department_id and await db.get(Department, data.department_id) is None:
        raise NotFoundException("department", f"ID {data.department_id}")

    await plan_service.validate_new_clinic(
        db,
        complex_id=data.complex_id,
        subscription_id=data.subscription_id,
        organization_id=data.organization_id,
    )
    clinic = await _save(db, Clinic(**data.model_dump()))
    logger.info(f"Clínica creada: {clinic.name} ({clinic.id})")
    return clinic
