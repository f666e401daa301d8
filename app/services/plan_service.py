"""
Validador de capacidad del plan de suscripción.

Solo lee: compara los conteos actuales con los límites del plan y lanza
PlanLimitExceededException antes de que se escriba nada.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException, PlanLimitExceededException
from app.models.clinic import Clinic
from app.models.complex import Complex
from app.models.organization import Organization
from app.models.subscription import PLAN_DEFAULTS, Subscription
from app.models.user import User


@dataclass(frozen=True)
class PlanLimits:
    max_complexes: int
    max_clinics: int
    max_staff: int


async def get_limits(db: AsyncSession, subscription_id: UUID) -> PlanLimits:
    """Límites efectivos: overrides de la suscripción o los valores del plan."""
    subscription = await db.get(Subscription, subscription_id)
    if subscription is None:
        raise NotFoundException("subscription", "Suscripción no encontrada")

    defaults = PLAN_DEFAULTS[subscription.plan_type]
    return PlanLimits(
        max_complexes=subscription.max_complexes
        if subscription.max_complexes is not None else defaults["max_complexes"],
        max_clinics=subscription.max_clinics
        if subscription.max_clinics is not None else defaults["max_clinics"],
        max_staff=subscription.max_staff
        if subscription.max_staff is not None else defaults["max_staff"],
    )


async def _get_complex(db: AsyncSession, complex_id: UUID) -> Complex:
    complex_ = await db.get(Complex, complex_id)
    if complex_ is None or complex_.deleted_at is not None:
        raise NotFoundException("complex", "Complejo no encontrado")
    return complex_


async def _complex_subscription_id(db: AsyncSession, complex_: Complex) -> UUID | None:
    """La suscripción del complejo, o la de su organización."""
    if complex_.subscription_id:
        return complex_.subscription_id
    if complex_.organization_id:
        organization = await db.get(Organization, complex_.organization_id)
        if organization:
            return organization.subscription_id
    return None


def _subscription_clinic_ids(subscription_id: UUID):
    """
    Subconsulta con las clínicas que consumen la suscripción: las que la llevan
    directamente, las de un complejo que la lleva y las de un complejo (o una
    organización) sin suscripción propia cuya organización la lleva.
    """
    organizations = select(Organization.id).where(Organization.subscription_id == subscription_id)
    complexes = select(Complex.id).where(
        Complex.deleted_at.is_(None),
        or_(
            Complex.subscription_id == subscription_id,
            and_(Complex.subscription_id.is_(None), Complex.organization_id.in_(organizations)),
        ),
    )
    return select(Clinic.id).where(
        Clinic.deleted_at.is_(None),
        or_(
            Clinic.subscription_id == subscription_id,
            Clinic.complex_id.in_(complexes),
            and_(
                Clinic.complex_id.is_(None),
                Clinic.subscription_id.is_(None),
                Clinic.organization_id.in_(organizations),
            ),
        ),
    )


async def _count_clinics(db: AsyncSession, subscription_id: UUID, excluded: list[UUID]) -> int:
    query = select(func.count(Clinic.id)).where(
        Clinic.id.in_(_subscription_clinic_ids(subscription_id))
    )
    if excluded:
        query = query.where(Clinic.id.not_in(excluded))
    return (await db.execute(query)).scalar() or 0


async def _count_staff(db: AsyncSession, subscription_id: UUID, excluded: list[UUID]) -> int:
    query = select(func.count(User.id)).where(
        User.is_active.is_(True),
        User.clinic_id.in_(_subscription_clinic_ids(subscription_id)),
    )
    if excluded:
        query = query.where(User.clinic_id.not_in(excluded))
    return (await db.execute(query)).scalar() or 0


async def _check_clinics(
    db: AsyncSession,
    subscription_id: UUID,
    additional: int,
    *,
    moving_clinic_ids: list[UUID] | None = None,
    additional_staff_count: int = 0,
) -> None:
    """
    Compara contra el total de la suscripción. Las clínicas que se mueven no
    cuentan como existentes (pueden venir de un complejo hermano del mismo plan).
    """
    limits = await get_limits(db, subscription_id)
    moving = list(moving_clinic_ids or [])

    current_clinics = await _count_clinics(db, subscription_id, moving)
    if current_clinics + additional > limits.max_clinics:
        raise PlanLimitExceededException("clinics", limits.max_clinics, current_clinics, additional)

    if additional_staff_count:
        current_staff = await _count_staff(db, subscription_id, moving)
        if current_staff + additional_staff_count > limits.max_staff:
            raise PlanLimitExceededException(
                "staff", limits.max_staff, current_staff, additional_staff_count
            )


async def validate_transfer(
    db: AsyncSession,
    target_complex_id: UUID,
    additional_clinic_count: int,
    *,
    moving_clinic_ids: list[UUID] | None = None,
    additional_staff_count: int = 0,
) -> None:
    """
    Verifica que la suscripción del complejo destino admita
    `additional_clinic_count` clínicas (y su personal) más.
    Sin suscripción asociada no hay límites que aplicar.
    """
    target = await _get_complex(db, target_complex_id)
    subscription_id = await _complex_subscription_id(db, target)
    if subscription_id is None:
        return
    await _check_clinics(
        db,
        subscription_id,
        additional_clinic_count,
        moving_clinic_ids=moving_clinic_ids,
        additional_staff_count=additional_staff_count,
    )


async def validate_new_complex(db: AsyncSession, organization_id: UUID | None) -> None:
    if organization_id is None:
        return
    organization = await db.get(Organization, organization_id)
    if organization is None:
        raise NotFoundException("organization", "Organización no encontrada")
    if organization.subscription_id is None:
        return

    limits = await get_limits(db, organization.subscription_id)
    current = (await db.execute(
        select(func.count(Complex.id)).where(
            Complex.organization_id == organization_id,
            Complex.deleted_at.is_(None),
        )
    )).scalar() or 0
    if current + 1 > limits.max_complexes:
        raise PlanLimitExceededException("complexes", limits.max_complexes, current, 1)


async def validate_new_clinic(
    db: AsyncSession,
    *,
    complex_id: UUID | None,
    subscription_id: UUID | None = None,
    organization_id: UUID | None = None,
) -> None:
    """
    Una clínica nueva cuenta contra la suscripción de su complejo, la propia,
    o la de su organización, en ese orden.
    """
    if complex_id is not None:
        await validate_transfer(db, complex_id, 1)
        return
    if subscription_id is None and organization_id is not None:
        organization = await db.get(Organization, organization_id)
        if organization is None:
            raise NotFoundException("organization", "Organización no encontrada")
        subscription_id = organization.subscription_id
    if subscription_id is None:
        return
    await _check_clinics(db, subscription_id, 1)


async def _clinic_subscription_id(db: AsyncSession, clinic: Clinic) -> UUID | None:
    if clinic.subscription_id:
        return clinic.subscription_id
    if clinic.complex_id:
        complex_ = await db.get(Complex, clinic.complex_id)
        if complex_ is not None:
            return await _complex_subscription_id(db, complex_)
    if clinic.organization_id:
        organization = await db.get(Organization, clinic.organization_id)
        if organization:
            return organization.subscription_id
    return None


async def validate_staff_move(db: AsyncSession, target_clinic: Clinic, user_ids: list[UUID]) -> None:
    """
    Personal que pasa a `target_clinic`. Solo suman al límite los usuarios que
    vienen de clínicas de otra suscripción.
    """
    if not user_ids:
        return
    subscription_id = await _clinic_subscription_id(db, target_clinic)
    if subscription_id is None:
        return

    arriving = (await db.execute(
        select(func.count(User.id)).where(
            User.id.in_(user_ids),
            or_(
                User.clinic_id.is_(None),
                User.clinic_id.not_in(_subscription_clinic_ids(subscription_id)),
            ),
        )
    )).scalar() or 0
    if not arriving:
        return

    limits = await get_limits(db, subscription_id)
    current = await _count_staff(db, subscription_id, [])
    if current + arriving > limits.max_staff:
        raise PlanLimitExceededException("staff", limits.max_staff, current, arriving)
