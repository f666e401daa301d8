"""
Servicio de horarios de atención.

Resuelve el horario efectivo de una organización, complejo o clínica para un
día de la semana. Un día sin registro es NO laborable: nunca se asume un
horario por defecto ni se hereda del padre.
"""

import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException, ValidationException
from app.core.time_intervals import (
    DayOfWeek,
    Interval,
    contains,
    subtract,
    to_minutes,
)
from app.models.clinic import Clinic
from app.models.complex import Complex
from app.models.organization import Organization
from app.models.working_hours import WorkingHours, WorkingHoursEntity
from app.schemas.working_hours import WorkingHoursDay
from app.services.audit_service import log_action

logger = logging.getLogger(__name__)

_DAY_ORDER = list(DayOfWeek)

_ENTITY_MODELS = {
    WorkingHoursEntity.ORGANIZATION: Organization,
    WorkingHoursEntity.COMPLEX: Complex,
    WorkingHoursEntity.CLINIC: Clinic,
}


class _HoursEntry(Protocol):
    day_of_week: DayOfWeek
    is_working_day: bool
    opening_time: object
    closing_time: object
    break_start: object
    break_end: object


@dataclass(frozen=True)
class DaySchedule:
    """Sub-intervalos laborables de un día (apertura–cierre menos la pausa)."""
    day: DayOfWeek
    intervals: tuple[Interval, ...]

    def fits(self, interval: Interval) -> bool:
        return any(contains(piece, interval) for piece in self.intervals)


WeeklySchedule = dict[DayOfWeek, DaySchedule]


# ── Resolución (puro) ────────────────────────────────

def day_schedule_from_entry(entry: _HoursEntry | None) -> DaySchedule | None:
    """Convierte un registro (modelo o schema) en DaySchedule; None = no laborable."""
    if entry is None or not entry.is_working_day:
        return None
    if entry.opening_time is None or entry.closing_time is None:
        return None

    window = Interval(to_minutes(entry.opening_time), to_minutes(entry.closing_time))
    breaks = []
    if entry.break_start is not None and entry.break_end is not None:
        breaks.append(Interval(to_minutes(entry.break_start), to_minutes(entry.break_end)))

    pieces = subtract(window, breaks)
    if not pieces:
        return None
    return DaySchedule(entry.day_of_week, tuple(pieces))


def schedule_from_entries(entries: list[_HoursEntry]) -> WeeklySchedule:
    """Horario semanal a partir de registros en memoria (p.ej. un horario aún no guardado)."""
    week: WeeklySchedule = {}
    for entry in entries:
        day = day_schedule_from_entry(entry)
        if day is not None:
            week[entry.day_of_week] = day
    return week


# ── Consultas ────────────────────────────────────────

async def get_working_hours(
    db: AsyncSession,
    entity_type: WorkingHoursEntity,
    entity_id: UUID,
) -> list[WorkingHours]:
    """Registros guardados de la entidad, ordenados de lunes a domingo."""
    result = await db.execute(
        select(WorkingHours).where(
            WorkingHours.entity_type == entity_type,
            WorkingHours.entity_id == entity_id,
        )
    )
    entries = list(result.scalars().all())
    entries.sort(key=lambda e: _DAY_ORDER.index(e.day_of_week))
    return entries


async def resolve(
    db: AsyncSession,
    entity_type: WorkingHoursEntity,
    entity_id: UUID,
    day: DayOfWeek,
) -> DaySchedule | None:
    """Horario efectivo de la entidad para un día; None si no es laborable."""
    result = await db.execute(
        select(WorkingHours).where(
            WorkingHours.entity_type == entity_type,
            WorkingHours.entity_id == entity_id,
            WorkingHours.day_of_week == day,
        )
    )
    return day_schedule_from_entry(result.scalar_one_or_none())


async def resolve_week(
    db: AsyncSession,
    entity_type: WorkingHoursEntity,
    entity_id: UUID,
) -> WeeklySchedule:
    return schedule_from_entries(await get_working_hours(db, entity_type, entity_id))


# ── Validación jerárquica ────────────────────────────

async def _get_entity(db: AsyncSession, entity_type: WorkingHoursEntity, entity_id: UUID):
    model = _ENTITY_MODELS[entity_type]
    entity = await db.get(model, entity_id)
    if entity is None:
        raise NotFoundException(entity_type.value, f"{entity_type.value} {entity_id} no existe")
    return entity


async def _parent_of(
    db: AsyncSession,
    entity_type: WorkingHoursEntity,
    entity_id: UUID,
) -> tuple[WorkingHoursEntity, UUID] | None:
    entity = await _get_entity(db, entity_type, entity_id)
    if entity_type == WorkingHoursEntity.CLINIC:
        if entity.complex_id:
            return WorkingHoursEntity.COMPLEX, entity.complex_id
        if entity.organization_id:
            return WorkingHoursEntity.ORGANIZATION, entity.organization_id
    if entity_type == WorkingHoursEntity.COMPLEX and entity.organization_id:
        return WorkingHoursEntity.ORGANIZATION, entity.organization_id
    return None


async def validate_against_parent(
    db: AsyncSession,
    entity_type: WorkingHoursEntity,
    entity_id: UUID,
    days: list[WorkingHoursDay],
) -> None:
    """
    El horario de una clínica debe caber en el de su complejo (o el de un
    complejo en el de su organización). Un padre sin horario no impone límites.
    """
    parent = await _parent_of(db, entity_type, entity_id)
    if parent is None:
        return

    parent_entries = await get_working_hours(db, *parent)
    if not parent_entries:
        return
    parent_week = schedule_from_entries(parent_entries)

    for day in days:
        child = day_schedule_from_entry(day)
        if child is None:
            continue
        bound = parent_week.get(day.day_of_week)
        if bound is None or not all(bound.fits(piece) for piece in child.intervals):
            raise ValidationException(
                f"El horario del {day.day_of_week.value} excede el de {parent[0].value}",
                code="OUTSIDE_PARENT_HOURS",
                day_of_week=day.day_of_week.value,
                parent_type=parent[0].value,
                parent_id=parent[1],
            )


# ── Escritura ────────────────────────────────────────

async def replace_working_hours(
    db: AsyncSession,
    entity_type: WorkingHoursEntity,
    entity_id: UUID,
    days: list[WorkingHoursDay],
    *,
    actor_id: UUID | None = None,
) -> list[WorkingHours]:
    """Reemplaza el horario semanal completo de la entidad (borra e inserta)."""
    await validate_against_parent(db, entity_type, entity_id, days)

    old_entries = await get_working_hours(db, entity_type, entity_id)
    old_data = {
        e.day_of_week.value: [str(e.opening_time), str(e.closing_time)] if e.is_working_day else None
        for e in old_entries
    }

    await db.execute(
        delete(WorkingHours).where(
            WorkingHours.entity_type == entity_type,
            WorkingHours.entity_id == entity_id,
        )
    )
    entries = [
        WorkingHours(
            entity_type=entity_type,
            entity_id=entity_id,
            day_of_week=day.day_of_week,
            is_working_day=day.is_working_day,
            opening_time=day.opening_time,
            closing_time=day.closing_time,
            break_start=day.break_start,
            break_end=day.break_end,
        )
        for day in days
    ]
    db.add_all(entries)
    await db.flush()

    await log_action(
        db,
        clinic_id=entity_id if entity_type == WorkingHoursEntity.CLINIC else None,
        user_id=actor_id,
        entity=f"{entity_type.value}_working_hours",
        entity_id=str(entity_id),
        action="replace",
        old_data=old_data,
        new_data={
            day.day_of_week.value: [day.opening_time, day.closing_time] if day.is_working_day else None
            for day in days
        },
    )
    logger.info(f"Horario de {entity_type.value} {entity_id} reemplazado ({len(entries)} días)")

    entries.sort(key=lambda e: _DAY_ORDER.index(e.day_of_week))
    return entries
