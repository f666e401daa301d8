"""
Cálculo de disponibilidad: slots reservables de un doctor en una clínica,
sugerencias de horarios alternativos y búsqueda del slot libre más cercano
para reprogramaciones masivas.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.exceptions import NotFoundException
from app.core.time_intervals import (
    Interval,
    day_of_week,
    from_minutes,
    intersect_all,
    local_now,
    overlaps,
    to_minutes,
    to_time,
)
from app.models.appointment import Appointment, INACTIVE_STATUSES
from app.models.clinic import Clinic
from app.models.working_hours import WorkingHoursEntity
from app.schemas.appointment import AvailabilityResponse, Slot, SuggestedTime
from app.services.working_hours_service import DaySchedule, WeeklySchedule, resolve, resolve_week

settings = get_settings()

DOCTOR_BUSY = "doctor_busy"

BusyInterval = tuple[Interval, UUID | None]


# ── Helpers ──────────────────────────────────────────

async def _get_clinic(db: AsyncSession, clinic_id: UUID) -> Clinic:
    clinic = await db.get(Clinic, clinic_id)
    if clinic is None or clinic.deleted_at is not None:
        raise NotFoundException("clinic", "Clínica no encontrada")
    return clinic


async def doctor_busy_intervals(
    db: AsyncSession,
    doctor_id: UUID,
    target_date: date,
    *,
    exclude_ids: Iterable[UUID] = (),
) -> list[BusyInterval]:
    """Intervalos ocupados por citas vigentes del doctor en la fecha (en cualquier clínica)."""
    query = select(Appointment).where(
        Appointment.doctor_id == doctor_id,
        Appointment.appointment_date == target_date,
        Appointment.status.not_in(INACTIVE_STATUSES),
        Appointment.deleted_at.is_(None),
    )
    excluded = list(exclude_ids)
    if excluded:
        query = query.where(Appointment.id.not_in(excluded))

    result = await db.execute(query)
    return [(appt.interval, appt.id) for appt in result.scalars().all()]


def build_slots(
    intervals: Iterable[Interval],
    duration_minutes: int,
    busy: list[BusyInterval],
) -> list[Slot]:
    """
    Parte cada sub-intervalo laborable en slots consecutivos de `duration_minutes`,
    descartando el sobrante final, y marca los que chocan con `busy`.
    """
    slots: list[Slot] = []
    for piece in intervals:
        current = piece.start
        while current + duration_minutes <= piece.end:
            candidate = Interval(current, current + duration_minutes)
            hit = next((item for item in busy if overlaps(candidate, item[0])), None)
            slots.append(Slot(
                time=from_minutes(current),
                is_available=hit is None,
                reason=DOCTOR_BUSY if hit else None,
                conflicting_appointment_id=hit[1] if hit else None,
            ))
            current += duration_minutes
    return slots


# ── Disponibilidad ───────────────────────────────────

async def compute_slots(
    db: AsyncSession,
    doctor_id: UUID,
    clinic_id: UUID,
    target_date: date,
    duration_minutes: int | None = None,
    *,
    exclude_ids: Iterable[UUID] = (),
) -> list[Slot]:
    """
    Slots del día (disponibles y ocupados) según el horario de la clínica.
    Día no laborable o sin horario registrado → lista vacía.
    """
    clinic = await _get_clinic(db, clinic_id)
    duration = duration_minutes or clinic.session_duration

    schedule = await resolve(db, WorkingHoursEntity.CLINIC, clinic_id, day_of_week(target_date))
    if schedule is None:
        return []

    busy = await doctor_busy_intervals(db, doctor_id, target_date, exclude_ids=exclude_ids)
    return build_slots(schedule.intervals, duration, busy)


async def get_availability(
    db: AsyncSession,
    *,
    doctor_id: UUID,
    clinic_id: UUID,
    target_date: date,
    duration_minutes: int | None = None,
) -> AvailabilityResponse:
    clinic = await _get_clinic(db, clinic_id)
    duration = duration_minutes or clinic.session_duration
    slots = await compute_slots(db, doctor_id, clinic_id, target_date, duration)
    schedule = await resolve(db, WorkingHoursEntity.CLINIC, clinic_id, day_of_week(target_date))
    return AvailabilityResponse(
        doctor_id=doctor_id,
        clinic_id=clinic_id,
        date=target_date,
        duration_minutes=duration,
        is_working_day=schedule is not None,
        slots=slots,
    )


# ── Sugerencias ante conflicto ───────────────────────

def _not_past(slots: list[Slot], target_date: date, now: datetime) -> list[Slot]:
    if target_date > now.date():
        return slots
    if target_date < now.date():
        return []
    current = now.hour * 60 + now.minute
    return [s for s in slots if to_minutes(s.time) >= current]


async def suggest_times(
    db: AsyncSession,
    *,
    doctor_id: UUID,
    clinic_id: UUID,
    target_date: date,
    requested_time: time,
    duration_minutes: int,
    exclude_id: UUID | None = None,
    limit: int | None = None,
    lookahead_days: int | None = None,
) -> list[SuggestedTime]:
    """
    Hasta `limit` slots libres más cercanos a la hora pedida en el mismo día;
    si no hay ninguno, los primeros del siguiente día laborable.
    """
    limit = limit or settings.MAX_SUGGESTED_TIMES
    lookahead_days = lookahead_days if lookahead_days is not None else settings.RESCHEDULE_LOOKAHEAD_DAYS
    excluded = [exclude_id] if exclude_id else []
    now = local_now(settings.CLINIC_TIMEZONE)
    requested = to_minutes(requested_time)

    same_day = await compute_slots(
        db, doctor_id, clinic_id, target_date, duration_minutes, exclude_ids=excluded
    )
    free = _not_past([s for s in same_day if s.is_available], target_date, now)
    if free:
        free.sort(key=lambda s: (abs(to_minutes(s.time) - requested), to_minutes(s.time)))
        return [SuggestedTime(date=target_date, time=s.time) for s in free[:limit]]

    for offset in range(1, lookahead_days + 1):
        day = target_date + timedelta(days=offset)
        slots = await compute_slots(
            db, doctor_id, clinic_id, day, duration_minutes, exclude_ids=excluded
        )
        free = _not_past([s for s in slots if s.is_available], day, now)
        if free:
            return [SuggestedTime(date=day, time=s.time) for s in free[:limit]]
    return []


# ── Búsqueda para reprogramación masiva ──────────────

async def find_nearest_slot(
    db: AsyncSession,
    *,
    doctor_id: UUID,
    clinic_id: UUID,
    from_date: date,
    preferred_time: time,
    duration_minutes: int,
    lookahead_days: int,
    exclude_ids: Iterable[UUID] = (),
    reserved: dict[date, list[Interval]] | None = None,
    schedule: WeeklySchedule | None = None,
    bound: WeeklySchedule | None = None,
    not_before: datetime | None = None,
) -> tuple[date, time] | None:
    """
    Slot libre más cercano a `preferred_time`, buscando día por día desde
    `from_date` dentro de la ventana `lookahead_days`.

    `schedule` reemplaza el horario guardado de la clínica (horario nuevo aún
    no persistido); `bound` restringe los slots a otro horario (el del complejo
    destino en una transferencia); `reserved` son intervalos ya asignados en
    esta misma cascada.
    """
    week = schedule if schedule is not None else await resolve_week(
        db, WorkingHoursEntity.CLINIC, clinic_id
    )
    excluded = list(exclude_ids)
    reserved = reserved or {}
    preferred = to_minutes(preferred_time)

    for offset in range(lookahead_days + 1):
        day = from_date + timedelta(days=offset)
        weekday = day_of_week(day)
        day_schedule: DaySchedule | None = week.get(weekday)
        if day_schedule is None:
            continue

        intervals = list(day_schedule.intervals)
        if bound is not None:
            limit = bound.get(weekday)
            if limit is None:
                continue
            intervals = intersect_all(intervals, list(limit.intervals))

        busy = await doctor_busy_intervals(db, doctor_id, day, exclude_ids=excluded)
        busy.extend((interval, None) for interval in reserved.get(day, []))

        free = [s for s in build_slots(intervals, duration_minutes, busy) if s.is_available]
        if not_before is not None:
            free = _not_past(free, day, not_before)
        if free:
            best = min(free, key=lambda s: (abs(to_minutes(s.time) - preferred), to_minutes(s.time)))
            return day, to_time(to_minutes(best.time))
    return None
