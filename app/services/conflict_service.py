"""
Detector de conflictos de agenda.

Una cita propuesta choca si su intervalo [inicio, inicio+duración) se solapa con
otra cita vigente del mismo doctor, del mismo paciente, o si la clínica ya tiene
ocupados todos sus consultorios en ese horario. Se revisa en ese orden y gana
el primer conflicto, para que el error sea determinista.
"""

import enum
from dataclasses import dataclass
from datetime import date, time
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.time_intervals import Interval, interval_for, overlaps
from app.models.appointment import Appointment, INACTIVE_STATUSES
from app.models.clinic import Clinic


class ConflictParty(str, enum.Enum):
    DOCTOR = "doctor"
    PATIENT = "patient"
    CLINIC = "clinic"


ALL_PARTIES = (ConflictParty.DOCTOR, ConflictParty.PATIENT, ConflictParty.CLINIC)


@dataclass(frozen=True)
class Conflict:
    party: ConflictParty
    appointment_id: UUID


async def _overlapping(
    db: AsyncSession,
    column,
    value: UUID,
    target_date: date,
    interval: Interval,
    exclude_id: UUID | None,
) -> list[Appointment]:
    """
    Citas vigentes que comparten `column == value` y se solapan con `interval`.
    El solape se evalúa en minutos del día, tras filtrar por fecha en SQL.
    """
    query = select(Appointment).where(
        column == value,
        Appointment.appointment_date == target_date,
        Appointment.status.not_in(INACTIVE_STATUSES),
        Appointment.deleted_at.is_(None),
    )
    if exclude_id:
        query = query.where(Appointment.id != exclude_id)

    result = await db.execute(query)
    hits = [appt for appt in result.scalars().all() if overlaps(appt.interval, interval)]
    hits.sort(key=lambda appt: (appt.appointment_time, str(appt.id)))
    return hits


async def find_conflict(
    db: AsyncSession,
    *,
    doctor_id: UUID,
    patient_id: UUID,
    clinic_id: UUID,
    target_date: date,
    start_time: time,
    duration_minutes: int,
    exclude_id: UUID | None = None,
    parties: tuple[ConflictParty, ...] = ALL_PARTIES,
) -> Conflict | None:
    """Primer conflicto encontrado (doctor → paciente → clínica) o None."""
    interval = interval_for(start_time, duration_minutes)

    for party in ALL_PARTIES:
        if party not in parties:
            continue

        if party == ConflictParty.DOCTOR:
            hits = await _overlapping(
                db, Appointment.doctor_id, doctor_id, target_date, interval, exclude_id
            )
            if hits:
                return Conflict(party, hits[0].id)

        elif party == ConflictParty.PATIENT:
            hits = await _overlapping(
                db, Appointment.patient_id, patient_id, target_date, interval, exclude_id
            )
            if hits:
                return Conflict(party, hits[0].id)

        else:
            clinic = await db.get(Clinic, clinic_id)
            capacity = clinic.room_count if clinic else 1
            hits = await _overlapping(
                db, Appointment.clinic_id, clinic_id, target_date, interval, exclude_id
            )
            if len(hits) >= capacity:
                return Conflict(party, hits[0].id)

    return None
