"""
Tests de reservas concurrentes: dos escrituras sobre el mismo doctor y una
ventana solapada nunca pueden confirmarse ambas.
"""

import asyncio
from datetime import time

from sqlalchemy import select

from app.core.exceptions import ConflictingAppointmentException
from app.models.appointment import Appointment, AppointmentStatus
from app.schemas.appointment import AppointmentCreate, AppointmentReschedule
from app.services import appointment_service


def _split(results):
    ok = [r for r in results if isinstance(r, Appointment)]
    errors = [r for r in results if isinstance(r, BaseException)]
    return ok, errors


async def test_concurrent_bookings_for_same_doctor(
    session_factory, test_clinic, test_doctor, test_patient, patient_factory, test_service, future_date
):
    other = await patient_factory("Marta")

    async def book(patient, at: time):
        async with session_factory() as db:
            return await appointment_service.create_appointment(
                db,
                AppointmentCreate(
                    clinic_id=test_clinic.id,
                    doctor_id=test_doctor.id,
                    patient_id=patient.id,
                    service_id=test_service.id,
                    appointment_date=future_date,
                    appointment_time=at,
                ),
            )

    results = await asyncio.gather(
        book(test_patient, time(10, 0)),
        book(other, time(10, 15)),
        return_exceptions=True,
    )

    ok, errors = _split(results)
    assert len(ok) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], ConflictingAppointmentException)
    assert errors[0].appointment_id == ok[0].id

    async with session_factory() as db:
        stored = (await db.execute(
            select(Appointment).where(Appointment.doctor_id == test_doctor.id)
        )).scalars().all()
    assert [a.id for a in stored] == [ok[0].id]


async def test_concurrent_reschedules_into_same_slot(
    session_factory, test_clinic, test_doctor, test_patient, patient_factory, future_date, make_appointment
):
    first = await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(9, 0))
    second = await make_appointment(
        test_clinic, test_doctor, await patient_factory("Marta"), future_date, time(11, 0)
    )

    async def move(appointment):
        async with session_factory() as db:
            return await appointment_service.reschedule_appointment(
                db,
                appointment.id,
                AppointmentReschedule(new_date=future_date, new_time=time(10, 0)),
            )

    results = await asyncio.gather(move(first), move(second), return_exceptions=True)

    ok, errors = _split(results)
    assert len(ok) == 1
    assert [type(e) for e in errors] == [ConflictingAppointmentException]

    async with session_factory() as db:
        at_ten = (await db.execute(
            select(Appointment).where(
                Appointment.appointment_time == time(10, 0),
                Appointment.status == AppointmentStatus.SCHEDULED,
            )
        )).scalars().all()
    assert [a.id for a in at_ten] == [ok[0].id]
