"""
Tests del orquestador de cascadas: desactivación de entidades y cambio de
horario con reprogramación.
"""

import asyncio
from datetime import date, time, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.core.exceptions import (
    CascadeAbortedException,
    CascadeTimeoutException,
    ValidationException,
)
from app.core.time_intervals import DayOfWeek
from app.models.appointment import Appointment, AppointmentStatus
from app.models.audit_log import AuditLog
from app.models.department import Department
from app.models.organization import EntityStatus
from app.models.user import User, UserRole
from app.models.working_hours import WorkingHoursEntity
from app.schemas.cascade import CascadeEntityType, ConflictPolicy, DeactivationRequest
from app.schemas.working_hours import WorkingHoursDay, WorkingHoursReschedulingUpdate
from app.services import cascade_service, working_hours_service
from app.services.notification_service import (
    APPOINTMENT_CANCELLED,
    APPOINTMENT_NEEDS_RESCHEDULING,
    APPOINTMENT_RESCHEDULED,
)


class _StallingSession:
    """Sesión de lectura que nunca responde (simula una base saturada)."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def execute(self, *args, **kwargs):
        await asyncio.sleep(10)

    async def get(self, *args, **kwargs):
        await asyncio.sleep(10)


def _stalling_factory():
    return _StallingSession()


def _deactivate(entity_type, entity_id, policy, **kwargs) -> DeactivationRequest:
    return DeactivationRequest(
        entity_type=entity_type,
        entity_id=entity_id,
        handle_conflicts=policy,
        **kwargs,
    )


@pytest.fixture
def closing_clinic(clinic_factory, test_complex):
    """Segunda clínica del complejo: la que se desactiva."""

    async def _create():
        return await clinic_factory("Clínica Anexo", complex_id=test_complex.id)

    return _create


# ── Desactivación de clínica ─────────────────────────

@pytest.mark.parametrize(
    ("policy", "template"),
    [
        (ConflictPolicy.NOTIFY, APPOINTMENT_NEEDS_RESCHEDULING),
        (ConflictPolicy.CANCEL, APPOINTMENT_CANCELLED),
    ],
)
async def test_every_future_appointment_gets_exactly_one_outcome(
    db_session, closing_clinic, test_doctor, patient_factory, future_date,
    make_appointment, notifier, session_factory, policy, template,
):
    clinic = await closing_clinic()
    appointments = [
        await make_appointment(clinic, test_doctor, await patient_factory(f"P{i}"), future_date, time(9 + i, 0))
        for i in range(3)
    ]
    untouched = await make_appointment(
        clinic, test_doctor, await patient_factory("Zoe"), future_date, time(14, 0),
        status=AppointmentStatus.CANCELLED,
    )

    result = await cascade_service.deactivate_entity(
        db_session,
        _deactivate(CascadeEntityType.CLINIC, clinic.id, policy),
        notifier=notifier,
        session_factory=session_factory,
    )

    assert (
        result.appointments_rescheduled
        + result.appointments_marked_for_rescheduling
        + result.appointments_cancelled
    ) == 3
    assert {c.appointment_id for c in result.rescheduled_appointments} == {a.id for a in appointments}
    assert result.notifications_sent == 3
    assert notifier.templates() == [template] * 3
    assert result.clinics_affected == 1

    await db_session.refresh(clinic)
    assert clinic.status == EntityStatus.INACTIVE
    assert clinic.deactivated_at is not None

    for appointment in appointments:
        await db_session.refresh(appointment)
        assert appointment.appointment_date == future_date
        if policy == ConflictPolicy.CANCEL:
            assert appointment.status == AppointmentStatus.CANCELLED
            assert appointment.cancellation_reason.startswith(f"lifecycle:clinic.inactive:{clinic.id}")
        else:
            assert appointment.status == AppointmentStatus.SCHEDULED
            assert appointment.marked_for_rescheduling_at is not None

    await db_session.refresh(untouched)
    assert untouched.cascade_key is None


async def test_reschedule_moves_to_the_doctor_home_clinic(
    db_session, closing_clinic, test_clinic, test_doctor, test_patient, future_date,
    make_appointment, notifier, session_factory,
):
    clinic = await closing_clinic()
    appointment = await make_appointment(clinic, test_doctor, test_patient, future_date, time(10, 0))

    result = await cascade_service.deactivate_entity(
        db_session,
        _deactivate(
            CascadeEntityType.CLINIC, clinic.id, ConflictPolicy.RESCHEDULE,
            rescheduling_reason="Cierre por remodelación",
        ),
        notifier=notifier,
        session_factory=session_factory,
    )

    assert result.appointments_rescheduled == 1
    change = result.rescheduled_appointments[0]
    assert (change.new_date, change.new_time) == (future_date, "10:00")

    await db_session.refresh(appointment)
    assert appointment.clinic_id == test_clinic.id
    assert appointment.rescheduling_reason == "Cierre por remodelación"
    assert appointment.rescheduled_at is not None
    assert notifier.templates() == [APPOINTMENT_RESCHEDULED]


async def test_reschedule_without_destination_marks(
    db_session, test_clinic, test_doctor, test_patient, future_date,
    make_appointment, notifier, session_factory,
):
    # La clínica base del doctor es la que se cierra
    appointment = await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(10, 0))

    result = await cascade_service.deactivate_entity(
        db_session,
        _deactivate(CascadeEntityType.CLINIC, test_clinic.id, ConflictPolicy.RESCHEDULE),
        notifier=notifier,
        session_factory=session_factory,
    )

    assert result.appointments_marked_for_rescheduling == 1
    await db_session.refresh(appointment)
    assert appointment.clinic_id == test_clinic.id
    assert appointment.marked_for_rescheduling_at is not None


async def test_rerunning_the_same_event_is_a_no_op(
    db_session, closing_clinic, test_doctor, test_patient, future_date,
    make_appointment, notifier, session_factory,
):
    clinic = await closing_clinic()
    await make_appointment(clinic, test_doctor, test_patient, future_date, time(10, 0))
    request = _deactivate(CascadeEntityType.CLINIC, clinic.id, ConflictPolicy.NOTIFY)

    first = await cascade_service.deactivate_entity(
        db_session, request, notifier=notifier, session_factory=session_factory
    )
    second = await cascade_service.deactivate_entity(
        db_session, request, notifier=notifier, session_factory=session_factory
    )

    assert first.appointments_marked_for_rescheduling == 1
    assert second.appointments_marked_for_rescheduling == 0
    assert second.rescheduled_appointments == []
    assert len(notifier.sent) == 1


async def test_notify_patients_false_sends_nothing(
    db_session, closing_clinic, test_doctor, test_patient, future_date,
    make_appointment, notifier, session_factory,
):
    clinic = await closing_clinic()
    await make_appointment(clinic, test_doctor, test_patient, future_date, time(10, 0))

    result = await cascade_service.deactivate_entity(
        db_session,
        _deactivate(CascadeEntityType.CLINIC, clinic.id, ConflictPolicy.CANCEL, notify_patients=False),
        notifier=notifier,
        session_factory=session_factory,
    )
    assert result.appointments_cancelled == 1
    assert result.notifications_sent == 0
    assert notifier.sent == []


async def test_rebook_clinic_inside_scope_is_rejected(
    db_session, closing_clinic, session_factory
):
    clinic = await closing_clinic()
    with pytest.raises(ValidationException) as exc_info:
        await cascade_service.deactivate_entity(
            db_session,
            _deactivate(
                CascadeEntityType.CLINIC, clinic.id, ConflictPolicy.RESCHEDULE,
                rebook_clinic_id=clinic.id,
            ),
            session_factory=session_factory,
        )
    assert exc_info.value.code == "REBOOK_CLINIC_IN_SCOPE"


# ── Transferencia de personal ────────────────────────

async def test_transferred_doctor_is_rebooked_at_the_new_clinic(
    db_session, test_complex, test_clinic, clinic_factory, test_doctor, test_patient,
    future_date, make_appointment, notifier, session_factory,
):
    # La clínica base del doctor es la que se cierra: sin transferencia se marcaría
    south = await clinic_factory("Clínica Sur", complex_id=test_complex.id)
    department = Department(id=uuid4(), complex_id=test_complex.id, name="Medicina General")
    receptionist = User(
        id=uuid4(), clinic_id=test_clinic.id, complex_id=test_complex.id,
        role=UserRole.RECEPTIONIST, first_name="Rosa", last_name="Mamani",
    )
    db_session.add_all([department, receptionist])
    await db_session.commit()
    appointment = await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(10, 0))

    result = await cascade_service.deactivate_entity(
        db_session,
        _deactivate(
            CascadeEntityType.CLINIC, test_clinic.id, ConflictPolicy.RESCHEDULE,
            transfer_clinic_id=south.id,
            transfer_department_id=department.id,
            transfer_doctors=True,
            transfer_staff=True,
        ),
        notifier=notifier,
        session_factory=session_factory,
    )

    assert (result.doctors_transferred, result.staff_transferred) == (1, 1)
    assert result.appointments_rescheduled == 1
    assert notifier.templates() == [APPOINTMENT_RESCHEDULED]

    await db_session.refresh(appointment)
    assert appointment.clinic_id == south.id
    assert (appointment.appointment_date, appointment.appointment_time) == (future_date, time(10, 0))

    for user in (test_doctor, receptionist):
        await db_session.refresh(user)
        assert user.clinic_id == south.id
        assert user.department_id == department.id

    audit = (await db_session.execute(
        select(AuditLog).where(AuditLog.action == "transfer_staff")
    )).scalar_one()
    assert audit.entity_id == str(south.id)
    assert audit.new_data["doctor_ids"] == [str(test_doctor.id)]
    assert audit.new_data["staff_ids"] == [str(receptionist.id)]
    assert audit.old_data == {str(test_doctor.id): str(test_clinic.id), str(receptionist.id): str(test_clinic.id)}


async def test_only_listed_doctors_are_transferred(
    db_session, test_complex, test_clinic, clinic_factory, test_doctor, doctor_factory,
    session_factory,
):
    south = await clinic_factory("Clínica Sur", complex_id=test_complex.id)
    staying = await doctor_factory(test_clinic, "Jorge")

    result = await cascade_service.deactivate_entity(
        db_session,
        _deactivate(
            CascadeEntityType.CLINIC, test_clinic.id, ConflictPolicy.NOTIFY,
            transfer_clinic_id=south.id,
            transfer_doctors=True,
            doctor_ids=[test_doctor.id],
        ),
        session_factory=session_factory,
    )

    assert result.doctors_transferred == 1
    await db_session.refresh(test_doctor)
    await db_session.refresh(staying)
    assert test_doctor.clinic_id == south.id
    assert staying.clinic_id == test_clinic.id


@pytest.mark.parametrize("target", ["scope", "unknown_user"])
async def test_invalid_staff_transfer_writes_nothing(
    db_session, test_complex, test_clinic, clinic_factory, test_doctor, session_factory, target,
):
    south = await clinic_factory("Clínica Sur", complex_id=test_complex.id)
    options = (
        {"transfer_clinic_id": test_clinic.id}
        if target == "scope"
        else {"transfer_clinic_id": south.id, "doctor_ids": [uuid4()]}
    )

    with pytest.raises(ValidationException) as exc_info:
        await cascade_service.deactivate_entity(
            db_session,
            _deactivate(
                CascadeEntityType.CLINIC, test_clinic.id, ConflictPolicy.NOTIFY,
                transfer_doctors=True, **options,
            ),
            session_factory=session_factory,
        )

    expected = "TRANSFER_CLINIC_IN_SCOPE" if target == "scope" else "STAFF_NOT_IN_SCOPE"
    assert exc_info.value.code == expected
    await db_session.refresh(test_clinic)
    await db_session.refresh(test_doctor)
    assert test_clinic.status == EntityStatus.ACTIVE
    assert test_doctor.clinic_id == test_clinic.id


def test_staff_transfer_needs_a_target_clinic():
    with pytest.raises(ValueError):
        _deactivate(CascadeEntityType.CLINIC, uuid4(), ConflictPolicy.NOTIFY, transfer_doctors=True)
    with pytest.raises(ValueError):
        _deactivate(
            CascadeEntityType.COMPLEX, uuid4(), ConflictPolicy.NOTIFY,
            target_complex_id=uuid4(), transfer_clinic_id=uuid4(), transfer_staff=True,
        )


def test_active_is_not_a_deactivation_status():
    with pytest.raises(ValueError):
        _deactivate(CascadeEntityType.CLINIC, uuid4(), ConflictPolicy.NOTIFY, status=EntityStatus.ACTIVE)


# ── Complejos y departamentos ────────────────────────

async def test_complex_deactivation_reaches_every_clinic(
    db_session, test_complex, test_clinic, closing_clinic, test_doctor, test_patient,
    patient_factory, future_date, make_appointment, notifier, session_factory,
):
    annex = await closing_clinic()
    await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(9, 0))
    await make_appointment(annex, test_doctor, await patient_factory("Marta"), future_date, time(11, 0))

    result = await cascade_service.deactivate_entity(
        db_session,
        _deactivate(
            CascadeEntityType.COMPLEX, test_complex.id, ConflictPolicy.NOTIFY,
            status=EntityStatus.SUSPENDED,
        ),
        notifier=notifier,
        session_factory=session_factory,
    )

    assert result.clinics_affected == 2
    assert result.appointments_marked_for_rescheduling == 2
    for entity in (test_complex, test_clinic, annex):
        await db_session.refresh(entity)
        assert entity.status == EntityStatus.SUSPENDED


async def test_department_deactivation_scopes_by_department(
    db_session, test_complex, clinic_factory, test_clinic, test_doctor, test_patient,
    future_date, make_appointment, notifier, session_factory,
):
    department = Department(id=uuid4(), complex_id=test_complex.id, name="Pediatría")
    db_session.add(department)
    await db_session.commit()
    pediatrics = await clinic_factory(
        "Clínica Pediátrica", complex_id=test_complex.id, department_id=department.id
    )
    inside = await make_appointment(pediatrics, test_doctor, test_patient, future_date, time(9, 0))
    outside = await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(11, 0))

    result = await cascade_service.deactivate_entity(
        db_session,
        _deactivate(CascadeEntityType.DEPARTMENT, department.id, ConflictPolicy.CANCEL),
        notifier=notifier,
        session_factory=session_factory,
    )

    assert result.clinics_affected == 1
    assert result.appointments_cancelled == 1
    await db_session.refresh(inside)
    await db_session.refresh(outside)
    await db_session.refresh(test_clinic)
    assert inside.status == AppointmentStatus.CANCELLED
    assert outside.status == AppointmentStatus.SCHEDULED
    assert test_clinic.status == EntityStatus.ACTIVE


# ── Plazo y abortos ──────────────────────────────────

async def test_timeout_writes_nothing(
    db_session, closing_clinic, test_doctor, test_patient, future_date, make_appointment, notifier
):
    clinic = await closing_clinic()
    appointment = await make_appointment(clinic, test_doctor, test_patient, future_date, time(10, 0))

    with pytest.raises(CascadeTimeoutException) as exc_info:
        await cascade_service.deactivate_entity(
            db_session,
            _deactivate(
                CascadeEntityType.CLINIC, clinic.id, ConflictPolicy.RESCHEDULE, timeout_seconds=0.05
            ),
            notifier=notifier,
            session_factory=_stalling_factory,
        )

    assert exc_info.value.status_code == 504
    assert exc_info.value.processed == []
    assert exc_info.value.pending == [appointment.id]
    assert notifier.sent == []

    await db_session.refresh(clinic)
    await db_session.refresh(appointment)
    assert clinic.status == EntityStatus.ACTIVE
    assert appointment.cascade_key is None


# ── Cambio de horario ────────────────────────────────

def _hours(opening: str, closing: str) -> list[WorkingHoursDay]:
    return [
        WorkingHoursDay(day_of_week=day, opening_time=opening, closing_time=closing)
        for day in DayOfWeek
    ]


async def test_shorter_hours_reschedule_inside_new_window(
    db_session, test_clinic, test_doctor, test_patient, patient_factory, future_date,
    make_appointment, notifier, session_factory,
):
    late = await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(15, 0))
    early = await make_appointment(test_clinic, test_doctor, await patient_factory("Marta"), future_date, time(9, 0))

    result = await cascade_service.update_working_hours_with_rescheduling(
        db_session,
        test_clinic.id,
        WorkingHoursReschedulingUpdate(days=_hours("08:00", "12:00"), handle_conflicts=ConflictPolicy.RESCHEDULE),
        notifier=notifier,
        session_factory=session_factory,
    )

    assert result.appointments_rescheduled == 1
    assert len(result.working_hours) == 7
    await db_session.refresh(late)
    await db_session.refresh(early)
    assert (late.appointment_date, late.appointment_time) == (future_date, time(11, 30))
    assert early.appointment_time == time(9, 0)
    assert early.cascade_key is None


async def test_shorter_hours_with_notify_marks(
    db_session, test_clinic, test_doctor, test_patient, future_date,
    make_appointment, notifier, session_factory,
):
    late = await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(15, 0))

    result = await cascade_service.update_working_hours_with_rescheduling(
        db_session,
        test_clinic.id,
        WorkingHoursReschedulingUpdate(days=_hours("08:00", "12:00")),
        notifier=notifier,
        session_factory=session_factory,
    )

    assert result.appointments_marked_for_rescheduling == 1
    await db_session.refresh(late)
    assert late.appointment_time == time(15, 0)
    assert late.marked_for_rescheduling_at is not None
    hours = await working_hours_service.resolve(
        db_session, WorkingHoursEntity.CLINIC, test_clinic.id, DayOfWeek.MONDAY
    )
    assert hours.intervals[0].end == 12 * 60


async def test_storage_error_rolls_back_everything(
    db_session, test_clinic, test_doctor, test_patient, future_date,
    make_appointment, notifier, session_factory, monkeypatch,
):
    late = await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(15, 0))

    async def _broken_replace(*args, **kwargs):
        raise OperationalError("DELETE FROM working_hours", {}, Exception("disk I/O error"))

    monkeypatch.setattr(working_hours_service, "replace_working_hours", _broken_replace)

    with pytest.raises(CascadeAbortedException) as exc_info:
        await cascade_service.update_working_hours_with_rescheduling(
            db_session,
            test_clinic.id,
            WorkingHoursReschedulingUpdate(days=_hours("08:00", "12:00"), handle_conflicts=ConflictPolicy.CANCEL),
            notifier=notifier,
            session_factory=session_factory,
        )

    assert exc_info.value.committed == []
    assert notifier.sent == []
    stored = (await db_session.execute(select(Appointment).where(Appointment.id == late.id))).scalar_one()
    await db_session.refresh(stored)
    assert stored.status == AppointmentStatus.SCHEDULED
    assert stored.cascade_key is None


async def test_past_appointments_are_not_touched(
    db_session, closing_clinic, test_doctor, test_patient, make_appointment, notifier, session_factory,
):
    clinic = await closing_clinic()
    past = await make_appointment(
        clinic, test_doctor, test_patient, date.today() - timedelta(days=3), time(10, 0)
    )

    result = await cascade_service.deactivate_entity(
        db_session,
        _deactivate(CascadeEntityType.CLINIC, clinic.id, ConflictPolicy.CANCEL),
        notifier=notifier,
        session_factory=session_factory,
    )
    assert result.appointments_cancelled == 0
    await db_session.refresh(past)
    assert past.status == AppointmentStatus.SCHEDULED


async def test_in_progress_appointments_are_left_to_finish(
    db_session, closing_clinic, test_doctor, test_patient, future_date,
    make_appointment, notifier, session_factory,
):
    clinic = await closing_clinic()
    ongoing = await make_appointment(
        clinic, test_doctor, test_patient, future_date, time(10, 0),
        status=AppointmentStatus.IN_PROGRESS,
    )

    result = await cascade_service.deactivate_entity(
        db_session,
        _deactivate(CascadeEntityType.CLINIC, clinic.id, ConflictPolicy.CANCEL),
        notifier=notifier,
        session_factory=session_factory,
    )

    assert result.appointments_cancelled == 0
    assert notifier.sent == []
    await db_session.refresh(ongoing)
    assert ongoing.status == AppointmentStatus.IN_PROGRESS
    assert ongoing.cascade_key is None
