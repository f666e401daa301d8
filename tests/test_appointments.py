"""
Tests del servicio de citas: reserva, state machine y transferencias.
"""

from datetime import date, time, timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select

from app.core.exceptions import (
    ConflictingAppointmentException,
    InvalidTransitionException,
    ValidationException,
)
from app.models.appointment import Appointment, AppointmentStatus
from app.models.audit_log import AuditLog
from app.schemas.appointment import (
    AppointmentBulkCreate,
    AppointmentCancel,
    AppointmentComplete,
    AppointmentCreate,
    AppointmentDoctorTransfer,
    AppointmentReschedule,
    AppointmentStatusChange,
)
from app.services import appointment_service
from app.services.notification_service import (
    APPOINTMENT_CANCELLED,
    APPOINTMENT_RESCHEDULED,
    APPOINTMENT_SCHEDULED,
)


@pytest.fixture
def booking(test_clinic, test_doctor, test_patient, test_service):
    """Construye un AppointmentCreate con los datos base."""

    def _build(on: date, at: time, **overrides) -> AppointmentCreate:
        payload = {
            "patient_id": test_patient.id,
            "doctor_id": test_doctor.id,
            "clinic_id": test_clinic.id,
            "service_id": test_service.id,
            "appointment_date": on,
            "appointment_time": at,
        }
        payload.update(overrides)
        return AppointmentCreate(**payload)

    return _build


# ── Reserva ──────────────────────────────────────────

async def test_create_appointment(db_session, booking, future_date, notifier):
    appointment = await appointment_service.create_appointment(
        db_session, booking(future_date, time(9, 0)), notifier=notifier
    )

    assert appointment.status == AppointmentStatus.SCHEDULED
    assert appointment.duration_minutes == 30
    assert appointment.end_time == "09:30"
    assert notifier.templates() == [APPOINTMENT_SCHEDULED]

    audit_count = (await db_session.execute(
        select(func.count(AuditLog.id)).where(
            AuditLog.entity_id == str(appointment.id),
            AuditLog.action == "create",
        )
    )).scalar()
    assert audit_count == 1


async def test_doctor_conflict_returns_suggestions(
    db_session, booking, test_clinic, test_doctor, patient_factory, future_date, make_appointment
):
    other_patient = await patient_factory("Marta")
    existing = await make_appointment(test_clinic, test_doctor, other_patient, future_date, time(10, 0))

    with pytest.raises(ConflictingAppointmentException) as exc_info:
        await appointment_service.create_appointment(db_session, booking(future_date, time(10, 15)))

    detail = exc_info.value.detail
    assert exc_info.value.status_code == 409
    assert detail["code"] == "CONFLICTING_APPOINTMENT"
    assert detail["party"] == "doctor"
    assert detail["conflicting_appointment_id"] == str(existing.id)
    assert [s["time"] for s in detail["suggested_times"]] == ["10:30", "09:30", "11:00"]


async def test_past_date_is_rejected(db_session, booking):
    with pytest.raises(ValidationException) as exc_info:
        await appointment_service.create_appointment(
            db_session, booking(date.today() - timedelta(days=2), time(10, 0))
        )
    assert exc_info.value.code == "PAST_DATE"


async def test_outside_working_hours_is_rejected(db_session, booking, future_date):
    with pytest.raises(ValidationException) as exc_info:
        await appointment_service.create_appointment(db_session, booking(future_date, time(15, 45)))
    assert exc_info.value.code == "OUTSIDE_WORKING_HOURS"


async def test_spanning_midnight_is_rejected(db_session, booking, future_date):
    with pytest.raises(ValidationException) as exc_info:
        await appointment_service.create_appointment(
            db_session, booking(future_date, time(23, 45), duration_minutes=30)
        )
    assert exc_info.value.code == "SPANS_MIDNIGHT"


async def test_bulk_skips_conflicts(db_session, booking, future_date, notifier):
    data = AppointmentBulkCreate(
        items=[booking(future_date, time(9, 0)), booking(future_date, time(9, 0))],
        skip_conflicts=True,
        auto_confirm=True,
    )
    result = await appointment_service.bulk_create_appointments(db_session, data, notifier=notifier)

    assert len(result.created) == 1
    assert result.created[0].status == AppointmentStatus.CONFIRMED
    assert [(s.index, s.party) for s in result.skipped] == [(1, "doctor")]
    assert notifier.templates() == [APPOINTMENT_SCHEDULED]


async def test_bulk_aborts_on_conflict_without_skip(db_session, booking, future_date):
    data = AppointmentBulkCreate(
        items=[booking(future_date, time(9, 0)), booking(future_date, time(9, 15))],
    )
    with pytest.raises(ConflictingAppointmentException):
        await appointment_service.bulk_create_appointments(db_session, data)


# ── Reprogramación ───────────────────────────────────

async def test_reschedule_moves_the_appointment(
    db_session, test_clinic, test_doctor, test_patient, future_date, make_appointment, notifier
):
    appointment = await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(9, 0))

    updated = await appointment_service.reschedule_appointment(
        db_session,
        appointment.id,
        AppointmentReschedule(new_date=future_date, new_time=time(11, 0), reason="Pedido del paciente"),
        notifier=notifier,
    )
    assert updated.appointment_time == time(11, 0)
    assert updated.status == AppointmentStatus.SCHEDULED
    assert updated.rescheduling_reason == "Pedido del paciente"
    assert updated.rescheduled_at is not None
    assert notifier.templates() == [APPOINTMENT_RESCHEDULED]


async def test_reschedule_to_same_slot_changes_nothing(
    db_session, test_clinic, test_doctor, test_patient, future_date, make_appointment, notifier
):
    appointment = await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(9, 0))
    before = appointment.updated_at

    updated = await appointment_service.reschedule_appointment(
        db_session,
        appointment.id,
        AppointmentReschedule(new_date=future_date, new_time=time(9, 0)),
        notifier=notifier,
    )
    assert updated.appointment_date == future_date
    assert updated.appointment_time == time(9, 0)
    assert updated.rescheduled_at is None
    assert updated.updated_at != before
    assert notifier.sent == []


async def test_reschedule_ignores_its_own_slot(
    db_session, test_clinic, test_doctor, test_patient, future_date, make_appointment
):
    appointment = await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(9, 0))

    updated = await appointment_service.reschedule_appointment(
        db_session,
        appointment.id,
        AppointmentReschedule(new_date=future_date, new_time=time(9, 15)),
    )
    assert updated.appointment_time == time(9, 15)


async def test_reschedule_completed_is_invalid(
    db_session, test_clinic, test_doctor, test_patient, future_date, make_appointment
):
    appointment = await make_appointment(
        test_clinic, test_doctor, test_patient, future_date, time(9, 0),
        status=AppointmentStatus.COMPLETED,
    )
    with pytest.raises(InvalidTransitionException):
        await appointment_service.reschedule_appointment(
            db_session,
            appointment.id,
            AppointmentReschedule(new_date=future_date, new_time=time(11, 0)),
        )


# ── Cancelación y atención ───────────────────────────

async def test_cancel_never_creates_a_new_appointment(
    db_session, test_clinic, test_doctor, test_patient, future_date, make_appointment, notifier
):
    appointment = await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(9, 0))

    cancelled = await appointment_service.cancel_appointment(
        db_session,
        appointment.id,
        AppointmentCancel(reason="  Viaje imprevisto ", allow_reschedule=True),
        notifier=notifier,
    )
    total = (await db_session.execute(select(func.count(Appointment.id)))).scalar()

    assert cancelled.status == AppointmentStatus.CANCELLED
    assert cancelled.cancellation_reason == "Viaje imprevisto"
    assert cancelled.reschedule_requested is True
    assert total == 1
    assert notifier.templates() == [APPOINTMENT_CANCELLED]


async def test_cancel_requires_reason():
    with pytest.raises(ValidationError):
        AppointmentCancel(reason="   ")


async def test_cancel_terminal_is_invalid(
    db_session, test_clinic, test_doctor, test_patient, future_date, make_appointment
):
    appointment = await make_appointment(
        test_clinic, test_doctor, test_patient, future_date, time(9, 0),
        status=AppointmentStatus.NO_SHOW,
    )
    with pytest.raises(InvalidTransitionException):
        await appointment_service.cancel_appointment(
            db_session, appointment.id, AppointmentCancel(reason="Duplicada")
        )


async def test_cancellation_is_committed_before_notifying(
    db_session, test_clinic, test_doctor, test_patient, future_date, make_appointment, committed_status
):
    appointment = await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(9, 0))
    seen = []

    class _CheckingNotifier:
        def enqueue(self, recipient_id, template, variables):
            seen.append((template, committed_status(variables["appointment_id"])))

    await appointment_service.cancel_appointment(
        db_session,
        appointment.id,
        AppointmentCancel(reason="Viaje imprevisto"),
        notifier=_CheckingNotifier(),
    )

    assert seen == [(APPOINTMENT_CANCELLED, AppointmentStatus.CANCELLED.name)]


async def test_full_lifecycle_to_completed(
    db_session, test_clinic, test_doctor, test_patient, future_date, make_appointment, committed_status
):
    appointment = await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(9, 0))

    for status in (AppointmentStatus.CONFIRMED, AppointmentStatus.IN_PROGRESS):
        appointment = await appointment_service.change_status(
            db_session, appointment.id, AppointmentStatusChange(status=status)
        )
        assert committed_status(appointment.id) == status.name

    with pytest.raises(ValidationException) as exc_info:
        await appointment_service.complete_appointment(
            db_session, appointment.id, AppointmentComplete(doctor_notes="corta")
        )
    assert exc_info.value.code == "DOCTOR_NOTES_TOO_SHORT"

    completed = await appointment_service.complete_appointment(
        db_session,
        appointment.id,
        AppointmentComplete(
            doctor_notes="Paciente estable, control en un mes",
            follow_up_required=True,
            follow_up_notes="Control mensual",
        ),
    )
    assert completed.status == AppointmentStatus.COMPLETED
    assert completed.completed_at is not None
    assert completed.follow_up_notes == "Control mensual"
    assert committed_status(completed.id) == AppointmentStatus.COMPLETED.name


async def test_complete_requires_in_progress(
    db_session, test_clinic, test_doctor, test_patient, future_date, make_appointment
):
    appointment = await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(9, 0))
    with pytest.raises(InvalidTransitionException):
        await appointment_service.complete_appointment(
            db_session, appointment.id, AppointmentComplete(doctor_notes="Notas suficientes aquí")
        )


def test_status_change_rejects_cancel_and_complete():
    for status in (AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED):
        with pytest.raises(ValidationError):
            AppointmentStatusChange(status=status)


# ── Transferencia de doctor ──────────────────────────

async def test_transfer_to_available_doctor(
    db_session, test_clinic, test_doctor, doctor_factory, test_patient, future_date, make_appointment
):
    appointment = await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(9, 0))
    new_doctor = await doctor_factory(test_clinic, "Berta")

    transferred = await appointment_service.transfer_doctor(
        db_session, appointment.id, AppointmentDoctorTransfer(new_doctor_id=new_doctor.id)
    )
    assert transferred.doctor_id == new_doctor.id
    assert transferred.previous_doctor_id == test_doctor.id
    assert transferred.transferred_at is not None


async def test_transfer_to_busy_doctor_conflicts(
    db_session, test_clinic, test_doctor, doctor_factory, test_patient, patient_factory,
    future_date, make_appointment,
):
    appointment = await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(9, 0))
    new_doctor = await doctor_factory(test_clinic, "Berta")
    other_patient = await patient_factory("Marta")
    await make_appointment(test_clinic, new_doctor, other_patient, future_date, time(9, 0))

    with pytest.raises(ConflictingAppointmentException) as exc_info:
        await appointment_service.transfer_doctor(
            db_session, appointment.id, AppointmentDoctorTransfer(new_doctor_id=new_doctor.id)
        )
    assert exc_info.value.party == "doctor"
