"""
Servicio de citas: reserva, state machine, reprogramación, cancelación,
atención y transferencia de doctor.

Toda operación que cambia fecha, hora o doctor verifica conflictos y escribe
dentro de `calendar_lock` y hace commit antes de liberarlo.
"""

import logging
import math
from datetime import date, datetime, time, timezone
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.exceptions import (
    ConflictingAppointmentException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from app.core.locks import calendar_lock
from app.core.time_intervals import (
    day_of_week,
    interval_for,
    local_now,
    spans_midnight,
    to_minutes,
)
from app.models.appointment import (
    Appointment,
    AppointmentStatus,
    MOVABLE_STATUSES,
    is_valid_transition,
)
from app.models.clinic import Clinic
from app.models.patient import Patient
from app.models.service import Service
from app.models.user import User
from app.models.working_hours import WorkingHoursEntity
from app.schemas.appointment import (
    AppointmentBulkCreate,
    AppointmentBulkResult,
    AppointmentCancel,
    AppointmentComplete,
    AppointmentCreate,
    AppointmentDoctorTransfer,
    AppointmentListResponse,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatusChange,
    BulkSkipped,
)
from app.services import availability_service, conflict_service, notification_service
from app.services.audit_service import appointment_snapshot, log_action
from app.services.conflict_service import Conflict, ConflictParty
from app.services.notification_service import Notifier
from app.services.working_hours_service import resolve

logger = logging.getLogger(__name__)
settings = get_settings()


# ── Helpers ──────────────────────────────────────────

def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _get_appointment(db: AsyncSession, appointment_id: UUID) -> Appointment:
    result = await db.execute(
        select(Appointment).where(
            Appointment.id == appointment_id,
            Appointment.deleted_at.is_(None),
        )
    )
    appointment = result.scalar_one_or_none()
    if not appointment:
        raise NotFoundException("appointment", "Cita no encontrada")
    return appointment


async def _get_active_doctor(db: AsyncSession, doctor_id: UUID) -> User:
    doctor = await db.get(User, doctor_id)
    if doctor is None or not doctor.is_active:
        raise NotFoundException("doctor", "Doctor no encontrado o inactivo")
    return doctor


def ensure_transition(appointment: Appointment, new_status: AppointmentStatus) -> None:
    if not is_valid_transition(appointment.status, new_status):
        raise InvalidTransitionException(appointment.status.value, new_status.value)


def ensure_movable(appointment: Appointment, action: str) -> None:
    """Reprogramar y transferir solo desde scheduled/confirmed (el estado se mantiene)."""
    if appointment.status not in MOVABLE_STATUSES:
        raise InvalidTransitionException(appointment.status.value, action)


def _validate_slot(target_date: date, start_time: time, duration_minutes: int) -> None:
    if spans_midnight(start_time, duration_minutes):
        raise ValidationException(
            "La cita no puede pasar de medianoche",
            code="SPANS_MIDNIGHT",
        )
    now = local_now(settings.CLINIC_TIMEZONE)
    if datetime.combine(target_date, start_time) < now.replace(second=0, microsecond=0):
        raise ValidationException(
            "No se puede agendar en una fecha u hora pasada",
            code="PAST_DATE",
            date=target_date.isoformat(),
            time=start_time.strftime("%H:%M"),
        )


async def _ensure_within_working_hours(
    db: AsyncSession,
    clinic_id: UUID,
    target_date: date,
    start_time: time,
    duration_minutes: int,
) -> None:
    schedule = await resolve(db, WorkingHoursEntity.CLINIC, clinic_id, day_of_week(target_date))
    if schedule is None or not schedule.fits(interval_for(start_time, duration_minutes)):
        raise ValidationException(
            "El horario está fuera del horario de atención de la clínica",
            code="OUTSIDE_WORKING_HOURS",
            date=target_date.isoformat(),
            time=start_time.strftime("%H:%M"),
        )


async def _raise_conflict(
    db: AsyncSession,
    conflict: Conflict,
    *,
    doctor_id: UUID,
    clinic_id: UUID,
    target_date: date,
    start_time: time,
    duration_minutes: int,
    exclude_id: UUID | None = None,
) -> None:
    suggestions = await availability_service.suggest_times(
        db,
        doctor_id=doctor_id,
        clinic_id=clinic_id,
        target_date=target_date,
        requested_time=start_time,
        duration_minutes=duration_minutes,
        exclude_id=exclude_id,
    )
    logger.info(
        f"Conflicto ({conflict.party.value}) con cita {conflict.appointment_id} "
        f"para {target_date} {start_time.strftime('%H:%M')}"
    )
    raise ConflictingAppointmentException(
        conflict.appointment_id,
        conflict.party.value,
        [s.model_dump(mode="json") for s in suggestions],
    )


def _same_slot(appointment: Appointment, new_date: date, new_time: time) -> bool:
    return (
        appointment.appointment_date == new_date
        and to_minutes(appointment.appointment_time) == to_minutes(new_time)
    )


# ── Mutaciones de la state machine ───────────────────
# Sin I/O: las usan tanto las operaciones individuales como las cascadas.

def apply_reschedule(
    appointment: Appointment,
    new_date: date,
    new_time: time,
    *,
    reason: str | None,
    now: datetime,
    clinic_id: UUID | None = None,
) -> None:
    ensure_movable(appointment, "reschedule")
    appointment.appointment_date = new_date
    appointment.appointment_time = new_time
    if clinic_id is not None:
        appointment.clinic_id = clinic_id
    appointment.rescheduling_reason = reason
    appointment.rescheduled_at = now
    appointment.marked_for_rescheduling_at = None
    appointment.marked_by = None


def apply_mark_for_rescheduling(
    appointment: Appointment,
    *,
    reason: str | None,
    actor_id: UUID | None,
    now: datetime,
) -> None:
    ensure_movable(appointment, "mark_for_rescheduling")
    appointment.rescheduling_reason = reason
    appointment.marked_for_rescheduling_at = now
    appointment.marked_by = actor_id


def apply_cancel(
    appointment: Appointment,
    *,
    reason: str,
    actor_id: UUID | None,
    now: datetime,
    reschedule_requested: bool = False,
) -> None:
    ensure_transition(appointment, AppointmentStatus.CANCELLED)
    appointment.status = AppointmentStatus.CANCELLED
    appointment.cancellation_reason = reason
    appointment.cancelled_at = now
    appointment.cancelled_by = actor_id
    appointment.reschedule_requested = reschedule_requested


# ── Reserva ──────────────────────────────────────────

async def _prepare_booking(db: AsyncSession, data: AppointmentCreate) -> int:
    """Valida referencias, fecha y horario de atención. Retorna la duración efectiva."""
    patient = await db.get(Patient, data.patient_id)
    if patient is None or not patient.is_active:
        raise NotFoundException("patient", "Paciente no encontrado")
    await _get_active_doctor(db, data.doctor_id)

    clinic = await db.get(Clinic, data.clinic_id)
    if clinic is None or clinic.deleted_at is not None:
        raise NotFoundException("clinic", "Clínica no encontrada")
    if not clinic.is_active:
        raise ValidationException(
            "La clínica no está activa", code="CLINIC_INACTIVE", clinic_id=clinic.id
        )

    service = await db.get(Service, data.service_id)
    if service is None or not service.is_active:
        raise NotFoundException("service", "Servicio no encontrado")

    duration = data.duration_minutes or service.duration_minutes or clinic.session_duration
    _validate_slot(data.appointment_date, data.appointment_time, duration)
    await _ensure_within_working_hours(
        db, clinic.id, data.appointment_date, data.appointment_time, duration
    )
    return duration


async def _insert(
    db: AsyncSession,
    data: AppointmentCreate,
    duration: int,
    *,
    status: AppointmentStatus,
    actor_id: UUID | None,
) -> Appointment:
    appointment = Appointment(
        clinic_id=data.clinic_id,
        patient_id=data.patient_id,
        doctor_id=data.doctor_id,
        service_id=data.service_id,
        department_id=data.department_id,
        appointment_date=data.appointment_date,
        appointment_time=data.appointment_time,
        duration_minutes=duration,
        status=status,
        urgency=data.urgency,
        notes=data.notes,
        created_by=actor_id,
    )
    db.add(appointment)
    await db.flush()

    await log_action(
        db,
        clinic_id=appointment.clinic_id,
        user_id=actor_id,
        entity="appointment",
        entity_id=str(appointment.id),
        action="create",
        new_data=appointment_snapshot(appointment),
    )
    return appointment


async def create_appointment(
    db: AsyncSession,
    data: AppointmentCreate,
    *,
    actor_id: UUID | None = None,
    notifier: Notifier | None = None,
) -> Appointment:
    """Crea una cita validando horario de atención y conflictos (doctor → paciente → clínica)."""
    duration = await _prepare_booking(db, data)

    async with calendar_lock(db, [(data.doctor_id, data.appointment_date)]):
        conflict = await conflict_service.find_conflict(
            db,
            doctor_id=data.doctor_id,
            patient_id=data.patient_id,
            clinic_id=data.clinic_id,
            target_date=data.appointment_date,
            start_time=data.appointment_time,
            duration_minutes=duration,
        )
        if conflict:
            await _raise_conflict(
                db, conflict,
                doctor_id=data.doctor_id,
                clinic_id=data.clinic_id,
                target_date=data.appointment_date,
                start_time=data.appointment_time,
                duration_minutes=duration,
            )

        appointment = await _insert(
            db, data, duration, status=AppointmentStatus.SCHEDULED, actor_id=actor_id
        )
        await db.commit()

    await db.refresh(appointment)
    logger.info(f"Cita {appointment.id} creada para {appointment.appointment_date}")
    notification_service.dispatch(notifier, [
        notification_service.appointment_request(
            appointment, notification_service.APPOINTMENT_SCHEDULED
        )
    ])
    return appointment


async def bulk_create_appointments(
    db: AsyncSession,
    data: AppointmentBulkCreate,
    *,
    actor_id: UUID | None = None,
    notifier: Notifier | None = None,
) -> AppointmentBulkResult:
    """
    Crea varias citas en una sola transacción. Con `skip_conflicts` las citas
    en conflicto se omiten y se informan; si no, el primer conflicto aborta el lote.
    Los errores de validación siempre abortan el lote.
    """
    status = AppointmentStatus.CONFIRMED if data.auto_confirm else AppointmentStatus.SCHEDULED
    durations = [await _prepare_booking(db, item) for item in data.items]

    created: list[Appointment] = []
    skipped: list[BulkSkipped] = []
    keys = [(item.doctor_id, item.appointment_date) for item in data.items]

    async with calendar_lock(db, keys):
        for index, (item, duration) in enumerate(zip(data.items, durations)):
            conflict = await conflict_service.find_conflict(
                db,
                doctor_id=item.doctor_id,
                patient_id=item.patient_id,
                clinic_id=item.clinic_id,
                target_date=item.appointment_date,
                start_time=item.appointment_time,
                duration_minutes=duration,
            )
            if conflict:
                if not data.skip_conflicts:
                    await _raise_conflict(
                        db, conflict,
                        doctor_id=item.doctor_id,
                        clinic_id=item.clinic_id,
                        target_date=item.appointment_date,
                        start_time=item.appointment_time,
                        duration_minutes=duration,
                    )
                skipped.append(BulkSkipped(
                    index=index,
                    code="CONFLICTING_APPOINTMENT",
                    conflicting_appointment_id=conflict.appointment_id,
                    party=conflict.party.value,
                ))
                continue
            created.append(
                await _insert(db, item, duration, status=status, actor_id=actor_id)
            )
        await db.commit()

    for appointment in created:
        await db.refresh(appointment)
    logger.info(f"Lote de citas: {len(created)} creadas, {len(skipped)} omitidas")
    notification_service.dispatch(notifier, [
        notification_service.appointment_request(a, notification_service.APPOINTMENT_SCHEDULED)
        for a in created
    ])
    return AppointmentBulkResult(
        created=[AppointmentResponse.model_validate(a) for a in created],
        skipped=skipped,
    )


# ── Consultas ────────────────────────────────────────

async def get_appointment(db: AsyncSession, appointment_id: UUID) -> Appointment:
    return await _get_appointment(db, appointment_id)


async def list_appointments(
    db: AsyncSession,
    *,
    page: int = 1,
    size: int = 20,
    clinic_id: UUID | None = None,
    doctor_id: UUID | None = None,
    patient_id: UUID | None = None,
    status: AppointmentStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    marked_only: bool = False,
) -> AppointmentListResponse:
    """Lista citas con paginación y filtros."""
    query = select(Appointment).where(Appointment.deleted_at.is_(None))

    # Filtros
    if clinic_id:
        query = query.where(Appointment.clinic_id == clinic_id)
    if doctor_id:
        query = query.where(Appointment.doctor_id == doctor_id)
    if patient_id:
        query = query.where(Appointment.patient_id == patient_id)
    if status:
        query = query.where(Appointment.status == status)
    if date_from:
        query = query.where(Appointment.appointment_date >= date_from)
    if date_to:
        query = query.where(Appointment.appointment_date <= date_to)
    if marked_only:
        query = query.where(Appointment.marked_for_rescheduling_at.is_not(None))

    # Count total
    count_query = select(func.count()).select_from(
        query.with_only_columns(Appointment.id).subquery()
    )
    total = (await db.execute(count_query)).scalar() or 0

    # Paginación y orden
    offset = (page - 1) * size
    query = query.order_by(Appointment.appointment_date, Appointment.appointment_time)
    query = query.offset(offset).limit(size)

    result = await db.execute(query)
    appointments = result.scalars().all()

    return AppointmentListResponse(
        items=[AppointmentResponse.model_validate(a) for a in appointments],
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total > 0 else 0,
    )


# ── Transiciones ─────────────────────────────────────

async def reschedule_appointment(
    db: AsyncSession,
    appointment_id: UUID,
    data: AppointmentReschedule,
    *,
    actor_id: UUID | None = None,
    notifier: Notifier | None = None,
) -> Appointment:
    """
    Mueve la cita a otra fecha/hora (mismo doctor y clínica). Si la nueva
    posición choca, el error incluye horarios alternativos.
    """
    appointment = await _get_appointment(db, appointment_id)
    ensure_movable(appointment, "reschedule")

    # Reprogramar a la misma fecha/hora no cambia nada salvo updated_at
    if _same_slot(appointment, data.new_date, data.new_time):
        appointment.updated_at = _now()
        await db.flush()
        await db.commit()
        return appointment

    duration = appointment.duration_minutes
    _validate_slot(data.new_date, data.new_time, duration)
    await _ensure_within_working_hours(
        db, appointment.clinic_id, data.new_date, data.new_time, duration
    )

    async with calendar_lock(db, [(appointment.doctor_id, data.new_date)]):
        conflict = await conflict_service.find_conflict(
            db,
            doctor_id=appointment.doctor_id,
            patient_id=appointment.patient_id,
            clinic_id=appointment.clinic_id,
            target_date=data.new_date,
            start_time=data.new_time,
            duration_minutes=duration,
            exclude_id=appointment.id,
        )
        if conflict:
            await _raise_conflict(
                db, conflict,
                doctor_id=appointment.doctor_id,
                clinic_id=appointment.clinic_id,
                target_date=data.new_date,
                start_time=data.new_time,
                duration_minutes=duration,
                exclude_id=appointment.id,
            )

        old_data = appointment_snapshot(appointment)
        apply_reschedule(
            appointment, data.new_date, data.new_time, reason=data.reason, now=_now()
        )
        await db.flush()
        await log_action(
            db,
            clinic_id=appointment.clinic_id,
            user_id=actor_id,
            entity="appointment",
            entity_id=str(appointment.id),
            action="reschedule",
            old_data=old_data,
            new_data={**appointment_snapshot(appointment), "reason": data.reason},
        )
        await db.commit()

    await db.refresh(appointment)
    notification_service.dispatch(notifier, [
        notification_service.appointment_request(
            appointment,
            notification_service.APPOINTMENT_RESCHEDULED,
            old_date=old_data["appointment_date"],
            old_time=old_data["appointment_time"],
        )
    ])
    return appointment


async def cancel_appointment(
    db: AsyncSession,
    appointment_id: UUID,
    data: AppointmentCancel,
    *,
    actor_id: UUID | None = None,
    notifier: Notifier | None = None,
) -> Appointment:
    """
    Cancela la cita. `allow_reschedule` solo deja registrado que el paciente
    quiere volver a reservar: nunca se crea una cita nueva automáticamente.
    """
    appointment = await _get_appointment(db, appointment_id)
    old_status = appointment.status

    apply_cancel(
        appointment,
        reason=data.reason,
        actor_id=actor_id,
        now=_now(),
        reschedule_requested=data.allow_reschedule,
    )
    await db.flush()
    await log_action(
        db,
        clinic_id=appointment.clinic_id,
        user_id=actor_id,
        entity="appointment",
        entity_id=str(appointment.id),
        action="cancel",
        old_data={"status": old_status},
        new_data={"status": appointment.status, "reason": data.reason},
    )
    await db.commit()
    await db.refresh(appointment)
    logger.info(f"Cita {appointment.id} cancelada")

    notification_service.dispatch(notifier, [
        notification_service.appointment_request(
            appointment, notification_service.APPOINTMENT_CANCELLED, reason=data.reason
        )
    ])
    return appointment


async def complete_appointment(
    db: AsyncSession,
    appointment_id: UUID,
    data: AppointmentComplete,
    *,
    actor_id: UUID | None = None,
) -> Appointment:
    """Cierra la atención. Requiere cita en curso y notas del doctor."""
    appointment = await _get_appointment(db, appointment_id)
    ensure_transition(appointment, AppointmentStatus.COMPLETED)

    notes = data.doctor_notes.strip()
    if len(notes) < settings.MIN_DOCTOR_NOTES_LENGTH:
        raise ValidationException(
            f"Las notas del doctor requieren al menos {settings.MIN_DOCTOR_NOTES_LENGTH} caracteres",
            code="DOCTOR_NOTES_TOO_SHORT",
            min_length=settings.MIN_DOCTOR_NOTES_LENGTH,
        )

    appointment.status = AppointmentStatus.COMPLETED
    appointment.completion_notes = notes
    appointment.diagnosis = data.diagnosis
    appointment.follow_up_required = data.follow_up_required
    appointment.follow_up_notes = data.follow_up_notes if data.follow_up_required else None
    appointment.completed_at = _now()
    await db.flush()

    await log_action(
        db,
        clinic_id=appointment.clinic_id,
        user_id=actor_id,
        entity="appointment",
        entity_id=str(appointment.id),
        action="complete",
        old_data={"status": AppointmentStatus.IN_PROGRESS},
        new_data={
            "status": appointment.status,
            "follow_up_required": appointment.follow_up_required,
        },
    )
    await db.commit()
    await db.refresh(appointment)
    return appointment


async def change_status(
    db: AsyncSession,
    appointment_id: UUID,
    data: AppointmentStatusChange,
    *,
    actor_id: UUID | None = None,
) -> Appointment:
    """Confirmar, iniciar atención o marcar inasistencia."""
    appointment = await _get_appointment(db, appointment_id)
    ensure_transition(appointment, data.status)

    old_status = appointment.status
    appointment.status = data.status
    await db.flush()

    await log_action(
        db,
        clinic_id=appointment.clinic_id,
        user_id=actor_id,
        entity="appointment",
        entity_id=str(appointment.id),
        action="status_change",
        old_data={"status": old_status},
        new_data={"status": data.status},
    )
    await db.commit()
    await db.refresh(appointment)
    return appointment


async def transfer_doctor(
    db: AsyncSession,
    appointment_id: UUID,
    data: AppointmentDoctorTransfer,
    *,
    actor_id: UUID | None = None,
    notifier: Notifier | None = None,
) -> Appointment:
    """Asigna la cita a otro doctor en la misma fecha y hora."""
    appointment = await _get_appointment(db, appointment_id)
    ensure_movable(appointment, "transfer")
    if appointment.doctor_id == data.new_doctor_id:
        raise ValidationException(
            "La cita ya está asignada a ese doctor", code="SAME_DOCTOR"
        )
    await _get_active_doctor(db, data.new_doctor_id)

    async with calendar_lock(db, [(data.new_doctor_id, appointment.appointment_date)]):
        conflict = await conflict_service.find_conflict(
            db,
            doctor_id=data.new_doctor_id,
            patient_id=appointment.patient_id,
            clinic_id=appointment.clinic_id,
            target_date=appointment.appointment_date,
            start_time=appointment.appointment_time,
            duration_minutes=appointment.duration_minutes,
            exclude_id=appointment.id,
            parties=(ConflictParty.DOCTOR,),
        )
        if conflict:
            await _raise_conflict(
                db, conflict,
                doctor_id=data.new_doctor_id,
                clinic_id=appointment.clinic_id,
                target_date=appointment.appointment_date,
                start_time=appointment.appointment_time,
                duration_minutes=appointment.duration_minutes,
                exclude_id=appointment.id,
            )

        previous = appointment.doctor_id
        appointment.previous_doctor_id = previous
        appointment.doctor_id = data.new_doctor_id
        appointment.transferred_at = _now()
        appointment.transferred_by = actor_id
        await db.flush()

        await log_action(
            db,
            clinic_id=appointment.clinic_id,
            user_id=actor_id,
            entity="appointment",
            entity_id=str(appointment.id),
            action="transfer_doctor",
            old_data={"doctor_id": previous},
            new_data={"doctor_id": data.new_doctor_id, "reason": data.reason},
        )
        await db.commit()

    await db.refresh(appointment)
    logger.info(f"Cita {appointment.id} transferida de {previous} a {data.new_doctor_id}")
    notification_service.dispatch(notifier, [
        notification_service.appointment_request(
            appointment,
            notification_service.APPOINTMENT_DOCTOR_CHANGED,
            previous_doctor_id=previous,
        )
    ])
    return appointment
