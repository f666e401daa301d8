"""
Orquestador de cascadas del ciclo de vida.

Cuando cambia una entidad de la jerarquía (desactivación de departamento,
complejo o clínica; transferencia de clínicas entre complejos; cambio de
horario de una clínica) se enumeran las citas futuras afectadas y a cada una
se le aplica la política pedida:

    reschedule → se busca el slot libre más cercano con el mismo doctor;
                 si no hay dentro de la ventana, se marca para reprogramar
    notify     → se marca para reprogramar sin tocar fecha ni hora
    cancel     → se cancela con un motivo que referencia el evento

Fases:
    1. Plan (solo lectura, concurrente por doctor, con plazo máximo).
    2. Commit: una sola transacción bajo los bloqueos de calendario. Cada
       reprogramación se vuelve a validar con el detector de conflictos.
       El estado de la entidad se escribe al final.
    3. Notificaciones, solo después del commit.

Si algo falla en la fase 2 se hace rollback y no queda ningún cambio. Volver a
ejecutar el mismo evento no reprocesa citas: cada cita guarda el `cascade_key`
del evento que la procesó.
"""

import asyncio
import hashlib
import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Awaitable, Callable
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from app.core.exceptions import (
    CascadeAbortedException,
    CascadeTimeoutException,
    NotFoundException,
    ValidationException,
)
from app.core.locks import calendar_lock
from app.core.time_intervals import day_of_week, interval_for, local_now
from app.database import async_session_factory
from app.models.appointment import Appointment, MOVABLE_STATUSES
from app.models.clinic import Clinic
from app.models.complex import Complex
from app.models.department import Department
from app.models.organization import EntityStatus
from app.models.user import User, UserRole
from app.models.working_hours import WorkingHoursEntity
from app.schemas.cascade import (
    AppointmentChange,
    CascadeEntityType,
    CascadeOutcome,
    CascadeResult,
    CascadeSummary,
    ConflictPolicy,
    DeactivationRequest,
    TransferClinicsRequest,
    TransferRecord,
    TransferResult,
)
from app.schemas.working_hours import (
    WorkingHoursReschedulingUpdate,
    WorkingHoursResponse,
    WorkingHoursUpdateResult,
)
from app.services import (
    appointment_service,
    availability_service,
    conflict_service,
    notification_service,
    plan_service,
    working_hours_service,
)
from app.services.audit_service import log_action
from app.services.notification_service import NotificationRequest, Notifier
from app.services.working_hours_service import WeeklySchedule

logger = logging.getLogger(__name__)
settings = get_settings()

SessionFactory = async_sessionmaker[AsyncSession]
Finalizer = Callable[[], Awaitable[None]]

_OUTCOME_TEMPLATES = {
    CascadeOutcome.RESCHEDULED: notification_service.APPOINTMENT_RESCHEDULED,
    CascadeOutcome.MARKED_FOR_RESCHEDULING: notification_service.APPOINTMENT_NEEDS_RESCHEDULING,
    CascadeOutcome.CANCELLED: notification_service.APPOINTMENT_CANCELLED,
}


# ── Estructuras internas ─────────────────────────────

@dataclass(frozen=True)
class _Target:
    """Copia inmutable de los datos de agenda de una cita afectada."""
    appointment_id: UUID
    doctor_id: UUID
    patient_id: UUID
    clinic_id: UUID
    appointment_date: date
    appointment_time: time
    duration_minutes: int
    rebook_clinic_id: UUID | None


@dataclass
class _Decision:
    target: _Target
    outcome: CascadeOutcome
    new_date: date | None = None
    new_time: time | None = None


@dataclass
class _Cascade:
    key: str
    event: str
    policy: ConflictPolicy
    notify_patients: bool
    reason: str
    cancel_reason: str
    actor_id: UUID | None
    timeout: float
    schedule: WeeklySchedule | None = None
    bound: WeeklySchedule | None = None
    current_id: UUID | None = None


@dataclass
class _TransferPlan:
    records: list[TransferRecord]
    conflicts: list[Appointment]
    target_week: WeeklySchedule
    apply: Finalizer


# ── Helpers ──────────────────────────────────────────

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_cascade(
    key: str,
    event: str,
    entity_id: UUID,
    options,
    actor_id: UUID | None,
    timeout: float | None = None,
) -> _Cascade:
    tag = f"lifecycle:{event}:{entity_id}"
    caller_reason = options.rescheduling_reason
    return _Cascade(
        key=key,
        event=event,
        policy=options.handle_conflicts,
        notify_patients=options.notify_patients,
        reason=caller_reason or tag,
        cancel_reason=f"{tag} ({caller_reason})" if caller_reason else tag,
        actor_id=actor_id,
        timeout=timeout or settings.CASCADE_TIMEOUT_SECONDS,
    )


def _fits(week: WeeklySchedule, appointment: Appointment) -> bool:
    day = week.get(day_of_week(appointment.appointment_date))
    return day is not None and day.fits(appointment.interval)


def _to_target(appointment: Appointment, rebook_clinic_id: UUID | None) -> _Target:
    return _Target(
        appointment_id=appointment.id,
        doctor_id=appointment.doctor_id,
        patient_id=appointment.patient_id,
        clinic_id=appointment.clinic_id,
        appointment_date=appointment.appointment_date,
        appointment_time=appointment.appointment_time,
        duration_minutes=appointment.duration_minutes,
        rebook_clinic_id=rebook_clinic_id,
    )


def _set_status(entity, status: EntityStatus, actor_id: UUID | None, reason: str | None, now: datetime):
    entity.status = status
    entity.deactivated_at = now
    entity.deactivated_by = actor_id
    entity.deactivation_reason = reason


async def _enumerate(db: AsyncSession, clinic_ids: list[UUID], key: str) -> list[Appointment]:
    """Citas futuras (fecha ≥ hoy) programadas o confirmadas, no procesadas por este evento."""
    if not clinic_ids:
        return []
    today = local_now(settings.CLINIC_TIMEZONE).date()
    result = await db.execute(
        select(Appointment)
        .where(
            Appointment.clinic_id.in_(clinic_ids),
            Appointment.appointment_date >= today,
            # Solo programadas o confirmadas: una cita en curso no se mueve ni se cancela
            Appointment.status.in_(MOVABLE_STATUSES),
            Appointment.deleted_at.is_(None),
            or_(Appointment.cascade_key.is_(None), Appointment.cascade_key != key),
        )
        .order_by(Appointment.appointment_date, Appointment.appointment_time)
    )
    return list(result.scalars().all())


async def _get_complex(db: AsyncSession, complex_id: UUID) -> Complex:
    complex_ = await db.get(Complex, complex_id)
    if complex_ is None or complex_.deleted_at is not None:
        raise NotFoundException("complex", "Complejo no encontrado")
    return complex_


async def _clinics_where(db: AsyncSession, *criteria) -> list[Clinic]:
    result = await db.execute(
        select(Clinic).where(Clinic.deleted_at.is_(None), *criteria).order_by(Clinic.name)
    )
    return list(result.scalars().all())


# ── Fase 1: plan ─────────────────────────────────────

async def _plan(
    targets: list[_Target],
    cascade: _Cascade,
    session_factory: SessionFactory,
) -> list[_Decision]:
    """
    Decide el destino de cada cita. Las búsquedas de slot corren en paralelo
    por doctor, cada grupo con su propia sesión de lectura y sus slots reservados.
    """
    decisions: dict[UUID, _Decision] = {}
    groups: dict[UUID, list[_Target]] = defaultdict(list)

    for target in targets:
        if cascade.policy == ConflictPolicy.CANCEL:
            decisions[target.appointment_id] = _Decision(target, CascadeOutcome.CANCELLED)
        elif cascade.policy == ConflictPolicy.NOTIFY or target.rebook_clinic_id is None:
            decisions[target.appointment_id] = _Decision(
                target, CascadeOutcome.MARKED_FOR_RESCHEDULING
            )
        else:
            groups[target.doctor_id].append(target)

    if groups:
        semaphore = asyncio.Semaphore(settings.CASCADE_MAX_WORKERS)
        now = local_now(settings.CLINIC_TIMEZONE)

        async def plan_group(group: list[_Target]) -> None:
            async with semaphore:
                async with session_factory() as read_db:
                    reserved: dict[date, list] = defaultdict(list)
                    for target in group:
                        slot = await availability_service.find_nearest_slot(
                            read_db,
                            doctor_id=target.doctor_id,
                            clinic_id=target.rebook_clinic_id,
                            from_date=max(target.appointment_date, now.date()),
                            preferred_time=target.appointment_time,
                            duration_minutes=target.duration_minutes,
                            lookahead_days=settings.RESCHEDULE_LOOKAHEAD_DAYS,
                            exclude_ids=[target.appointment_id],
                            reserved=reserved,
                            schedule=cascade.schedule
                            if target.rebook_clinic_id == target.clinic_id else None,
                            bound=cascade.bound,
                            not_before=now,
                        )
                        if slot is None:
                            logger.warning(
                                f"Sin slot en {settings.RESCHEDULE_LOOKAHEAD_DAYS} días para "
                                f"la cita {target.appointment_id}; se marca para reprogramar"
                            )
                            decisions[target.appointment_id] = _Decision(
                                target, CascadeOutcome.MARKED_FOR_RESCHEDULING
                            )
                            continue
                        new_date, new_time = slot
                        reserved[new_date].append(interval_for(new_time, target.duration_minutes))
                        decisions[target.appointment_id] = _Decision(
                            target, CascadeOutcome.RESCHEDULED, new_date, new_time
                        )

        try:
            await asyncio.wait_for(
                asyncio.gather(*(plan_group(g) for g in groups.values())),
                timeout=cascade.timeout,
            )
        except asyncio.TimeoutError:
            processed = [t.appointment_id for t in targets if t.appointment_id in decisions]
            pending = [t.appointment_id for t in targets if t.appointment_id not in decisions]
            logger.error(
                f"Cascada {cascade.key} excedió {cascade.timeout}s: "
                f"{len(processed)} planificadas, {len(pending)} pendientes"
            )
            raise CascadeTimeoutException(processed, pending) from None

    return [decisions[t.appointment_id] for t in targets]


# ── Fase 2: commit ───────────────────────────────────

async def _apply_decisions(
    db: AsyncSession,
    cascade: _Cascade,
    decisions: list[_Decision],
    appointments: dict[UUID, Appointment],
) -> tuple[list[AppointmentChange], list[NotificationRequest]]:
    now = _now()
    changes: list[AppointmentChange] = []
    requests: list[NotificationRequest] = []

    for decision in decisions:
        appointment = appointments[decision.target.appointment_id]
        cascade.current_id = appointment.id
        old_date, old_time = appointment.appointment_date, appointment.appointment_time
        outcome = decision.outcome

        if outcome == CascadeOutcome.RESCHEDULED:
            conflict = await conflict_service.find_conflict(
                db,
                doctor_id=appointment.doctor_id,
                patient_id=appointment.patient_id,
                clinic_id=decision.target.rebook_clinic_id,
                target_date=decision.new_date,
                start_time=decision.new_time,
                duration_minutes=appointment.duration_minutes,
                exclude_id=appointment.id,
            )
            if conflict:
                logger.warning(
                    f"Cita {appointment.id}: el slot {decision.new_date} {decision.new_time} "
                    f"ya no está libre ({conflict.party.value}); se marca para reprogramar"
                )
                outcome = CascadeOutcome.MARKED_FOR_RESCHEDULING

        if outcome == CascadeOutcome.RESCHEDULED:
            appointment_service.apply_reschedule(
                appointment,
                decision.new_date,
                decision.new_time,
                reason=cascade.reason,
                now=now,
                clinic_id=decision.target.rebook_clinic_id,
            )
        elif outcome == CascadeOutcome.MARKED_FOR_RESCHEDULING:
            appointment_service.apply_mark_for_rescheduling(
                appointment, reason=cascade.reason, actor_id=cascade.actor_id, now=now
            )
        else:
            appointment_service.apply_cancel(
                appointment, reason=cascade.cancel_reason, actor_id=cascade.actor_id, now=now
            )
        appointment.cascade_key = cascade.key
        await db.flush()

        rescheduled = outcome == CascadeOutcome.RESCHEDULED
        changes.append(AppointmentChange(
            appointment_id=appointment.id,
            old_date=old_date,
            old_time=old_time.strftime("%H:%M"),
            new_date=appointment.appointment_date if rescheduled else None,
            new_time=appointment.appointment_time.strftime("%H:%M") if rescheduled else None,
            status=outcome,
        ))
        requests.append(notification_service.appointment_request(
            appointment,
            _OUTCOME_TEMPLATES[outcome],
            old_date=old_date,
            old_time=old_time,
            event=cascade.event,
        ))

    cascade.current_id = None
    return changes, requests


async def _run(
    db: AsyncSession,
    cascade: _Cascade,
    appointments: list[Appointment],
    rebook_for: Callable[[Appointment], UUID | None],
    *,
    finalize: Finalizer,
    notifier: Notifier | None,
    session_factory: SessionFactory,
) -> CascadeSummary:
    targets = [_to_target(a, rebook_for(a)) for a in appointments]
    decisions = await _plan(targets, cascade, session_factory)

    keys = [
        (d.target.doctor_id, d.new_date)
        for d in decisions if d.outcome == CascadeOutcome.RESCHEDULED
    ]
    try:
        async with calendar_lock(db, keys):
            changes, requests = await _apply_decisions(
                db, cascade, decisions, {a.id: a for a in appointments}
            )
            await finalize()
            await db.flush()
            await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error(f"Cascada {cascade.key} abortada en la cita {cascade.current_id}: {exc}")
        raise CascadeAbortedException(
            committed=[], failed=cascade.current_id, reason=f"Error de almacenamiento: {type(exc).__name__}"
        ) from exc

    summary = CascadeSummary(
        appointments_rescheduled=sum(c.status == CascadeOutcome.RESCHEDULED for c in changes),
        appointments_marked_for_rescheduling=sum(
            c.status == CascadeOutcome.MARKED_FOR_RESCHEDULING for c in changes
        ),
        appointments_cancelled=sum(c.status == CascadeOutcome.CANCELLED for c in changes),
        rescheduled_appointments=changes,
    )
    if cascade.notify_patients:
        summary.notifications_sent = notification_service.dispatch(notifier, requests)

    logger.info(
        f"Cascada {cascade.key}: {summary.appointments_rescheduled} reprogramadas, "
        f"{summary.appointments_marked_for_rescheduling} marcadas, "
        f"{summary.appointments_cancelled} canceladas, "
        f"{summary.notifications_sent} notificaciones"
    )
    return summary


# ── Transferencias ───────────────────────────────────

async def _prepare_transfer(
    db: AsyncSession,
    *,
    source_id: UUID | None,
    target_id: UUID,
    clinics: list[Clinic],
    key: str,
    actor_id: UUID | None,
) -> _TransferPlan:
    """
    Valida el plan del complejo destino y calcula qué citas quedan fuera de su
    horario. No escribe nada: la escritura queda en `apply`, que corre al final
    de la fase de commit.
    """
    target = await _get_complex(db, target_id)
    if target.status != EntityStatus.ACTIVE:
        raise ValidationException(
            "El complejo destino no está activo",
            code="TARGET_COMPLEX_UNAVAILABLE",
            complex_id=target.id,
        )

    clinic_ids = [c.id for c in clinics]
    staff_rows = await db.execute(
        select(User.clinic_id, func.count(User.id))
        .where(User.clinic_id.in_(clinic_ids), User.is_active.is_(True))
        .group_by(User.clinic_id)
    ) if clinic_ids else None
    staff_by_clinic = dict(staff_rows.all()) if staff_rows is not None else {}

    await plan_service.validate_transfer(
        db,
        target.id,
        len(clinic_ids),
        moving_clinic_ids=clinic_ids,
        additional_staff_count=sum(staff_by_clinic.values()),
    )

    target_week = await working_hours_service.resolve_week(
        db, WorkingHoursEntity.COMPLEX, target.id
    )
    appointments = await _enumerate(db, clinic_ids, key)
    conflicts = [a for a in appointments if target_week and not _fits(target_week, a)]

    records = [
        TransferRecord(
            clinic_id=clinic.id,
            from_complex_id=clinic.complex_id,
            to_complex_id=target.id,
            staff_updated=staff_by_clinic.get(clinic.id, 0),
            appointments_affected=sum(a.clinic_id == clinic.id for a in appointments),
            conflicts=[a.id for a in conflicts if a.clinic_id == clinic.id],
        )
        for clinic in clinics
    ]

    async def apply() -> None:
        for clinic in clinics:
            clinic.complex_id = target.id
        if clinic_ids:
            await db.execute(
                update(User)
                .where(User.clinic_id.in_(clinic_ids), User.is_active.is_(True))
                .values(complex_id=target.id)
            )
        for record in records:
            await log_action(
                db,
                clinic_id=record.clinic_id,
                user_id=actor_id,
                entity="clinic",
                entity_id=str(record.clinic_id),
                action="transfer",
                old_data={"complex_id": record.from_complex_id or source_id},
                new_data=record.model_dump(),
            )
        logger.info(f"{len(clinics)} clínicas transferidas al complejo {target.id}")

    return _TransferPlan(records, conflicts, target_week, apply)


async def transfer_clinics(
    db: AsyncSession,
    data: TransferClinicsRequest,
    *,
    actor_id: UUID | None = None,
    notifier: Notifier | None = None,
    session_factory: SessionFactory = async_session_factory,
) -> TransferResult:
    """
    Transfiere clínicas entre complejos. El límite del plan se verifica antes de
    escribir; las citas que quedan fuera del horario del complejo destino se
    resuelven con la política pedida.
    """
    source = await _get_complex(db, data.source_complex_id)
    clinics = await _clinics_where(db, Clinic.id.in_(data.clinic_ids))

    missing = set(data.clinic_ids) - {c.id for c in clinics}
    if missing:
        raise NotFoundException("clinic", f"Clínicas no encontradas: {sorted(str(m) for m in missing)}")
    outside = [c.id for c in clinics if c.complex_id != source.id]
    if outside:
        raise ValidationException(
            "Hay clínicas que no pertenecen al complejo origen",
            code="CLINIC_NOT_IN_SOURCE",
            clinic_ids=[str(c) for c in outside],
        )

    key = f"transfer:{source.id}:{data.target_complex_id}"
    cascade = _new_cascade(key, "complex.transfer", source.id, data, actor_id)
    plan = await _prepare_transfer(
        db,
        source_id=source.id,
        target_id=data.target_complex_id,
        clinics=clinics,
        key=key,
        actor_id=actor_id,
    )
    cascade.bound = plan.target_week

    summary = await _run(
        db, cascade, plan.conflicts, lambda a: a.clinic_id,
        finalize=plan.apply,
        notifier=notifier,
        session_factory=session_factory,
    )
    return TransferResult(
        **summary.model_dump(),
        source_complex_id=source.id,
        target_complex_id=data.target_complex_id,
        transfers=plan.records,
    )


# ── Desactivación ────────────────────────────────────

async def _get_scope_entity(db: AsyncSession, entity_type: CascadeEntityType, entity_id: UUID):
    model = {
        CascadeEntityType.DEPARTMENT: Department,
        CascadeEntityType.COMPLEX: Complex,
        CascadeEntityType.CLINIC: Clinic,
    }[entity_type]
    entity = await db.get(model, entity_id)
    if entity is None or getattr(entity, "deleted_at", None) is not None:
        raise NotFoundException(entity_type.value, f"{entity_type.value} {entity_id} no existe")
    return entity


async def _scope_clinics(db: AsyncSession, entity_type: CascadeEntityType, entity) -> list[Clinic]:
    if entity_type == CascadeEntityType.DEPARTMENT:
        return await _clinics_where(db, Clinic.department_id == entity.id)
    if entity_type == CascadeEntityType.COMPLEX:
        return await _clinics_where(db, Clinic.complex_id == entity.id)
    return [entity]


@dataclass
class _StaffTransfer:
    clinic: Clinic
    doctor_ids: list[UUID]
    staff_ids: list[UUID]
    apply: Finalizer


async def _select_staff(
    db: AsyncSession,
    scope_ids: set[UUID],
    *,
    doctors: bool,
    requested: list[UUID],
) -> list[UUID]:
    """Usuarios activos del alcance con ese rol; `requested` restringe a esos ids."""
    query = select(User.id).where(
        User.clinic_id.in_(list(scope_ids)),
        User.is_active.is_(True),
        User.role == UserRole.DOCTOR if doctors else User.role != UserRole.DOCTOR,
    )
    if requested:
        query = query.where(User.id.in_(requested))
    found = list((await db.execute(query)).scalars().all())

    missing = set(requested) - set(found)
    if missing:
        raise ValidationException(
            "Hay usuarios que no pertenecen a las clínicas desactivadas",
            code="STAFF_NOT_IN_SCOPE",
            user_ids=sorted(str(m) for m in missing),
        )
    return found


async def _prepare_staff_transfer(
    db: AsyncSession,
    data: DeactivationRequest,
    scope_ids: set[UUID],
    actor_id: UUID | None,
) -> _StaffTransfer | None:
    """
    Valida la clínica (y el departamento) destino y elige a quién mover. La
    reasignación se escribe en `apply`, dentro de la fase de commit.
    """
    if not data.transfer_clinic_id:
        return None
    if data.transfer_clinic_id in scope_ids:
        raise ValidationException(
            "La clínica destino del personal también se está desactivando",
            code="TRANSFER_CLINIC_IN_SCOPE",
            clinic_id=data.transfer_clinic_id,
        )
    clinic = await db.get(Clinic, data.transfer_clinic_id)
    if clinic is None or not clinic.is_active:
        raise ValidationException(
            "La clínica destino del personal no está disponible",
            code="TRANSFER_CLINIC_UNAVAILABLE",
            clinic_id=data.transfer_clinic_id,
        )
    if data.transfer_department_id:
        department = await db.get(Department, data.transfer_department_id)
        if department is None or department.status != EntityStatus.ACTIVE:
            raise ValidationException(
                "El departamento destino no está disponible",
                code="TRANSFER_DEPARTMENT_UNAVAILABLE",
                department_id=data.transfer_department_id,
            )

    doctor_ids = await _select_staff(
        db, scope_ids, doctors=True, requested=data.doctor_ids
    ) if data.transfer_doctors else []
    staff_ids = await _select_staff(
        db, scope_ids, doctors=False, requested=data.staff_ids
    ) if data.transfer_staff else []
    await plan_service.validate_staff_move(db, clinic, doctor_ids + staff_ids)

    async def apply() -> None:
        moved = doctor_ids + staff_ids
        if not moved:
            return
        previous = (await db.execute(
            select(User.id, User.clinic_id).where(User.id.in_(moved))
        )).all()
        await db.execute(
            update(User)
            .where(User.id.in_(moved))
            .values(
                clinic_id=clinic.id,
                complex_id=clinic.complex_id,
                department_id=data.transfer_department_id,
            )
        )
        await log_action(
            db,
            clinic_id=clinic.id,
            user_id=actor_id,
            entity="clinic",
            entity_id=str(clinic.id),
            action="transfer_staff",
            old_data={str(user_id): clinic_id for user_id, clinic_id in previous},
            new_data={
                "clinic_id": clinic.id,
                "department_id": data.transfer_department_id,
                "doctor_ids": doctor_ids,
                "staff_ids": staff_ids,
            },
        )
        logger.info(
            f"{len(doctor_ids)} doctores y {len(staff_ids)} miembros del personal "
            f"transferidos a la clínica {clinic.id}"
        )

    return _StaffTransfer(clinic, doctor_ids, staff_ids, apply)


async def _rebook_resolver(
    db: AsyncSession,
    data: DeactivationRequest,
    scope_ids: set[UUID],
    appointments: list[Appointment],
    transferred: dict[UUID, UUID] | None = None,
) -> Callable[[Appointment], UUID | None]:
    """
    Clínica donde reprogramar cada cita: la nueva clínica del doctor si se le
    transfiere, la indicada en la request, o la clínica base del doctor si
    sigue activa y está fuera del alcance. Sin destino, la cita se marca para
    reprogramar.
    """
    if data.handle_conflicts != ConflictPolicy.RESCHEDULE:
        return lambda appointment: None

    transferred = transferred or {}
    if transferred:
        fallback = await _rebook_resolver(
            db, data, scope_ids,
            [a for a in appointments if a.doctor_id not in transferred],
        )
        return lambda appointment: transferred.get(appointment.doctor_id) or fallback(appointment)

    if data.rebook_clinic_id:
        if data.rebook_clinic_id in scope_ids:
            raise ValidationException(
                "La clínica de reprogramación también se está desactivando",
                code="REBOOK_CLINIC_IN_SCOPE",
                clinic_id=data.rebook_clinic_id,
            )
        clinic = await db.get(Clinic, data.rebook_clinic_id)
        if clinic is None or not clinic.is_active:
            raise ValidationException(
                "La clínica de reprogramación no está disponible",
                code="REBOOK_CLINIC_UNAVAILABLE",
                clinic_id=data.rebook_clinic_id,
            )
        return lambda appointment: data.rebook_clinic_id

    doctor_ids = {a.doctor_id for a in appointments}
    if not doctor_ids:
        return lambda appointment: None
    rows = await db.execute(
        select(User.id, Clinic.id)
        .join(Clinic, Clinic.id == User.clinic_id)
        .where(
            User.id.in_(doctor_ids),
            Clinic.status == EntityStatus.ACTIVE,
            Clinic.deleted_at.is_(None),
        )
    )
    home = {doctor_id: clinic_id for doctor_id, clinic_id in rows.all() if clinic_id not in scope_ids}
    return lambda appointment: home.get(appointment.doctor_id)


async def deactivate_entity(
    db: AsyncSession,
    data: DeactivationRequest,
    *,
    actor_id: UUID | None = None,
    notifier: Notifier | None = None,
    session_factory: SessionFactory = async_session_factory,
) -> CascadeResult:
    """
    Desactiva (inactive/suspended) un departamento, complejo o clínica.
    Sus clínicas toman el mismo estado, salvo que un complejo transfiera sus
    clínicas a `target_complex_id`, en cuyo caso siguen activas bajo el destino.
    """
    entity = await _get_scope_entity(db, data.entity_type, data.entity_id)
    old_status = entity.status
    event = f"{data.entity_type.value}.{data.status.value}"
    key = f"deactivate:{data.entity_type.value}:{entity.id}:{data.status.value}"
    cascade = _new_cascade(key, event, entity.id, data, actor_id, data.timeout_seconds)
    clinics = await _scope_clinics(db, data.entity_type, entity)

    async def audit(extra: dict) -> None:
        await log_action(
            db,
            clinic_id=entity.id if data.entity_type == CascadeEntityType.CLINIC else None,
            user_id=actor_id,
            entity=data.entity_type.value,
            entity_id=str(entity.id),
            action="deactivate",
            old_data={"status": old_status},
            new_data={"status": data.status, "policy": data.handle_conflicts, **extra},
        )

    if data.target_complex_id:
        plan = await _prepare_transfer(
            db,
            source_id=entity.id,
            target_id=data.target_complex_id,
            clinics=clinics,
            key=key,
            actor_id=actor_id,
        )
        cascade.bound = plan.target_week

        async def finalize() -> None:
            await plan.apply()
            _set_status(entity, data.status, actor_id, data.rescheduling_reason, _now())
            await audit({"target_complex_id": data.target_complex_id})

        summary = await _run(
            db, cascade, plan.conflicts, lambda a: a.clinic_id,
            finalize=finalize,
            notifier=notifier,
            session_factory=session_factory,
        )
        transfers = plan.records
        staff = None
    else:
        scope_ids = {c.id for c in clinics}
        staff = await _prepare_staff_transfer(db, data, scope_ids, actor_id)
        appointments = await _enumerate(db, list(scope_ids), key)
        rebook_for = await _rebook_resolver(
            db, data, scope_ids, appointments,
            transferred={d: staff.clinic.id for d in staff.doctor_ids} if staff else None,
        )

        async def finalize() -> None:
            now = _now()
            for clinic in clinics:
                _set_status(clinic, data.status, actor_id, data.rescheduling_reason, now)
            if data.entity_type != CascadeEntityType.CLINIC:
                _set_status(entity, data.status, actor_id, data.rescheduling_reason, now)
            extra = {"clinics": [c.id for c in clinics]}
            if staff:
                await staff.apply()
                extra["transfer_clinic_id"] = staff.clinic.id
            await audit(extra)

        summary = await _run(
            db, cascade, appointments, rebook_for,
            finalize=finalize,
            notifier=notifier,
            session_factory=session_factory,
        )
        transfers = []

    return CascadeResult(
        **summary.model_dump(),
        entity_type=data.entity_type,
        entity_id=entity.id,
        status=data.status,
        clinics_affected=len(clinics),
        transfers=transfers,
        doctors_transferred=len(staff.doctor_ids) if staff else 0,
        staff_transferred=len(staff.staff_ids) if staff else 0,
    )


# ── Cambio de horario ────────────────────────────────

def _schedule_digest(data: WorkingHoursReschedulingUpdate) -> str:
    payload = json.dumps(
        [day.model_dump(mode="json") for day in data.days], sort_keys=True
    )
    return hashlib.sha1(payload.encode()).hexdigest()[:12]


async def update_working_hours_with_rescheduling(
    db: AsyncSession,
    clinic_id: UUID,
    data: WorkingHoursReschedulingUpdate,
    *,
    actor_id: UUID | None = None,
    notifier: Notifier | None = None,
    session_factory: SessionFactory = async_session_factory,
) -> WorkingHoursUpdateResult:
    """
    Reemplaza el horario de la clínica y resuelve las citas futuras que quedan
    fuera de las nuevas ventanas (pausa incluida).
    """
    clinic = await db.get(Clinic, clinic_id)
    if clinic is None or clinic.deleted_at is not None:
        raise NotFoundException("clinic", "Clínica no encontrada")
    await working_hours_service.validate_against_parent(
        db, WorkingHoursEntity.CLINIC, clinic_id, data.days
    )

    new_week = working_hours_service.schedule_from_entries(data.days)
    key = f"working_hours:{clinic_id}:{_schedule_digest(data)}"
    cascade = _new_cascade(key, "clinic.working_hours", clinic_id, data, actor_id)
    cascade.schedule = new_week

    appointments = [a for a in await _enumerate(db, [clinic_id], key) if not _fits(new_week, a)]
    entries = []

    async def finalize() -> None:
        entries.extend(await working_hours_service.replace_working_hours(
            db, WorkingHoursEntity.CLINIC, clinic_id, data.days, actor_id=actor_id
        ))

    summary = await _run(
        db, cascade, appointments, lambda a: clinic_id,
        finalize=finalize,
        notifier=notifier,
        session_factory=session_factory,
    )
    return WorkingHoursUpdateResult(
        **summary.model_dump(),
        entity_id=clinic_id,
        working_hours=[WorkingHoursResponse.model_validate(e) for e in entries],
    )
