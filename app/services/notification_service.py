"""
Despacho de notificaciones a pacientes.

El motor solo conoce la interfaz `Notifier.enqueue(recipient_id, template,
variables)`; la entrega es responsabilidad del notificador. El notificador por
defecto encola una tarea Celery por mensaje.
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol
from uuid import UUID

from app.models.appointment import Appointment
from app.services.audit_service import sanitize_for_json

logger = logging.getLogger(__name__)


# ── Plantillas ───────────────────────────────────────
APPOINTMENT_SCHEDULED = "appointment_scheduled"
APPOINTMENT_RESCHEDULED = "appointment_rescheduled"
APPOINTMENT_NEEDS_RESCHEDULING = "appointment_needs_rescheduling"
APPOINTMENT_CANCELLED = "appointment_cancelled"
APPOINTMENT_DOCTOR_CHANGED = "appointment_doctor_changed"


class Notifier(Protocol):
    def enqueue(self, recipient_id: UUID, template: str, variables: dict) -> None:
        ...


@dataclass
class NotificationRequest:
    recipient_id: UUID
    template: str
    variables: dict = field(default_factory=dict)


class CeleryNotifier:
    """Encola cada notificación como tarea `notifications.dispatch`."""

    def enqueue(self, recipient_id: UUID, template: str, variables: dict) -> None:
        from app.tasks.notification_tasks import dispatch_notification_task

        dispatch_notification_task.delay(
            str(recipient_id), template, sanitize_for_json(variables)
        )


def get_notifier() -> Notifier:
    """Dependency de FastAPI; los tests la reemplazan por un notificador en memoria."""
    return CeleryNotifier()


def appointment_request(appointment: Appointment, template: str, **extra) -> NotificationRequest:
    variables = {
        "appointment_id": appointment.id,
        "clinic_id": appointment.clinic_id,
        "doctor_id": appointment.doctor_id,
        "date": appointment.appointment_date,
        "time": appointment.appointment_time,
        "duration_minutes": appointment.duration_minutes,
    }
    variables.update(extra)
    return NotificationRequest(appointment.patient_id, template, variables)


def dispatch(notifier: Notifier | None, requests: list[NotificationRequest]) -> int:
    """
    Entrega las solicitudes al notificador. Se llama después del commit, así que
    un fallo del broker se registra pero no revierte la operación.
    Retorna cuántas se encolaron.
    """
    if notifier is None:
        return 0
    sent = 0
    for request in requests:
        try:
            notifier.enqueue(request.recipient_id, request.template, request.variables)
            sent += 1
        except Exception:
            logger.exception(
                f"No se pudo encolar {request.template} para {request.recipient_id}"
            )
    return sent
