"""
Servicio de Audit Log — registra las operaciones que modifican agenda y jerarquía.
INSERT-only, nunca se modifica ni elimina.
"""

import enum
from datetime import date, datetime, time
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.appointment import Appointment
from app.models.audit_log import AuditLog


def _to_json_value(value):
    if isinstance(value, (date, datetime, time)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, dict):
        return sanitize_for_json(value)
    if isinstance(value, (list, tuple)):
        return [_to_json_value(item) for item in value]
    return value


def sanitize_for_json(data: dict | None) -> dict | None:
    """Convierte tipos no serializables (fechas, horas, UUID, Decimal, enums) a JSON."""
    if data is None:
        return None
    return {key: _to_json_value(value) for key, value in data.items()}


def appointment_snapshot(appointment: Appointment) -> dict:
    """Campos de agenda de una cita, para old_data/new_data."""
    return {
        "status": appointment.status,
        "doctor_id": appointment.doctor_id,
        "clinic_id": appointment.clinic_id,
        "appointment_date": appointment.appointment_date,
        "appointment_time": appointment.appointment_time,
        "duration_minutes": appointment.duration_minutes,
    }


async def log_action(
    db: AsyncSession,
    *,
    clinic_id: UUID | None,
    user_id: UUID | None,
    entity: str,
    entity_id: str,
    action: str,
    old_data: dict | None = None,
    new_data: dict | None = None,
) -> AuditLog:
    """Inserta un registro de auditoría inmutable."""
    entry = AuditLog(
        clinic_id=clinic_id,
        user_id=user_id,
        entity=entity,
        entity_id=str(entity_id),
        action=action,
        old_data=sanitize_for_json(old_data),
        new_data=sanitize_for_json(new_data),
    )
    db.add(entry)
    await db.flush()
    return entry
