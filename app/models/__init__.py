"""
Modelos SQLAlchemy — exportar todos para que Alembic los detecte.
"""

from app.models.subscription import Subscription, PlanType
from app.models.organization import Organization, EntityStatus
from app.models.complex import Complex
from app.models.department import Department
from app.models.clinic import Clinic
from app.models.user import User, UserRole
from app.models.patient import Patient
from app.models.service import Service
from app.models.appointment import Appointment, AppointmentStatus, UrgencyLevel
from app.models.working_hours import WorkingHours, WorkingHoursEntity
from app.models.notification import Notification, NotificationStatus
from app.models.audit_log import AuditLog

__all__ = [
    "Subscription",
    "PlanType",
    "Organization",
    "EntityStatus",
    "Complex",
    "Department",
    "Clinic",
    "User",
    "UserRole",
    "Patient",
    "Service",
    "Appointment",
    "AppointmentStatus",
    "UrgencyLevel",
    "WorkingHours",
    "WorkingHoursEntity",
    "Notification",
    "NotificationStatus",
    "AuditLog",
]
