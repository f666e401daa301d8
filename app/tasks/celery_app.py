"""
App Celery de la agenda.
Los workers consumen la cola `notifications`; la API solo encola.
"""

from celery import Celery

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "agenda",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.tasks.notification_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.CLINIC_TIMEZONE,
    enable_utc=True,
    task_default_queue="notifications",
    task_routes={"notifications.*": {"queue": "notifications"}},
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=settings.NOTIFICATION_RESULT_TTL_SECONDS,
)
