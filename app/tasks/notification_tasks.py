"""
Tareas Celery de notificaciones a pacientes.
Cada mensaje queda registrado en la tabla notifications, que funciona como
bandeja in-app del paciente.
"""

import asyncio
import logging
from datetime import datetime, timezone

from app.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    name="notifications.dispatch",
)
def dispatch_notification_task(self, recipient_id: str, template: str, variables: dict):
    """Registra la notificación in-app del paciente."""
    from uuid import UUID

    async def _dispatch():
        from app.database import async_session_factory
        from app.models.notification import Notification, NotificationStatus

        async with async_session_factory() as db:
            notification = Notification(
                recipient_id=UUID(recipient_id),
                template=template,
                variables=variables,
                status=NotificationStatus.SENT,
                sent_at=datetime.now(timezone.utc),
            )
            db.add(notification)
            await db.commit()
            logger.info(f"Notificación {template} enviada a {recipient_id}")

    try:
        asyncio.run(_dispatch())
    except Exception as exc:
        logger.error(f"Error en notification task ({template}): {exc}")
        raise self.retry(exc=exc)
