"""
Tests del despacho de notificaciones (después del commit) y su encolado en Celery.
"""

import logging
from datetime import date, time
from uuid import uuid4

from app.services import notification_service
from app.services.notification_service import CeleryNotifier, NotificationRequest
from app.tasks import notification_tasks
from app.tasks.celery_app import celery_app


class _BrokenNotifier:
    def enqueue(self, recipient_id, template, variables):
        raise ConnectionError("broker caído")


def _requests(count: int) -> list[NotificationRequest]:
    return [
        NotificationRequest(uuid4(), notification_service.APPOINTMENT_CANCELLED, {"n": i})
        for i in range(count)
    ]


def test_dispatch_counts_enqueued(notifier):
    assert notification_service.dispatch(notifier, _requests(3)) == 3
    assert notifier.templates() == [notification_service.APPOINTMENT_CANCELLED] * 3


def test_dispatch_without_notifier_sends_nothing():
    assert notification_service.dispatch(None, _requests(2)) == 0


def test_broker_failure_is_logged_not_raised(caplog):
    with caplog.at_level(logging.ERROR, logger="app.services.notification_service"):
        sent = notification_service.dispatch(_BrokenNotifier(), _requests(2))
    assert sent == 0
    assert "No se pudo encolar" in caplog.text


def test_celery_notifier_enqueues_json_safe_payload(monkeypatch):
    calls = []
    monkeypatch.setattr(
        notification_tasks.dispatch_notification_task, "delay", lambda *args: calls.append(args)
    )
    recipient = uuid4()

    CeleryNotifier().enqueue(
        recipient,
        notification_service.APPOINTMENT_RESCHEDULED,
        {"date": date(2030, 3, 4), "time": time(9, 30), "clinic_id": recipient},
    )

    assert calls == [(
        str(recipient),
        notification_service.APPOINTMENT_RESCHEDULED,
        {"date": "2030-03-04", "time": "09:30:00", "clinic_id": str(recipient)},
    )]


def test_dispatch_task_is_registered():
    assert "notifications.dispatch" in celery_app.tasks
    assert celery_app.tasks["notifications.dispatch"].max_retries == 3


async def test_appointment_request_carries_schedule(
    test_clinic, test_doctor, test_patient, future_date, make_appointment
):
    appointment = await make_appointment(test_clinic, test_doctor, test_patient, future_date, time(10, 0))

    request = notification_service.appointment_request(
        appointment, notification_service.APPOINTMENT_RESCHEDULED, event="clinic.inactive"
    )

    assert request.recipient_id == test_patient.id
    assert request.variables["date"] == future_date
    assert request.variables["time"] == time(10, 0)
    assert request.variables["event"] == "clinic.inactive"
