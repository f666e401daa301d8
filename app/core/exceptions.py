"""
Excepciones HTTP personalizadas para la API.

El `detail` de cada excepción es un objeto estructurado con un `code` estable
y datos accionables; la capa de presentación decide cómo mostrarlo.
"""

from uuid import UUID

from fastapi import HTTPException, status


def _detail(code: str, message: str, **data) -> dict:
    payload = {"code": code, "message": message}
    for key, value in data.items():
        payload[key] = str(value) if isinstance(value, UUID) else value
    return payload


class NotFoundException(HTTPException):
    """Recurso no encontrado (404)."""

    def __init__(self, resource: str = "Recurso", detail: str | None = None):
        self.resource = resource
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=_detail(
                f"{resource.upper()}_NOT_FOUND",
                detail or f"{resource} no encontrado",
            ),
        )


class ConflictException(HTTPException):
    """Conflicto de datos (409)."""

    def __init__(self, detail: str = "El recurso ya existe", code: str = "CONFLICT", **data):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=_detail(code, detail, **data),
        )


class ValidationException(HTTPException):
    """Error de validación de negocio (422)."""

    def __init__(self, detail: str = "Error de validación", code: str = "VALIDATION_ERROR", **data):
        self.code = code
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=_detail(code, detail, **data),
        )


# ── Agenda ───────────────────────────────────────────

class ConflictingAppointmentException(ConflictException):
    """
    Doble reserva (409). Indica la cita en conflicto, la parte que choca
    (doctor, patient o clinic) y horarios alternativos sugeridos.
    """

    def __init__(
        self,
        appointment_id: UUID,
        party: str,
        suggested_times: list[dict] | None = None,
    ):
        self.appointment_id = appointment_id
        self.party = party
        self.suggested_times = suggested_times or []
        super().__init__(
            f"El horario solicitado choca con otra cita ({party})",
            code="CONFLICTING_APPOINTMENT",
            conflicting_appointment_id=appointment_id,
            party=party,
            suggested_times=self.suggested_times,
        )


class InvalidTransitionException(ValidationException):
    """Transición ilegal en la state machine de citas (422)."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            f"No se puede pasar de '{current}' a '{requested}'",
            code="INVALID_TRANSITION",
            current=current,
            requested=requested,
        )


class PlanLimitExceededException(ValidationException):
    """El plan de suscripción no admite la operación (422)."""

    def __init__(self, resource: str, limit: int, current: int, requested: int):
        self.limit = limit
        self.current = current
        self.requested = requested
        super().__init__(
            f"El plan permite {limit} {resource}; hay {current} y se solicitan {requested} más",
            code="PLAN_LIMIT_EXCEEDED",
            resource=resource,
            limit=limit,
            current=current,
            requested=requested,
        )


# ── Cascadas ─────────────────────────────────────────

class CascadeAbortedException(HTTPException):
    """Falla irrecuperable durante una cascada; no se confirmó ningún cambio (500)."""

    def __init__(self, committed: list[UUID], failed: UUID | None, reason: str = ""):
        self.committed = committed
        self.failed = failed
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_detail(
                "CASCADE_ABORTED",
                reason or "La cascada se abortó y no se aplicaron cambios",
                committed=[str(i) for i in committed],
                failed=str(failed) if failed else None,
            ),
        )


class CascadeTimeoutException(HTTPException):
    """La cascada excedió el plazo indicado; no se escribió ninguna cita (504)."""

    def __init__(self, processed: list[UUID], pending: list[UUID]):
        self.processed = processed
        self.pending = pending
        super().__init__(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail=_detail(
                "CASCADE_TIMEOUT",
                "La cascada excedió el plazo; no se aplicaron cambios",
                processed=[str(i) for i in processed],
                pending=[str(i) for i in pending],
            ),
        )
