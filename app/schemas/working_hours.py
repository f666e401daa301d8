"""
Schemas de horarios de atención por entidad.
"""

from datetime import time
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from app.core.time_intervals import DayOfWeek
from app.models.working_hours import WorkingHoursEntity
from app.schemas.cascade import CascadeSummary, ConflictPolicy


class WorkingHoursDay(BaseModel):
    day_of_week: DayOfWeek
    is_working_day: bool = True
    opening_time: time | None = None
    closing_time: time | None = None
    break_start: time | None = None
    break_end: time | None = None

    @model_validator(mode="after")
    def validate_times(self):
        times = (self.opening_time, self.closing_time, self.break_start, self.break_end)
        if not self.is_working_day:
            if any(t is not None for t in times):
                raise ValueError(f"{self.day_of_week.value}: un día no laborable no lleva horario")
            return self

        if self.opening_time is None or self.closing_time is None:
            raise ValueError(f"{self.day_of_week.value}: falta hora de apertura o cierre")
        if self.opening_time >= self.closing_time:
            raise ValueError(f"{self.day_of_week.value}: la apertura debe ser anterior al cierre")

        if (self.break_start is None) != (self.break_end is None):
            raise ValueError(f"{self.day_of_week.value}: la pausa requiere inicio y fin")
        if self.break_start is not None:
            if not (self.opening_time <= self.break_start < self.break_end <= self.closing_time):
                raise ValueError(
                    f"{self.day_of_week.value}: la pausa debe estar dentro del horario"
                )
        return self


class WorkingHoursUpdate(BaseModel):
    """Reemplaza el horario semanal completo de la entidad."""
    days: list[WorkingHoursDay] = Field(..., max_length=7)

    @field_validator("days")
    @classmethod
    def one_entry_per_day(cls, v: list[WorkingHoursDay]) -> list[WorkingHoursDay]:
        seen = [d.day_of_week for d in v]
        if len(set(seen)) != len(seen):
            raise ValueError("Cada día de la semana puede aparecer una sola vez")
        return v


class WorkingHoursReschedulingUpdate(WorkingHoursUpdate):
    """Actualiza el horario de una clínica y resuelve las citas que quedan fuera."""
    handle_conflicts: ConflictPolicy = ConflictPolicy.NOTIFY
    notify_patients: bool = True
    rescheduling_reason: str | None = Field(None, max_length=500)


class WorkingHoursResponse(BaseModel):
    id: UUID
    entity_type: WorkingHoursEntity
    entity_id: UUID
    day_of_week: DayOfWeek
    is_working_day: bool
    opening_time: time | None = None
    closing_time: time | None = None
    break_start: time | None = None
    break_end: time | None = None

    model_config = {"from_attributes": True}


class WorkingHoursUpdateResult(CascadeSummary):
    entity_id: UUID
    working_hours: list[WorkingHoursResponse]
