"""
Aritmética de intervalos horarios.

Todas las comparaciones se hacen en minutos del día (0..1439) para evitar
ambigüedades de zona horaria: cada entidad opera en una sola zona local.
Los intervalos son semiabiertos: [start, end).
"""

import enum
from datetime import date, datetime, time
from typing import NamedTuple
from zoneinfo import ZoneInfo

MINUTES_PER_DAY = 24 * 60
LAST_MINUTE = MINUTES_PER_DAY - 1


class DayOfWeek(str, enum.Enum):
    """Días de la semana (orden ISO, lunes primero)."""
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


_WEEK = list(DayOfWeek)


class Interval(NamedTuple):
    """Intervalo semiabierto en minutos del día."""
    start: int
    end: int

    @property
    def duration(self) -> int:
        return self.end - self.start

    def __str__(self) -> str:
        return f"{from_minutes(self.start)}-{from_minutes(self.end)}"


def day_of_week(value: date) -> DayOfWeek:
    return _WEEK[value.weekday()]


def to_minutes(value: str | time) -> int:
    """Convierte 'HH:MM' (o un `time`) a minutos desde medianoche."""
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    try:
        hours, minutes = value.split(":")[:2]
        hours, minutes = int(hours), int(minutes)
    except (AttributeError, ValueError):
        raise ValueError(f"Hora inválida: {value!r}") from None
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValueError(f"Hora inválida: {value!r}")
    return hours * 60 + minutes


def from_minutes(minutes: int) -> str:
    """Minutos desde medianoche → 'HH:MM'. Se limita al rango del día."""
    minutes = max(0, min(minutes, LAST_MINUTE))
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def to_time(minutes: int) -> time:
    minutes = max(0, min(minutes, LAST_MINUTE))
    return time(minutes // 60, minutes % 60)


def add_minutes(value: str | time, n: int) -> str:
    """
    Suma `n` minutos a una hora. El resultado se recorta a 23:59:
    nunca pasa al día siguiente.
    """
    return from_minutes(to_minutes(value) + n)


def interval_for(start: str | time, duration_minutes: int) -> Interval:
    """Intervalo [start, start+duration) sin recorte."""
    begin = to_minutes(start)
    return Interval(begin, begin + duration_minutes)


def spans_midnight(start: str | time, duration_minutes: int) -> bool:
    return to_minutes(start) + duration_minutes > MINUTES_PER_DAY


def overlaps(a: Interval, b: Interval) -> bool:
    """Intersección de intervalos semiabiertos."""
    return a.start < b.end and b.start < a.end


def contains(outer: Interval, inner: Interval) -> bool:
    return outer.start <= inner.start and inner.end <= outer.end


def intersect(a: Interval, b: Interval) -> Interval | None:
    start, end = max(a.start, b.start), min(a.end, b.end)
    if start >= end:
        return None
    return Interval(start, end)


def subtract(interval: Interval, breaks: list[Interval]) -> list[Interval]:
    """
    Parte un intervalo de trabajo alrededor de cero o más pausas,
    conservando el orden y descartando trozos vacíos.
    """
    pieces = [interval]
    for pause in sorted(breaks):
        remaining = []
        for piece in pieces:
            if not overlaps(piece, pause):
                remaining.append(piece)
                continue
            if piece.start < pause.start:
                remaining.append(Interval(piece.start, pause.start))
            if pause.end < piece.end:
                remaining.append(Interval(pause.end, piece.end))
        pieces = remaining
    return pieces


def intersect_all(left: list[Interval], right: list[Interval]) -> list[Interval]:
    """Intersección de dos listas ordenadas de intervalos."""
    result = []
    for a in left:
        for b in right:
            piece = intersect(a, b)
            if piece:
                result.append(piece)
    return sorted(result)


def local_now(tz_name: str) -> datetime:
    """Fecha y hora local (naive) de la zona horaria de las clínicas."""
    return datetime.now(ZoneInfo(tz_name)).replace(tzinfo=None)
