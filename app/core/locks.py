"""
Bloqueos de calendario por (doctor, fecha).

Toda escritura que cambia fecha, hora o doctor de una cita se hace dentro de
`calendar_lock`, de modo que la lectura del detector de conflictos y la
escritura formen una sola operación. En el proceso se usa un `asyncio.Lock`
por clave; en PostgreSQL además se toma `pg_advisory_xact_lock`, que se libera
al terminar la transacción (protege también entre procesos).
"""

import asyncio
import hashlib
import weakref
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import date
from typing import AsyncIterator, Iterable
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

CalendarKey = tuple[UUID, date]

_locks: "weakref.WeakValueDictionary[CalendarKey, asyncio.Lock]" = weakref.WeakValueDictionary()


def _advisory_key(doctor_id: UUID, day: date) -> int:
    """Clave bigint estable para pg_advisory_xact_lock."""
    digest = hashlib.blake2b(f"{doctor_id}:{day.isoformat()}".encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def _get_lock(key: CalendarKey) -> asyncio.Lock:
    lock = _locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _locks[key] = lock
    return lock


@asynccontextmanager
async def calendar_lock(db: AsyncSession, keys: Iterable[CalendarKey]) -> AsyncIterator[None]:
    """
    Adquiere los bloqueos de todas las claves en orden estable
    (evita deadlocks entre cascadas concurrentes).
    """
    ordered = sorted(set(keys), key=lambda k: (str(k[0]), k[1]))
    held = [_get_lock(key) for key in ordered]

    async with AsyncExitStack() as stack:
        for lock in held:
            await stack.enter_async_context(lock)

        if db.get_bind().dialect.name == "postgresql":
            for doctor_id, day in ordered:
                await db.execute(
                    text("SELECT pg_advisory_xact_lock(:key)"),
                    {"key": _advisory_key(doctor_id, day)},
                )
        yield
