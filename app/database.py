"""
Configuración de base de datos con SQLAlchemy 2.0 async.
PostgreSQL (asyncpg) en producción; los tests usan SQLite (aiosqlite).
"""

from typing import AsyncGenerator

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings

settings = get_settings()


def _engine_options(url: str) -> dict:
    """SQLite no admite pool_size/max_overflow."""
    options = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if make_url(url).get_backend_name() != "sqlite":
        options.update(pool_size=settings.DB_POOL_SIZE, max_overflow=settings.DB_MAX_OVERFLOW)
    return options


# ── Engine async ─────────────────────────────────────
engine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

# ── Session factory ──────────────────────────────────
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Base declarativa ─────────────────────────────────
class Base(DeclarativeBase):
    pass


# JSONB en PostgreSQL, JSON genérico en otros motores
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ── Dependencies ─────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Sesión por request: commit al terminar y rollback ante cualquier error.
    Los servicios que orquestan transacciones propias (reservas, cascadas)
    hacen commit explícito dentro de la misma sesión.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Fábrica de sesiones para las lecturas concurrentes de las cascadas."""
    return async_session_factory
