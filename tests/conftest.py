"""
Fixtures compartidas para Pytest.
Configura base de datos de test, clientes HTTP y una red mínima de clínicas.
"""

import asyncio
import sqlite3
from collections.abc import AsyncGenerator
from contextlib import closing
from datetime import date, time, timedelta
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import get_settings
from app.core.time_intervals import DayOfWeek
from app.database import Base, get_db, get_session_factory
from app.main import app
from app.models.appointment import Appointment, AppointmentStatus
from app.models.clinic import Clinic
from app.models.complex import Complex
from app.models.patient import Patient
from app.models.service import Service
from app.models.subscription import PlanType, Subscription
from app.models.user import User, UserRole
from app.models.working_hours import WorkingHours, WorkingHoursEntity
from app.services.notification_service import get_notifier

settings = get_settings()

# ── Engine de test (SQLite async o PostgreSQL de test) ─
TEST_DATABASE_PATH = "./test.db"
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{TEST_DATABASE_PATH}"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)
test_session_factory = async_sessionmaker(
    test_engine, class_=AsyncSession, expire_on_commit=False
)


class RecordingNotifier:
    """Notificador en memoria: guarda (recipient_id, template, variables)."""

    def __init__(self):
        self.sent: list[tuple] = []

    def enqueue(self, recipient_id, template, variables):
        self.sent.append((recipient_id, template, variables))

    def templates(self) -> list[str]:
        return [template for _, template, _ in self.sent]


@pytest.fixture(scope="session")
def event_loop():
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Crea y destruye las tablas para cada test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provee una sesión de DB de test."""
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def session_factory() -> async_sessionmaker:
    return test_session_factory


@pytest.fixture
def committed_status():
    """
    Estado de una cita según lo confirmado en la base, leído con una conexión
    síncrona independiente (no ve lo que la sesión del test solo hizo flush).
    """

    def _read(appointment_id) -> str | None:
        with closing(sqlite3.connect(TEST_DATABASE_PATH)) as conn:
            row = conn.execute(
                "SELECT status FROM appointments WHERE id = ?", (appointment_id.hex,)
            ).fetchone()
        return row[0] if row else None

    return _read


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, notifier: RecordingNotifier) -> AsyncGenerator[AsyncClient, None]:
    """Cliente HTTP de test que usa la DB de test y el notificador en memoria."""

    async def _get_test_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_session_factory] = lambda: test_session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Datos base ───────────────────────────────────────

@pytest.fixture
def future_date() -> date:
    """Fecha futura segura (la agenda abre todos los días en los fixtures)."""
    return date.today() + timedelta(days=7)


@pytest.fixture
def set_hours(db_session: AsyncSession):
    """Registra el mismo horario para los días indicados (por defecto toda la semana)."""

    async def _set(
        entity_type: WorkingHoursEntity,
        entity_id,
        opening: time,
        closing: time,
        break_start: time | None = None,
        break_end: time | None = None,
        days=tuple(DayOfWeek),
    ) -> None:
        for day in days:
            db_session.add(WorkingHours(
                entity_type=entity_type,
                entity_id=entity_id,
                day_of_week=day,
                is_working_day=True,
                opening_time=opening,
                closing_time=closing,
                break_start=break_start,
                break_end=break_end,
            ))
        await db_session.commit()

    return _set


@pytest_asyncio.fixture
async def subscription(db_session: AsyncSession) -> Subscription:
    subscription = Subscription(id=uuid4(), plan_type=PlanType.COMPLEX)
    db_session.add(subscription)
    await db_session.commit()
    await db_session.refresh(subscription)
    return subscription


@pytest_asyncio.fixture
async def test_complex(db_session: AsyncSession, subscription: Subscription) -> Complex:
    complex_ = Complex(id=uuid4(), name="Complejo Norte", subscription_id=subscription.id)
    db_session.add(complex_)
    await db_session.commit()
    await db_session.refresh(complex_)
    return complex_


@pytest_asyncio.fixture
async def clinic_factory(db_session: AsyncSession, set_hours):
    """Crea clínicas con horario 08:00–16:00 todos los días."""

    async def _create(name: str = "Clínica Centro", complex_id=None, **kwargs) -> Clinic:
        clinic = Clinic(id=uuid4(), name=name, complex_id=complex_id, **kwargs)
        db_session.add(clinic)
        await db_session.commit()
        await set_hours(WorkingHoursEntity.CLINIC, clinic.id, time(8, 0), time(16, 0))
        await db_session.refresh(clinic)
        return clinic

    return _create


@pytest_asyncio.fixture
async def test_clinic(clinic_factory, test_complex: Complex) -> Clinic:
    return await clinic_factory("Clínica Centro", complex_id=test_complex.id)


@pytest_asyncio.fixture
async def doctor_factory(db_session: AsyncSession):

    async def _create(clinic: Clinic, first_name: str = "Ana") -> User:
        doctor = User(
            id=uuid4(),
            clinic_id=clinic.id,
            complex_id=clinic.complex_id,
            role=UserRole.DOCTOR,
            first_name=first_name,
            last_name="Quispe",
            email=f"{first_name.lower()}@test.com",
        )
        db_session.add(doctor)
        await db_session.commit()
        await db_session.refresh(doctor)
        return doctor

    return _create


@pytest_asyncio.fixture
async def test_doctor(doctor_factory, test_clinic: Clinic) -> User:
    return await doctor_factory(test_clinic)


@pytest_asyncio.fixture
async def patient_factory(db_session: AsyncSession):

    async def _create(first_name: str = "Luis") -> Patient:
        patient = Patient(id=uuid4(), first_name=first_name, last_name="Rojas")
        db_session.add(patient)
        await db_session.commit()
        await db_session.refresh(patient)
        return patient

    return _create


@pytest_asyncio.fixture
async def test_patient(patient_factory) -> Patient:
    return await patient_factory()


@pytest_asyncio.fixture
async def test_service(db_session: AsyncSession, test_clinic: Clinic) -> Service:
    service = Service(id=uuid4(), clinic_id=test_clinic.id, name="Consulta General", duration_minutes=30)
    db_session.add(service)
    await db_session.commit()
    await db_session.refresh(service)
    return service


@pytest.fixture
def make_appointment(db_session: AsyncSession, test_service: Service):
    """Inserta una cita directamente (sin validaciones de reserva)."""

    async def _make(
        clinic: Clinic,
        doctor: User,
        patient: Patient,
        on: date,
        at: time,
        duration: int = 30,
        status: AppointmentStatus = AppointmentStatus.SCHEDULED,
    ) -> Appointment:
        appointment = Appointment(
            id=uuid4(),
            clinic_id=clinic.id,
            doctor_id=doctor.id,
            patient_id=patient.id,
            service_id=test_service.id,
            appointment_date=on,
            appointment_time=at,
            duration_minutes=duration,
            status=status,
        )
        db_session.add(appointment)
        await db_session.commit()
        await db_session.refresh(appointment)
        return appointment

    return _make
