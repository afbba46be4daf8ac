"""Test config and shared fixtures."""
import pytest
from datetime import datetime, timezone
from typing import AsyncGenerator, Generator, List
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.ext.asyncio.session import AsyncSession

import apps.models  # noqa: F401  registers clinic tables
from apps.clinic.models import Appointment, Doctor, Patient
from persistence.repository import AsyncUnitOfWork, UnitOfWork, compiled_queries


# In-memory SQLite for tests
TEST_DATABASE_URL = "sqlite://"
TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
def engine():
    """Blocking engine over a fresh in-memory database."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    with Session(engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture
def uow(session: Session) -> Generator[UnitOfWork, None, None]:
    """Unit of work whose repositories save on every mutation."""
    unit = UnitOfWork(session=session, auto_commit=True)
    yield unit
    unit.close()


@pytest.fixture
def staged_uow(session: Session) -> Generator[UnitOfWork, None, None]:
    """Unit of work whose repositories only stage changes until commit()."""
    unit = UnitOfWork(session=session, auto_commit=False)
    yield unit
    unit.close()


def _at(hour: int) -> datetime:
    return datetime(2026, 3, 2, hour, 0, tzinfo=timezone.utc)


def make_patients(count: int) -> List[Patient]:
    return [
        Patient(name=f"Patient {i:02d}", email=f"patient{i:02d}@example.com", age=20 + i)
        for i in range(1, count + 1)
    ]


@pytest.fixture
def seeded(engine) -> List[Patient]:
    """25 patients, 2 doctors and 2 appointments committed through a separate session."""
    with Session(engine, expire_on_commit=False) as seed:
        patients = make_patients(25)
        doctors = [Doctor(name="Dr. Grey", specialty="surgery"), Doctor(name="Dr. House")]
        seed.add_all(patients + doctors)
        seed.commit()
        seed.add_all([
            Appointment(patient_id=patients[0].id, doctor_id=doctors[0].id, scheduled_at=_at(9)),
            Appointment(patient_id=patients[0].id, doctor_id=doctors[1].id, scheduled_at=_at(10)),
        ])
        seed.commit()
    return patients


@pytest.fixture(autouse=True)
def clear_compiled_queries():
    yield
    compiled_queries.clear()


@pytest.fixture(scope="function")
async def async_engine():
    engine = create_async_engine(
        TEST_ASYNC_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def async_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async test database session."""
    async_session_maker = sessionmaker(
        async_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def async_uow(async_session: AsyncSession) -> AsyncGenerator[AsyncUnitOfWork, None]:
    """Async unit of work with the default (staged) commit mode."""
    unit = AsyncUnitOfWork(session=async_session)
    yield unit
    await unit.close()


@pytest.fixture
async def async_seeded(async_engine) -> List[Patient]:
    async_session_maker = sessionmaker(
        async_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with async_session_maker() as seed:
        patients = make_patients(25)
        doctor = Doctor(name="Dr. Grey", specialty="surgery")
        seed.add_all(patients + [doctor])
        await seed.commit()
        seed.add(Appointment(patient_id=patients[0].id, doctor_id=doctor.id, scheduled_at=_at(9)))
        await seed.commit()
    return patients


@pytest.fixture
async def client(async_engine) -> AsyncGenerator[AsyncClient, None]:
    """Create test client; every request gets its own session."""
    from main import app
    from apps.clinic.api.router import get_db

    async_session_maker = sessionmaker(
        async_engine, class_=AsyncSession, expire_on_commit=False
    )

    async def _get_db():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db

    # Use ASGITransport to test FastAPI app
    from httpx import ASGITransport
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def file_async_engine(tmp_path):
    """Async engine over a file database; each session gets its own connection."""
    from sqlalchemy.pool import NullPool

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'clinic.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()
