# tests/conftest.py
import os

# Settings are read at import time, so they must be in place first
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("VALIDATE_CONFIG_ON_IMPORT", "false")

from datetime import timedelta
from types import SimpleNamespace

import jwt
import pytest
from httpx import AsyncClient, ASGITransport

from classquest.core.config import JWT_SECRET_KEY, JWT_ALGORITHM
from classquest.core.database import Base, build_engine, build_sessionmaker, get_session
from classquest.core.timeutils import utcnow
from classquest.users.models.users import User, UserRole
from classquest.attendance.schemas.sessions import AttendanceSessionCreate
from classquest.attendance.crud.sessions import create_session


# Make anyio run on asyncio (so our async fixtures work everywhere)
@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine(tmp_path):
    """One SQLite file per test so separate sessions really are separate connections"""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'classquest.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def users(session_factory):
    """
    Directory used by most tests:

    tutor -> alice, bob; other_tutor -> carol; assistant works for tutor.
    """
    async with session_factory() as session:
        admin = User(username="admin", first_name="Ada", role=UserRole.ADMIN)
        tutor = User(username="tutor", first_name="Tom", last_name="Tutor", role=UserRole.TUTOR)
        other_tutor = User(username="other", first_name="Olga", role=UserRole.TUTOR)
        session.add_all([admin, tutor, other_tutor])
        await session.flush()

        assistant = User(
            username="assistant",
            first_name="Asya",
            role=UserRole.ASISTAN,
            assisted_tutor_id=tutor.id,
        )
        alice = User(username="alice", first_name="Alice", last_name="Aydin", tutor_id=tutor.id, role=UserRole.STUDENT)
        bob = User(username="bob", first_name="Bob", last_name="Bulut", tutor_id=tutor.id, role=UserRole.STUDENT)
        carol = User(username="carol", first_name="Carol", last_name="Cetin", tutor_id=other_tutor.id, role=UserRole.STUDENT)
        session.add_all([assistant, alice, bob, carol])
        await session.commit()

        return SimpleNamespace(
            admin=admin.id,
            tutor=tutor.id,
            other_tutor=other_tutor.id,
            assistant=assistant.id,
            alice=alice.id,
            bob=bob.id,
            carol=carol.id,
        )


async def _make_session(session_factory, issuer_id, expired=False):
    async with session_factory() as session:
        attendance_session = await create_session(
            session,
            AttendanceSessionCreate(title="Week 1", session_date=utcnow()),
            issuer_id,
        )
        if expired:
            attendance_session.qr_code_expires_at = utcnow() - timedelta(days=1)
            await session.commit()
        return SimpleNamespace(
            id=attendance_session.id, token=attendance_session.qr_code_token
        )


@pytest.fixture
async def open_session(session_factory, users):
    return await _make_session(session_factory, users.tutor)


@pytest.fixture
async def expired_session(session_factory, users):
    return await _make_session(session_factory, users.tutor, expired=True)


def _auth_headers(user_id, role):
    token = jwt.encode(
        {"sub": str(user_id), "role": role.value if hasattr(role, "value") else role},
        JWT_SECRET_KEY,
        algorithm=JWT_ALGORITHM,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """Build a bearer header for (user_id, role)"""
    return _auth_headers


@pytest.fixture
async def client(session_factory):
    from classquest.main import app

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()

