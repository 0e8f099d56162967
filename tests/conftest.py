"""
Pytest Configuration and Fixtures

Shared test fixtures for unit, API and integration tests.

Tests run against a throwaway SQLite file per test unless TEST_DATABASE_URL
points at a PostgreSQL database.
"""

import os
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import configure_mappers

from alcovia.core.database import build_sessionmaker, get_db
from alcovia.core.models import (  # noqa: F401 - imported for SQLAlchemy registration
    Base,
    CheckInLog,
    InterventionTicket,
    Student,
    StudentStatus,
)
from alcovia.escalation.gateway import EscalationGateway, EscalationRequest, EscalationResult
from alcovia.intervention.state_machine import InterventionController
from alcovia.notifications.dispatcher import NotificationDispatcher

# Ensure all mappers are configured
configure_mappers()

START = datetime(2025, 1, 6, 9, 0, tzinfo=UTC)


class FakeClock:
    """Deterministic clock; every reading moves time forward by ``step``."""

    def __init__(self, start: datetime = START, step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now += self.step
        return current

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingGateway(EscalationGateway):
    """Escalation gateway that records requests instead of calling out."""

    def __init__(self, result: EscalationResult | None = None):
        super().__init__(webhook_url="http://workflow.test/escalate", timeout=1.0)
        self.result = result or EscalationResult(attempted=True, succeeded=True)
        self.requests: list[EscalationRequest] = []

    async def dispatch(self, request: EscalationRequest) -> EscalationResult:
        self.requests.append(request)
        return self.result


class RecordingSession:
    """Push session that keeps every message it is sent."""

    def __init__(self, fail: bool = False):
        self.messages: list[dict[str, Any]] = []
        self.fail = fail

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise ConnectionResetError("socket closed")
        self.messages.append(data)


@pytest.fixture
async def async_engine(tmp_path):
    """Create async engine for testing."""
    database_url = os.getenv("TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path}/alcovia.db")
    engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        if engine.dialect.name == "postgresql":
            await conn.execute(text("DROP SCHEMA public CASCADE"))
            await conn.execute(text("CREATE SCHEMA public"))
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    """Sessionmaker configured the way the application configures it."""
    return build_sessionmaker(async_engine)


@pytest.fixture
async def db_session(session_factory) -> AsyncSession:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher()


@pytest.fixture
def controller(session_factory, dispatcher, gateway, clock) -> InterventionController:
    """State machine wired to the test database and fakes."""
    return InterventionController(
        session_factory=session_factory,
        dispatcher=dispatcher,
        gateway=gateway,
        window=timedelta(hours=12),
        default_task="Redo the practice quiz.",
        system_contact="mentors@alcovia.test",
        clock=clock,
    )


@pytest.fixture
async def test_student(db_session) -> Student:
    """Student '123', active."""
    student = Student(
        student_id="123",
        name="Test Student",
        email="student@test.com",
        status=StudentStatus.ACTIVE.value,
    )
    db_session.add(student)
    await db_session.commit()
    return student


@pytest.fixture
async def client(session_factory, controller, dispatcher):
    """HTTP client bound to the app with test services on app.state."""
    from alcovia.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.state.controller = controller
    app.state.dispatcher = dispatcher
    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def recording_session():
    """Factory for push sessions that record what they are sent."""
    return RecordingSession
