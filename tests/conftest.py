"""Pytest fixtures for workforce engine tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Generator

import pytest
from sqlalchemy.orm import Session, sessionmaker

from workforce_engine.collaborators import FixedClock, InMemoryUserDirectory, User
from workforce_engine.database import create_db_engine, create_schema
from workforce_engine.engine import WorkforceEngine
from workforce_engine.models import LeaveType

# In-memory SQLite shared through a StaticPool, with SAVEPOINT support
TEST_DATABASE_URL = "sqlite://"

PERIOD = "2024-03"
MONDAY = date(2024, 3, 4)
SUNDAY = date(2024, 3, 3)


@dataclass
class RecordingNotifications:
    """Notification sink that keeps what it was asked to send."""

    sent: list[tuple[str, str, str, str | None]] = field(default_factory=list)
    fail: bool = False

    def notify(self, user_id: str, type: str, message: str, link: str | None = None) -> None:
        if self.fail:
            raise RuntimeError("notification transport down")
        self.sent.append((user_id, type, message, link))

    def types_for(self, user_id: str) -> list[str]:
        return [t for (u, t, _, _) in self.sent if u == user_id]


@pytest.fixture
def db_engine():
    """Fresh in-memory database per test."""
    engine = create_db_engine(TEST_DATABASE_URL)
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker[Session]:
    return sessionmaker(db_engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """Create a database session for each test."""
    with session_factory() as session:
        yield session
        session.rollback()


@pytest.fixture
def directory() -> InMemoryUserDirectory:
    """Admin, HR, one manager with two reports, and an unmanaged employee."""
    return InMemoryUserDirectory.from_users(
        [
            User(user_id="admin", full_name="Ada Admin", role="admin"),
            User(user_id="hr", full_name="Hari HR", role="hr"),
            User(user_id="manager", full_name="Mona Manager", role="manager"),
            User(user_id="alice", full_name="Alice Doe", role="employee", manager_id="manager"),
            User(user_id="bob", full_name="Bob Roe", role="employee", manager_id="manager"),
            User(user_id="carol", full_name="Carol Poe", role="employee"),
            User(user_id="gone", full_name="Gone Away", role="employee", is_active=False),
        ]
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 3, 4, 9, 5, tzinfo=timezone.utc))


@pytest.fixture
def notifications() -> RecordingNotifications:
    return RecordingNotifications()


@pytest.fixture
def engine(session, directory, notifications, clock) -> WorkforceEngine:
    """Facade wired to the test session."""
    return WorkforceEngine(session, directory, notifications=notifications, clock=clock)


@pytest.fixture
def casual(engine) -> LeaveType:
    """Casual leave, ten days per period."""
    return engine.ledger.create_leave_type("casual", "Casual Leave", default_annual_allocation=120)


@pytest.fixture
def half_day_leave(engine) -> LeaveType:
    return engine.ledger.create_leave_type(
        "half", "Half-day Leave", default_annual_allocation=Decimal("48"), is_half_day=True
    )


@pytest.fixture
def earned(engine) -> LeaveType:
    """Carry-forward leave type."""
    return engine.ledger.create_leave_type(
        "earned", "Earned Leave", default_annual_allocation=60, carry_forward=True
    )


def at(day: date, hour: int, minute: int = 0) -> datetime:
    """Naive local wall-clock time on a day."""
    return datetime(day.year, day.month, day.day, hour, minute)
