"""External collaborators consumed by the engine.

The engine only depends on these protocols. Concrete implementations here are
the in-process defaults used by the API, the CLI and tests.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class User:
    """A user as seen by the engine."""

    user_id: str
    full_name: str
    role: str = "employee"
    email: str | None = None
    manager_id: str | None = None
    is_active: bool = True


@runtime_checkable
class UserDirectory(Protocol):
    """Resolves actor identities and reporting hierarchy."""

    def list_users(self) -> list[User]:
        """Return all known users."""
        ...

    def get_user(self, user_id: str) -> User | None:
        """Return a user or None if unknown."""
        ...


@runtime_checkable
class NotificationService(Protocol):
    """Fire-and-forget notification sink."""

    def notify(self, user_id: str, type: str, message: str, link: str | None = None) -> None:
        """Send a notification; may raise, callers swallow failures."""
        ...


@runtime_checkable
class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        """Current timestamp."""
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


@dataclass
class FixedClock:
    """Clock pinned to a settable instant."""

    current: datetime

    def now(self) -> datetime:
        return self.current

    def advance_to(self, when: datetime) -> None:
        """Move the clock to a new instant."""
        self.current = when


@dataclass
class InMemoryUserDirectory:
    """Dictionary-backed user directory."""

    users: dict[str, User] = field(default_factory=dict)

    @classmethod
    def from_users(cls, users: list[User]) -> InMemoryUserDirectory:
        return cls(users={u.user_id: u for u in users})

    @classmethod
    def from_json_file(cls, path: str | Path) -> InMemoryUserDirectory:
        """Load users from a JSON array of objects with User fields."""
        with open(path, encoding="utf-8") as f:
            rows = json.load(f)
        return cls.from_users([User(**row) for row in rows])

    def add(self, user: User) -> None:
        self.users[user.user_id] = user

    def list_users(self) -> list[User]:
        return list(self.users.values())

    def get_user(self, user_id: str) -> User | None:
        return self.users.get(user_id)


class LoggingNotificationService:
    """Notification sink that only writes to the log."""

    def notify(self, user_id: str, type: str, message: str, link: str | None = None) -> None:
        logger.info("notify user=%s type=%s message=%s link=%s", user_id, type, message, link)
