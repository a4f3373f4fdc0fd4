"""Database connection and session management."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from workforce_engine.config import get_settings
from workforce_engine.models import Base

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create a database engine.

    SQLite engines get the pysqlite SAVEPOINT fix so per-item
    ``begin_nested()`` sub-transactions behave as on Postgres.
    """
    if database_url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, echo=echo, **kwargs)
        _enable_sqlite_savepoints(engine)
        return engine

    return create_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


def _enable_sqlite_savepoints(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        # let SQLAlchemy emit BEGIN itself
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


# Global engine and session factory
_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def init_db(database_url: str | None = None) -> tuple[Engine, sessionmaker[Session]]:
    """Initialize database engine and session factory."""
    global _engine, _session_factory
    if _engine is None or _session_factory is None:
        _engine = create_db_engine(database_url or get_settings().database_url)
        _session_factory = sessionmaker(
            _engine,
            expire_on_commit=False,
            autoflush=False,
        )
    return _engine, _session_factory


def create_schema(engine: Engine) -> None:
    """Create all tables."""
    Base.metadata.create_all(engine)
