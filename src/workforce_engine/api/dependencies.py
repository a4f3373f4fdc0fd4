"""FastAPI dependencies for dependency injection."""

from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from workforce_engine.engine import WorkforceEngine


def get_db_session(request: Request) -> Generator[Session, None, None]:
    """Get database session dependency."""
    session_factory = request.app.state.session_factory
    with session_factory() as session:
        try:
            yield session
        finally:
            session.close()


def get_actor_id(x_actor_id: Annotated[str | None, Header()] = None) -> str:
    """Extract the acting user from header."""
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Actor-ID header is required",
        )
    return x_actor_id.strip()


# Type aliases for cleaner dependency injection
DbSession = Annotated[Session, Depends(get_db_session)]
ActorId = Annotated[str, Depends(get_actor_id)]


def get_engine(request: Request, db: DbSession) -> Generator[WorkforceEngine, None, None]:
    """Build a facade bound to the request's session.

    Routes commit inside the deferred-events block, so notifications go out
    only for committed requests. A route that raises drops its events.
    """
    state = request.app.state
    engine = WorkforceEngine(
        db,
        state.directory,
        notifications=state.notifications,
        policy=state.settings.attendance_policy,
        clock=state.clock,
    )
    with engine.deferred_events():
        yield engine


Engine = Annotated[WorkforceEngine, Depends(get_engine)]
