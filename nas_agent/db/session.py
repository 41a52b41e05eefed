"""
Database engine and session management.

The engine is created once at startup by init_engine(); request handlers
receive a session through the get_session() dependency.
"""

import logging
from typing import Iterator, Optional

from sqlalchemy import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from nas_agent.config import settings

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None


def init_engine(database_url: Optional[str] = None) -> Engine:
    """Create the engine and all tables. Replaces any previous engine."""
    global _engine
    
    url = database_url or settings.database_url
    kwargs = {}
    if url.startswith("sqlite"):
        # Handlers run on the worker thread pool
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    
    _engine = create_engine(url, echo=False, **kwargs)
    SQLModel.metadata.create_all(_engine)
    logger.info(f"Database ready at {url}")
    return _engine


def get_engine() -> Engine:
    """Return the engine, creating it from settings on first use."""
    if _engine is None:
        return init_engine()
    return _engine


def get_session() -> Iterator[Session]:
    """FastAPI dependency yielding a session per request."""
    with Session(get_engine()) as session:
        yield session
