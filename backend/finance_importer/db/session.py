"""Engine and session factory configuration."""

import logging

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from finance_importer.core.config import get_settings

logger = logging.getLogger(__name__)

SessionLocal = sessionmaker(autoflush=False, autocommit=False)

_engine: Engine | None = None


def build_engine(database_url: str) -> Engine:
    """Create an engine, tuned for long-running imports when on PostgreSQL."""
    if not database_url.startswith("postgresql"):
        return create_engine(database_url, echo=False, pool_pre_ping=True)

    # pool_pre_ping: test connections before using (handles stale connections)
    # pool_recycle: recycle connections after 30 minutes
    return create_engine(
        database_url,
        echo=False,
        poolclass=QueuePool,
        pool_pre_ping=True,
        pool_recycle=1800,
        pool_size=5,
        max_overflow=10,
        connect_args={
            "connect_timeout": 10,
            "keepalives": 1,
            "keepalives_idle": 30,
            "keepalives_interval": 10,
            "keepalives_count": 5,
        },
    )


def get_engine() -> Engine:
    """Return the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings().database_url)
        logger.info(f"Created {_engine.dialect.name} engine")
        SessionLocal.configure(bind=_engine)
    return _engine


def reset_engine() -> None:
    """Drop the cached engine so the next call rebuilds it (used by tests)."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None


def get_session_factory() -> sessionmaker:
    get_engine()
    return SessionLocal

