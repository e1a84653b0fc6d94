"""
Database session management with SQLAlchemy.

The engine is created on first use so that importing the package never opens
a connection pool; unit tests bind their own engines.
"""
import threading
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from rfqdispatch.core.config import settings

Base = declarative_base()

SessionLocal = sessionmaker(autocommit=False, autoflush=False)

_engine: Optional[Engine] = None
_engine_lock = threading.Lock()


def build_engine(database_url: Optional[str] = None) -> Engine:
    """Create an engine with the pool settings used in production."""
    url = database_url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        return create_engine(url)
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1800,
    )


def get_engine() -> Engine:
    """Return the process-wide engine, creating it on first call."""
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = build_engine()
                SessionLocal.configure(bind=_engine)
    return _engine


@contextmanager
def get_db_context(session_factory=None) -> Generator[Session, None, None]:
    """Context manager for database session."""
    if session_factory is None:
        get_engine()
        session_factory = SessionLocal
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
