from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from license_server.config import settings


def build_engine(database_url: str) -> Engine:
    """Create an engine; PostgreSQL gets a connection pool, SQLite is allowed across threads."""
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(
        database_url,
        pool_pre_ping=True,  # Verify connections before using them
        pool_size=10,
        max_overflow=20,
    )


engine = build_engine(settings.database_url)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for FastAPI routes to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Run a block as one all-or-nothing unit of work.

    Commits when the block finishes, rolls back and re-raises on any exception.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def get_session_factory():
    """Dependency for routes that open their own sessions (one per worker thread)"""
    return SessionLocal
