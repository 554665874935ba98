"""Database connection and session management."""
import logging
import threading
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from .config import get_settings
from .models import Base

logger = logging.getLogger("ticketflow-core.database")

settings = get_settings()

# Every ticket/project/comment write and every snapshot restore holds this
# lock for its whole read-validate-write unit.
write_lock = threading.RLock()


def enable_sqlite_foreign_keys(target: Engine) -> None:
    """Switch on foreign key enforcement for every new SQLite connection."""

    @event.listens_for(target, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        sqlite_engine = create_engine(url, connect_args={"check_same_thread": False})
        enable_sqlite_foreign_keys(sqlite_engine)
        return sqlite_engine

    return create_engine(
        url,
        pool_pre_ping=True,          # Verify connections before using
        pool_size=3,
        max_overflow=7,
        pool_recycle=3600,
        pool_timeout=30,
    )


# Create database engine
engine = _build_engine(settings.database_url)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function to get database session.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Optional[Engine] = None, seed_samples: Optional[bool] = None) -> None:
    """
    Create all tables and seed the well-known projects.

    Args:
        bind: Engine to initialise (defaults to the configured engine)
        seed_samples: Also seed the sample projects (defaults to settings)
    """
    from . import crud

    target = bind or engine
    Base.metadata.create_all(bind=target)

    if seed_samples is None:
        seed_samples = settings.seed_sample_projects

    db = Session(bind=target, autoflush=False)
    try:
        created = crud.ensure_default_projects(db, include_samples=seed_samples)
        logger.info(f"Database ready ({created} project(s) seeded)")
    finally:
        db.close()
