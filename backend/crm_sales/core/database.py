"""
Database Configuration
"""
from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator

from crm_sales.core.config import settings

# Get the properly formatted database URL
db_url = settings.database_url

# Create engine
engine = create_engine(
    db_url,
    connect_args={"check_same_thread": False} if "sqlite" in db_url else {},
    echo=settings.DEBUG
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base model
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.
    Rolls back whatever the request left uncommitted and closes the session.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def apply_lock_timeout(db: Session, timeout_ms: int = None):
    """
    Bound the time a transaction waits on row locks.
    PostgreSQL only; SQLite serializes writers with its own busy timeout.
    """
    timeout_ms = timeout_ms if timeout_ms is not None else settings.LOCK_TIMEOUT_MS
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text(f"SET LOCAL lock_timeout = {int(timeout_ms)}"))


def init_db(bind=None):
    """Initialize database tables"""
    # Import all models to register them with Base
    from crm_sales import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
