"""
Database connection and session management.
"""

from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from noos.config.settings import settings
from noos.models.models import Base

# Determine if using SQLite
is_sqlite = settings.DATABASE_URL.startswith("sqlite")

# Workers share the engine across threads
connect_args = {"check_same_thread": False, "timeout": 30} if is_sqlite else {}
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=not is_sqlite,
    echo=False,
    connect_args=connect_args
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database sessions.
    Usage in FastAPI:
        @router.get("/tasks")
        def list_tasks(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(factory=SessionLocal) -> Iterator[Session]:
    """Transactional scope for work running outside a request."""
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def create_tables():
    """Create all database tables."""
    Base.metadata.create_all(bind=engine)


def drop_tables():
    """Drop all database tables. USE WITH CAUTION."""
    Base.metadata.drop_all(bind=engine)
