import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from . import settings
from .errors import ConnectivityError, is_connectivity_error

logger = logging.getLogger(__name__)

# SQLite connections are shared across the request threads FastAPI uses.
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

# Create the SQLAlchemy engine.
engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)

# Create a configured "Session" class for database interactions.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for declarative ORM models.
Base = declarative_base()


def get_db():
    """Dependency to get a DB session for a single request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        # Ensure the session is always closed after the request is finished.
        db.close()


@contextmanager
def transaction(db: Session):
    """
    Runs a block of writes as one unit: commits when the block finishes,
    rolls everything back when anything inside it raises.

    Storage failures that look like connectivity problems are re-raised as
    ConnectivityError; other exceptions propagate unchanged.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        if is_connectivity_error(exc):
            logger.warning("Database unreachable: %s", exc)
            raise ConnectivityError() from exc
        raise
    except Exception:
        db.rollback()
        raise
