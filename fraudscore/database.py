from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from fraudscore.config import settings
from fraudscore.errors import StorageError


connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(settings.database_url, connect_args=connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def commit_or_raise(db, action: str):
    """Commit the session; on failure roll back and raise StorageError."""
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageError(action, e) from e
