# exam_engine/db/session.py
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from exam_engine.core.config import settings


def engine_options(database_url: str) -> dict:
    """Driver-specific create_engine() keyword arguments."""
    if make_url(database_url).get_backend_name() == "sqlite":
        # TestClient and the dev server touch the connection from other threads
        return {"connect_args": {"check_same_thread": False}}
    # long-lived API and worker processes outlive idle server-side connections
    return {"pool_pre_ping": True}


engine = create_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session for FastAPI dependencies."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
