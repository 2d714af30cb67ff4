# exam_engine/services/persistence.py
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from exam_engine.core.errors import PersistenceError

logger = logging.getLogger(__name__)


def commit(db: Session, *refresh) -> None:
    """Commit the unit of work, surfacing storage failures as PersistenceError."""
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Commit failed: {e}", exc_info=True)
        raise PersistenceError("Unexpected storage failure") from e
    for obj in refresh:
        db.refresh(obj)
