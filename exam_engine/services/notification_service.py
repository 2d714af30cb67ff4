# exam_engine/services/notification_service.py
"""
Fire-and-forget notifications about exam and submission events.

The services hold a ``NotificationSink`` handed to them by the composition
root and call ``dispatch`` after a successful commit. Delivery problems are
logged and never fail the operation that triggered them.
"""
import logging
from typing import Any, Protocol

from exam_engine.core.config import settings

logger = logging.getLogger(__name__)

EXAM_CREATED = "exam.created"
EXAM_UPDATED = "exam.updated"
EXAM_DELETED = "exam.deleted"
EXAM_SCHEDULED = "exam.scheduled"
EXAM_ACTIVATED = "exam.activated"
EXAM_COMPLETED = "exam.completed"
SUBMISSION_RECEIVED = "submission.received"
SUBMISSION_GRADED = "submission.graded"


class NotificationSink(Protocol):
    def notify(self, event: str, payload: dict[str, Any]) -> None:
        ...


class NullNotificationSink:
    def notify(self, event: str, payload: dict[str, Any]) -> None:
        return None


class LoggingNotificationSink:
    def notify(self, event: str, payload: dict[str, Any]) -> None:
        logger.info(f"notification event={event} payload={payload}")


class QueueNotificationSink:
    """Hands events to the RQ ``notifications`` queue for a worker to deliver."""

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        from exam_engine.workers.queue import enqueue_notification

        enqueue_notification(event, payload)


def build_notification_sink(backend: str | None = None) -> NotificationSink:
    backend = (backend or settings.NOTIFICATION_BACKEND).lower()
    if backend == "queue":
        return QueueNotificationSink()
    if backend == "log":
        return LoggingNotificationSink()
    if backend == "none":
        return NullNotificationSink()
    raise ValueError(f"unknown notification backend: {backend}")


def dispatch(
    sink: NotificationSink | None,
    event: str,
    payload: dict[str, Any],
    *,
    log: logging.Logger | None = None,
) -> None:
    if sink is None:
        return
    try:
        sink.notify(event, payload)
    except Exception:
        (log or logger).error(f"Failed to dispatch notification {event}", exc_info=True)
