# exam_engine/api/deps.py
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from exam_engine.core.clock import Clock, utcnow
from exam_engine.db.session import get_db
from exam_engine.services.exam_service import ExamService
from exam_engine.services.notification_service import NotificationSink, build_notification_sink
from exam_engine.services.submission_service import SubmissionService


@lru_cache
def get_notifier() -> NotificationSink:
    return build_notification_sink()


def get_clock() -> Clock:
    return utcnow


def get_exam_service(
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
) -> ExamService:
    return ExamService(db, notifier=notifier, clock=clock)


def get_submission_service(
    exams: ExamService = Depends(get_exam_service),
) -> SubmissionService:
    return SubmissionService(exams.db, exams=exams, notifier=exams.notifier, clock=exams.clock)
