# exam_engine/services/schedule_service.py
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from exam_engine.core.clock import as_utc
from exam_engine.models.exam import Exam, ExamStatus

# only exams that hold a slot on the calendar can conflict
BLOCKING_STATUSES = (ExamStatus.SCHEDULED.value, ExamStatus.ACTIVE.value)


def exam_end(start: datetime, duration_minutes: int) -> datetime:
    return start + timedelta(minutes=duration_minutes)


def intervals_overlap(s1: datetime, e1: datetime, s2: datetime, e2: datetime) -> bool:
    """Half-open ``[s1, e1)`` and ``[s2, e2)`` overlap."""
    return s1 < e2 and s2 < e1


def conflict_summary(exam: Exam) -> dict:
    return {
        "id": exam.id,
        "title": exam.title,
        "status": exam.status,
        "schedule_start": as_utc(exam.schedule_start),
        "duration_minutes": exam.duration_minutes,
        "class_ids": list(exam.class_ids or []),
    }


def find_schedule_conflicts(
    db: Session,
    *,
    class_ids: Iterable[str],
    start: datetime,
    duration_minutes: int,
    exclude_exam_id: Optional[int] = None,
) -> List[Exam]:
    """
    Scheduled/active exams sharing at least one class with ``class_ids`` whose
    interval overlaps ``[start, start + duration)``.

    Read-only; safe to call speculatively while validating input.
    """
    wanted = {str(c) for c in class_ids}
    if not wanted:
        return []

    start = as_utc(start)
    end = exam_end(start, duration_minutes)

    query = db.query(Exam).filter(
        Exam.status.in_(BLOCKING_STATUSES),
        Exam.is_deleted.is_(False),
        Exam.schedule_start.isnot(None),
    )
    if exclude_exam_id is not None:
        query = query.filter(Exam.id != exclude_exam_id)

    conflicts = []
    # class_ids is a JSON column, so class membership is checked here
    for other in query.order_by(Exam.schedule_start.asc()).all():
        if not wanted.intersection(str(c) for c in other.class_ids or []):
            continue
        other_start = as_utc(other.schedule_start)
        other_end = exam_end(other_start, other.duration_minutes or 0)
        if intervals_overlap(start, end, other_start, other_end):
            conflicts.append(other)
    return conflicts
