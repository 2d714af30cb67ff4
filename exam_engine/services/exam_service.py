# exam_engine/services/exam_service.py
"""
Exam Lifecycle Manager.

Status only ever moves forward: draft -> scheduled -> active -> completed.
Activation happens explicitly or lazily, the first time an operation that
depends on it reads an exam whose start time has passed.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from exam_engine.core.clock import Clock, as_utc, utcnow
from exam_engine.core.config import settings
from exam_engine.core.errors import (
    AuthorizationError,
    NotFoundError,
    ScheduleConflictError,
    StateConflictError,
    ValidationError,
)
from exam_engine.core.security import ROLE_TEACHER, Actor
from exam_engine.models.exam import DEFAULT_INSTRUCTIONS, Exam, ExamStatus
from exam_engine.schemas.exam import ExamCreate, ExamUpdate
from exam_engine.schemas.question import dump_questions
from exam_engine.services import notification_service as notifications
from exam_engine.services.audit_service import record_audit
from exam_engine.services.notification_service import NotificationSink
from exam_engine.services.persistence import commit
from exam_engine.services.schedule_service import conflict_summary, find_schedule_conflicts
from exam_engine.services.scoring_service import recompute_totals

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

EXAM_TRANSITIONS = {
    ExamStatus.DRAFT.value: (ExamStatus.SCHEDULED.value,),
    ExamStatus.SCHEDULED.value: (ExamStatus.ACTIVE.value,),
    ExamStatus.ACTIVE.value: (ExamStatus.COMPLETED.value,),
    ExamStatus.COMPLETED.value: (),
}

EDITABLE_STATUSES = (ExamStatus.DRAFT.value, ExamStatus.SCHEDULED.value)


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def _clean_ids(values) -> list[str]:
    seen = []
    for value in values or []:
        value = str(value).strip()
        if value and value not in seen:
            seen.append(value)
    return seen


def _check_question_ids(questions) -> None:
    ids = [q.id for q in questions]
    if len(ids) != len(set(ids)):
        raise ValidationError("Question ids must be unique within an exam")


def exam_snapshot(exam: Exam) -> dict:
    return {
        "title": exam.title,
        "type": exam.type,
        "subject_id": exam.subject_id,
        "class_ids": list(exam.class_ids or []),
        "status": exam.status,
        "schedule_start": _iso(exam.schedule_start),
        "duration_minutes": exam.duration_minutes,
        "total_points": exam.total_points,
    }


class ExamService:
    def __init__(
        self,
        db: Session,
        *,
        notifier: Optional[NotificationSink] = None,
        log: Optional[logging.Logger] = None,
        clock: Clock = utcnow,
        min_duration_minutes: int = settings.MIN_EXAM_DURATION_MINUTES,
    ):
        self.db = db
        self.notifier = notifier
        self.log = log or logger
        self.clock = clock
        self.min_duration_minutes = min_duration_minutes

    # ------------------------------------------------------------------ helpers

    def _now(self) -> datetime:
        return as_utc(self.clock())

    def _load(self, exam_id: int) -> Exam:
        exam: Optional[Exam] = self.db.get(Exam, exam_id)
        if exam is None or exam.is_deleted:
            raise NotFoundError(f"Exam {exam_id} not found")
        return exam

    def _ensure_owner(self, exam: Exam, actor: Actor, action: str) -> None:
        if exam.teacher_id != actor.user_id and not actor.is_elevated:
            self.log.warning(
                f"Unauthorized attempt to {action} exam {exam.id} by user {actor.user_id}"
            )
            raise AuthorizationError(f"You are not authorized to {action} this exam")

    def _transition(self, exam: Exam, target: ExamStatus) -> str:
        current = exam.status
        if target.value not in EXAM_TRANSITIONS.get(current, ()):
            self.log.warning(f"Rejected exam {exam.id} transition {current} -> {target.value}")
            raise StateConflictError(
                f"Cannot move exam from '{current}' to '{target.value}'",
                current=current,
                attempted=target.value,
            )
        exam.status = target.value
        return current

    def _validate_duration(self, duration_minutes: int) -> None:
        if duration_minutes is None or duration_minutes < self.min_duration_minutes:
            raise ValidationError(
                f"Duration must be at least {self.min_duration_minutes} minutes"
            )

    def _validate_future_start(self, start: datetime) -> datetime:
        start = as_utc(start)
        if start <= self._now():
            raise ValidationError("Exam start time must be in the future")
        return start

    def _raise_on_conflicts(self, exam: Exam, class_ids, start: datetime, duration: int) -> None:
        conflicts = find_schedule_conflicts(
            self.db,
            class_ids=class_ids,
            start=start,
            duration_minutes=duration,
            exclude_exam_id=exam.id,
        )
        if conflicts:
            first = conflicts[0]
            self.log.info(
                f"Schedule conflict for exam {exam.id}: overlaps "
                f"{[c.id for c in conflicts]}"
            )
            raise ScheduleConflictError(
                f'Scheduling conflict with exam "{first.title}" at '
                f"{_iso(first.schedule_start)}",
                [conflict_summary(c) for c in conflicts],
            )

    def _notify(self, event: str, exam: Exam) -> None:
        notifications.dispatch(
            self.notifier,
            event,
            {
                "exam_id": exam.id,
                "title": exam.title,
                "teacher_id": exam.teacher_id,
                "class_ids": list(exam.class_ids or []),
                "status": exam.status,
                "schedule_start": _iso(exam.schedule_start),
            },
            log=self.log,
        )

    # ------------------------------------------------------------------- reads

    def refresh_status(self, exam: Exam) -> bool:
        """Lazy activation: scheduled exams whose start has passed become active."""
        if exam.status != ExamStatus.SCHEDULED.value or exam.schedule_start is None:
            return False
        if self._now() < as_utc(exam.schedule_start):
            return False

        previous = self._transition(exam, ExamStatus.ACTIVE)
        record_audit(
            self.db,
            entity_type="exam",
            entity_id=exam.id,
            action="status_change",
            performed_by=SYSTEM_ACTOR,
            previous_values={"status": previous},
            new_values={"status": exam.status},
        )
        commit(self.db, exam)
        self.log.info(f"Exam {exam.id} activated lazily at its scheduled start")
        self._notify(notifications.EXAM_ACTIVATED, exam)
        return True

    def get(self, exam_id: int) -> Exam:
        """Exam with an authoritative status and a backfilled total."""
        exam = self._load(exam_id)
        self.refresh_status(exam)
        if not exam.total_points and exam.questions:
            recompute_totals(exam)
            commit(self.db, exam)
        return exam

    def list_for_teacher(self, *, actor: Actor, skip: int = 0, limit: int = 100) -> List[Exam]:
        return (
            self.db.query(Exam)
            .filter(Exam.teacher_id == actor.user_id, Exam.is_deleted.is_(False))
            .order_by(Exam.created_at.desc(), Exam.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def list_for_student(self, *, actor: Actor) -> List[Exam]:
        """Scheduled and active exams targeting the student's class, soonest first."""
        if not actor.class_id:
            return []
        candidates = (
            self.db.query(Exam)
            .filter(
                Exam.status.in_((ExamStatus.SCHEDULED.value, ExamStatus.ACTIVE.value)),
                Exam.is_deleted.is_(False),
            )
            .order_by(Exam.schedule_start.asc())
            .all()
        )
        exams = []
        for exam in candidates:
            if str(actor.class_id) not in [str(c) for c in exam.class_ids or []]:
                continue
            self.refresh_status(exam)
            exams.append(exam)
        return exams

    def check_conflicts(
        self,
        *,
        class_ids,
        start: datetime,
        duration_minutes: int,
        exclude_exam_id: Optional[int] = None,
    ) -> list[dict]:
        self._validate_duration(duration_minutes)
        conflicts = find_schedule_conflicts(
            self.db,
            class_ids=_clean_ids(class_ids),
            start=start,
            duration_minutes=duration_minutes,
            exclude_exam_id=exclude_exam_id,
        )
        return [conflict_summary(c) for c in conflicts]

    # --------------------------------------------------------------- mutations

    def create(self, *, actor: Actor, obj_in: ExamCreate) -> Exam:
        if actor.role != ROLE_TEACHER and not actor.is_elevated:
            raise AuthorizationError("Only teachers can create exams")

        teacher_id = obj_in.teacher_id or actor.user_id
        if teacher_id != actor.user_id and not actor.is_elevated:
            raise AuthorizationError("You are not authorized to create exams for other teachers")

        title = (obj_in.title or "").strip()
        if not title:
            raise ValidationError("Title is required")
        subject_id = (obj_in.subject_id or "").strip()
        if not subject_id:
            raise ValidationError("Subject is required")
        class_ids = _clean_ids(obj_in.class_ids)
        if not class_ids:
            raise ValidationError("At least one class must be associated with the exam")
        _check_question_ids(obj_in.questions)

        schedule_start = duration = None
        if obj_in.schedule is not None:
            self._validate_duration(obj_in.schedule.duration_minutes)
            schedule_start = as_utc(obj_in.schedule.start)
            duration = obj_in.schedule.duration_minutes

        exam = Exam(
            title=title,
            type=obj_in.type.value,
            teacher_id=teacher_id,
            subject_id=subject_id,
            class_ids=class_ids,
            instructions=obj_in.instructions or DEFAULT_INSTRUCTIONS,
            schedule_start=schedule_start,
            duration_minutes=duration,
            questions=dump_questions(obj_in.questions),
            status=ExamStatus.DRAFT.value,
            is_deleted=False,
        )
        recompute_totals(exam)

        self.db.add(exam)
        self.db.flush()
        record_audit(
            self.db,
            entity_type="exam",
            entity_id=exam.id,
            action="create",
            performed_by=actor.user_id,
            new_values=exam_snapshot(exam),
        )
        commit(self.db, exam)

        self.log.info(f"Exam {exam.id} created by teacher {actor.user_id}")
        self._notify(notifications.EXAM_CREATED, exam)
        return exam

    def update(self, exam_id: int, *, actor: Actor, patch: ExamUpdate) -> Exam:
        exam = self._load(exam_id)
        self._ensure_owner(exam, actor, "update")
        self.refresh_status(exam)
        if exam.status not in EDITABLE_STATUSES:
            self.log.warning(f"Attempt to modify exam {exam.id} with status {exam.status}")
            raise StateConflictError(
                f"Cannot modify exam with status '{exam.status}'",
                current=exam.status,
                attempted="update",
            )

        previous = exam_snapshot(exam)

        # validate the whole patch before touching the row
        title = exam.title
        if patch.title is not None:
            title = patch.title.strip()
            if not title:
                raise ValidationError("Title cannot be empty")
        subject_id = exam.subject_id
        if patch.subject_id is not None:
            subject_id = patch.subject_id.strip()
            if not subject_id:
                raise ValidationError("Subject cannot be empty")

        class_ids = list(exam.class_ids or [])
        if patch.class_ids is not None:
            class_ids = _clean_ids(patch.class_ids)
            if not class_ids:
                raise ValidationError("At least one class must be associated with the exam")

        start = as_utc(exam.schedule_start)
        duration = exam.duration_minutes
        if patch.schedule is not None:
            new_start = as_utc(patch.schedule.start)
            if new_start != start:
                new_start = self._validate_future_start(new_start)
            self._validate_duration(patch.schedule.duration_minutes)
            start, duration = new_start, patch.schedule.duration_minutes

        if patch.questions is not None:
            _check_question_ids(patch.questions)

        calendar_changed = (
            start != as_utc(exam.schedule_start)
            or duration != exam.duration_minutes
            or class_ids != list(exam.class_ids or [])
        )
        if exam.status == ExamStatus.SCHEDULED.value and calendar_changed:
            self._raise_on_conflicts(exam, class_ids, start, duration)

        exam.title = title
        exam.subject_id = subject_id
        if patch.type is not None:
            exam.type = patch.type.value
        if patch.instructions is not None:
            exam.instructions = patch.instructions
        exam.class_ids = class_ids
        exam.schedule_start = start
        exam.duration_minutes = duration
        if patch.questions is not None:
            exam.questions = dump_questions(patch.questions)
            recompute_totals(exam)

        record_audit(
            self.db,
            entity_type="exam",
            entity_id=exam.id,
            action="update",
            performed_by=actor.user_id,
            previous_values=previous,
            new_values=exam_snapshot(exam),
        )
        commit(self.db, exam)

        self.log.info(f"Exam {exam.id} updated by {actor.user_id}")
        self._notify(notifications.EXAM_UPDATED, exam)
        return exam

    def schedule(
        self,
        exam_id: int,
        *,
        actor: Actor,
        start: datetime,
        duration_minutes: int,
    ) -> Exam:
        exam = self._load(exam_id)
        self._ensure_owner(exam, actor, "schedule")
        if exam.status != ExamStatus.DRAFT.value:
            raise StateConflictError(
                f"Cannot schedule exam with status '{exam.status}'",
                current=exam.status,
                attempted=ExamStatus.SCHEDULED.value,
            )
        start = self._validate_future_start(start)
        self._validate_duration(duration_minutes)
        self._raise_on_conflicts(exam, exam.class_ids or [], start, duration_minutes)

        previous = {
            "status": exam.status,
            "schedule_start": _iso(exam.schedule_start),
            "duration_minutes": exam.duration_minutes,
        }
        exam.schedule_start = start
        exam.duration_minutes = duration_minutes
        self._transition(exam, ExamStatus.SCHEDULED)

        record_audit(
            self.db,
            entity_type="exam",
            entity_id=exam.id,
            action="schedule",
            performed_by=actor.user_id,
            previous_values=previous,
            new_values={
                "status": exam.status,
                "schedule_start": _iso(start),
                "duration_minutes": duration_minutes,
            },
        )
        commit(self.db, exam)

        self.log.info(
            f"Exam {exam.id} scheduled for {_iso(start)} ({duration_minutes} min) by {actor.user_id}"
        )
        self._notify(notifications.EXAM_SCHEDULED, exam)
        return exam

    def activate(self, exam_id: int, *, actor: Optional[Actor] = None) -> Exam:
        exam = self._load(exam_id)
        if actor is not None:
            self._ensure_owner(exam, actor, "activate")
        previous = self._transition(exam, ExamStatus.ACTIVE)

        record_audit(
            self.db,
            entity_type="exam",
            entity_id=exam.id,
            action="status_change",
            performed_by=actor.user_id if actor else SYSTEM_ACTOR,
            previous_values={"status": previous},
            new_values={"status": exam.status},
        )
        commit(self.db, exam)

        self.log.info(f"Exam {exam.id} activated")
        self._notify(notifications.EXAM_ACTIVATED, exam)
        return exam

    def complete(self, exam_id: int, *, actor: Actor) -> Exam:
        exam = self._load(exam_id)
        self._ensure_owner(exam, actor, "complete")
        self.refresh_status(exam)
        previous = self._transition(exam, ExamStatus.COMPLETED)

        record_audit(
            self.db,
            entity_type="exam",
            entity_id=exam.id,
            action="status_change",
            performed_by=actor.user_id,
            previous_values={"status": previous},
            new_values={"status": exam.status},
        )
        commit(self.db, exam)

        self.log.info(f"Exam {exam.id} marked completed by {actor.user_id}")
        self._notify(notifications.EXAM_COMPLETED, exam)
        return exam

    def delete(self, exam_id: int, *, actor: Actor) -> None:
        exam = self._load(exam_id)
        self._ensure_owner(exam, actor, "delete")
        if exam.status != ExamStatus.DRAFT.value:
            raise StateConflictError(
                f"Cannot delete exam with status '{exam.status}'. Only 'draft' exams can be deleted.",
                current=exam.status,
                attempted="deleted",
            )

        exam.is_deleted = True
        record_audit(
            self.db,
            entity_type="exam",
            entity_id=exam.id,
            action="delete",
            performed_by=actor.user_id,
            previous_values={"status": exam.status},
        )
        commit(self.db, exam)

        self.log.info(f"Exam {exam.id} deleted by {actor.user_id}")
        self._notify(notifications.EXAM_DELETED, exam)
