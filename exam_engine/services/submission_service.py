# exam_engine/services/submission_service.py
"""
Submission Lifecycle Manager.

    in-progress --submit---------> submitted
    in-progress --timeout--------> auto-submitted
    in-progress --violation@N----> auto-submitted
    submitted / auto-submitted --grade--> graded

Only in-progress submissions accept student writes. Finalization always runs
the same autograde pass, whichever path reaches it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exam_engine.core.clock import Clock, as_utc, utcnow
from exam_engine.core.config import settings
from exam_engine.core.errors import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
)
from exam_engine.core.security import Actor
from exam_engine.models.exam import Exam, ExamStatus
from exam_engine.models.submission import FINALIZED_STATUSES, Submission, SubmissionStatus
from exam_engine.schemas.question import parse_questions
from exam_engine.services import notification_service as notifications
from exam_engine.services import scoring_service as scoring
from exam_engine.services.audit_service import record_audit
from exam_engine.services.exam_service import SYSTEM_ACTOR, ExamService
from exam_engine.services.notification_service import NotificationSink
from exam_engine.services.persistence import commit

logger = logging.getLogger(__name__)

GRADABLE_STATUSES = FINALIZED_STATUSES + (SubmissionStatus.GRADED.value,)


@dataclass
class StartResult:
    submission: Submission
    time_remaining: int  # milliseconds
    created: bool


@dataclass
class ViolationResult:
    submission: Submission
    violations: int
    should_auto_submit: bool


class SubmissionService:
    def __init__(
        self,
        db: Session,
        *,
        exams: Optional[ExamService] = None,
        notifier: Optional[NotificationSink] = None,
        log: Optional[logging.Logger] = None,
        clock: Clock = utcnow,
        violation_threshold: int = settings.VIOLATION_THRESHOLD,
        enforce_deadline: bool = settings.ENFORCE_SUBMISSION_DEADLINE,
        grace_seconds: int = settings.DEADLINE_GRACE_SECONDS,
    ):
        self.db = db
        self.notifier = notifier
        self.log = log or logger
        self.clock = clock
        self.exams = exams or ExamService(db, notifier=notifier, log=self.log, clock=clock)
        self.violation_threshold = violation_threshold
        self.enforce_deadline = enforce_deadline
        self.grace_seconds = grace_seconds

    # ------------------------------------------------------------------ helpers

    def _now(self) -> datetime:
        return as_utc(self.clock())

    def _load(self, submission_id: int) -> Submission:
        submission: Optional[Submission] = self.db.get(Submission, submission_id)
        if submission is None or submission.is_deleted:
            raise NotFoundError(f"Submission {submission_id} not found")
        return submission

    def _load_own(self, submission_id: int, actor: Actor) -> Submission:
        submission = self._load(submission_id)
        if submission.student_id != actor.user_id:
            self.log.warning(
                f"User {actor.user_id} tried to act on submission {submission_id} "
                f"owned by {submission.student_id}"
            )
            raise AuthorizationError("This submission belongs to another student")
        return submission

    def _exam_for(self, submission: Submission) -> Exam:
        exam: Optional[Exam] = self.db.get(Exam, submission.exam_id)
        if exam is None:
            raise NotFoundError(f"Exam {submission.exam_id} not found")
        return exam

    def _require_in_progress(self, submission: Submission, attempted: str) -> None:
        if submission.status != SubmissionStatus.IN_PROGRESS.value:
            raise StateConflictError(
                f"Submission is not in progress (status '{submission.status}')",
                current=submission.status,
                attempted=attempted,
            )

    def _can_review(self, exam: Exam, actor: Actor) -> bool:
        return exam.teacher_id == actor.user_id or actor.is_elevated

    def _notify(self, event: str, submission: Submission) -> None:
        notifications.dispatch(
            self.notifier,
            event,
            {
                "submission_id": submission.id,
                "exam_id": submission.exam_id,
                "student_id": submission.student_id,
                "status": submission.status,
                "score": submission.score,
                "total_points": submission.total_points,
            },
            log=self.log,
        )

    def _log_entry(self, violation_type: str, details: str) -> dict:
        return {"type": violation_type, "timestamp": self._now().isoformat(), "details": details}

    # ------------------------------------------------------------------ timing

    def deadline(self, submission: Submission, exam: Exam) -> datetime:
        return as_utc(submission.started_at) + timedelta(minutes=exam.duration_minutes or 0)

    def time_remaining(self, submission: Submission, exam: Exam) -> int:
        """Milliseconds left on the attempt's own clock, never negative."""
        remaining = self.deadline(submission, exam) - self._now()
        return max(0, int(remaining.total_seconds() * 1000))

    def is_overdue(self, submission: Submission, exam: Exam) -> bool:
        if submission.status != SubmissionStatus.IN_PROGRESS.value:
            return False
        cutoff = self.deadline(submission, exam) + timedelta(seconds=self.grace_seconds)
        return self._now() > cutoff

    def _expire_if_overdue(self, submission: Submission, exam: Exam) -> bool:
        """Finalize an attempt whose time ran out. Returns True if it did."""
        if not self.enforce_deadline or not self.is_overdue(submission, exam):
            return False

        submission.violation_log = list(submission.violation_log or []) + [
            self._log_entry("timeout", "Time limit exceeded")
        ]
        self._finalize(submission, exam, SubmissionStatus.AUTO_SUBMITTED)
        record_audit(
            self.db,
            entity_type="submission",
            entity_id=submission.id,
            action="status_change",
            performed_by=SYSTEM_ACTOR,
            previous_values={"status": SubmissionStatus.IN_PROGRESS.value},
            new_values={"status": submission.status, "reason": "timeout"},
        )
        commit(self.db, submission)
        self.log.info(f"Submission {submission.id} auto-submitted after its deadline")
        self._notify(notifications.SUBMISSION_RECEIVED, submission)
        return True

    def _guard_student_write(self, submission: Submission, exam: Exam, attempted: str) -> None:
        self._require_in_progress(submission, attempted)
        if self._expire_if_overdue(submission, exam):
            raise StateConflictError(
                "Exam time has expired; the submission was auto-submitted",
                current=submission.status,
                attempted=attempted,
            )

    # ------------------------------------------------------------ finalization

    def _finalize(self, submission: Submission, exam: Exam, status: SubmissionStatus) -> None:
        questions = parse_questions(exam.questions)
        submission.answers = scoring.autograde(questions, list(submission.answers or []))

        points = exam.total_points or scoring.total_points(questions)
        submission.score = scoring.submission_score(submission.answers)
        submission.total_points = points
        submission.percentage = scoring.percentage(submission.score, points)
        submission.grade_letter = scoring.grade_letter(submission.percentage)

        now = self._now()
        submission.submitted_at = now
        submission.time_spent_seconds = max(
            0, round((now - as_utc(submission.started_at)).total_seconds())
        )
        submission.status = status.value

    # -------------------------------------------------------------- operations

    def _live_submission(self, exam_id: int, student_id: str) -> Optional[Submission]:
        return (
            self.db.query(Submission)
            .filter(
                Submission.exam_id == exam_id,
                Submission.student_id == student_id,
                Submission.is_deleted.is_(False),
            )
            .first()
        )

    def start(self, exam_id: int, *, actor: Actor) -> StartResult:
        exam = self.exams.get(exam_id)
        if exam.status != ExamStatus.ACTIVE.value:
            raise StateConflictError(
                "Exam is not active",
                current=exam.status,
                attempted="start",
            )
        if not actor.class_id or str(actor.class_id) not in [str(c) for c in exam.class_ids or []]:
            raise AuthorizationError("You are not enrolled in a class this exam targets")

        existing = self._live_submission(exam.id, actor.user_id)
        if existing is not None:
            return self._resume(existing, exam)

        submission = Submission(
            exam_id=exam.id,
            student_id=actor.user_id,
            answers=scoring.empty_answer_slots(parse_questions(exam.questions)),
            status=SubmissionStatus.IN_PROGRESS.value,
            violations=0,
            violation_log=[],
            autosave_log=[],
            started_at=self._now(),
            score=0,
            total_points=exam.total_points,
            percentage=0,
            time_spent_seconds=0,
            is_deleted=False,
        )
        self.db.add(submission)
        try:
            self.db.flush()
            record_audit(
                self.db,
                entity_type="submission",
                entity_id=submission.id,
                action="create",
                performed_by=actor.user_id,
                new_values={"exam_id": exam.id, "status": submission.status},
            )
            self.db.commit()
        except IntegrityError:
            # a concurrent start won the unique (exam, student) slot
            self.db.rollback()
            existing = self._live_submission(exam.id, actor.user_id)
            if existing is None:
                raise
            return self._resume(existing, exam)
        self.db.refresh(submission)

        self.log.info(f"Student {actor.user_id} started exam {exam.id} (submission {submission.id})")
        return StartResult(
            submission=submission,
            time_remaining=(exam.duration_minutes or 0) * 60 * 1000,
            created=True,
        )

    def _resume(self, submission: Submission, exam: Exam) -> StartResult:
        if submission.status != SubmissionStatus.IN_PROGRESS.value:
            raise StateConflictError(
                "Already submitted",
                current=submission.status,
                attempted="start",
            )
        if self._expire_if_overdue(submission, exam):
            raise StateConflictError(
                "Exam time has expired; the submission was auto-submitted",
                current=submission.status,
                attempted="start",
            )
        return StartResult(
            submission=submission,
            time_remaining=self.time_remaining(submission, exam),
            created=False,
        )

    def save_answers(self, submission_id: int, *, actor: Actor, answers: Iterable) -> Submission:
        submission = self._load_own(submission_id, actor)
        exam = self._exam_for(submission)
        self._guard_student_write(submission, exam, "save")

        answers = list(answers or [])
        submission.answers = scoring.merge_answers(list(submission.answers or []), answers)
        submission.autosave_log = list(submission.autosave_log or []) + [
            {
                "timestamp": self._now().isoformat(),
                "snapshot": [a.model_dump(mode="json") for a in answers],
            }
        ]
        commit(self.db, submission)

        self.log.debug(f"Autosaved {len(answers)} answers for submission {submission.id}")
        return submission

    def submit(
        self,
        submission_id: int,
        *,
        actor: Actor,
        answers: Optional[Iterable] = None,
    ) -> Submission:
        submission = self._load_own(submission_id, actor)
        exam = self._exam_for(submission)
        self._guard_student_write(submission, exam, SubmissionStatus.SUBMITTED.value)

        if answers:
            submission.answers = scoring.merge_answers(list(submission.answers or []), answers)
        self._finalize(submission, exam, SubmissionStatus.SUBMITTED)
        record_audit(
            self.db,
            entity_type="submission",
            entity_id=submission.id,
            action="status_change",
            performed_by=actor.user_id,
            previous_values={"status": SubmissionStatus.IN_PROGRESS.value},
            new_values={"status": submission.status, "score": submission.score},
        )
        commit(self.db, submission)

        self.log.info(f"Submission {submission.id} submitted by {actor.user_id}")
        self._notify(notifications.SUBMISSION_RECEIVED, submission)
        return submission

    def auto_submit(
        self,
        submission_id: int,
        *,
        actor: Actor,
        reason=None,
        answers: Optional[Iterable] = None,
    ) -> Submission:
        """
        Client-reported expiry. Past the grace window late answers are dropped,
        but the client's reason is still logged ahead of the timeout entry.
        """
        submission = self._load_own(submission_id, actor)
        exam = self._exam_for(submission)
        self._require_in_progress(submission, SubmissionStatus.AUTO_SUBMITTED.value)

        if reason is not None:
            submission.violation_log = list(submission.violation_log or []) + [
                self._log_entry(reason.type or "other", reason.details or "Auto-submitted")
            ]
        if self._expire_if_overdue(submission, exam):
            return submission

        if answers:
            submission.answers = scoring.merge_answers(list(submission.answers or []), answers)
        self._finalize(submission, exam, SubmissionStatus.AUTO_SUBMITTED)
        record_audit(
            self.db,
            entity_type="submission",
            entity_id=submission.id,
            action="status_change",
            performed_by=actor.user_id,
            previous_values={"status": SubmissionStatus.IN_PROGRESS.value},
            new_values={"status": submission.status, "score": submission.score},
        )
        commit(self.db, submission)

        self.log.info(f"Submission {submission.id} auto-submitted by client")
        self._notify(notifications.SUBMISSION_RECEIVED, submission)
        return submission

    def log_violation(
        self,
        submission_id: int,
        *,
        actor: Actor,
        violation_type: str,
        details: Optional[str] = None,
    ) -> ViolationResult:
        submission = self._load_own(submission_id, actor)
        exam = self._exam_for(submission)
        self._guard_student_write(submission, exam, "log_violation")

        submission.violations = (submission.violations or 0) + 1
        submission.violation_log = list(submission.violation_log or []) + [
            self._log_entry(violation_type, details or "")
        ]

        # the submission turns terminal here, so this fires exactly once
        should_auto_submit = submission.violations >= self.violation_threshold
        if should_auto_submit:
            self._finalize(submission, exam, SubmissionStatus.AUTO_SUBMITTED)
            record_audit(
                self.db,
                entity_type="submission",
                entity_id=submission.id,
                action="status_change",
                performed_by=SYSTEM_ACTOR,
                previous_values={"status": SubmissionStatus.IN_PROGRESS.value},
                new_values={"status": submission.status, "reason": "violation_threshold"},
            )
        commit(self.db, submission)

        if should_auto_submit:
            self.log.warning(
                f"Submission {submission.id} auto-submitted after "
                f"{submission.violations} violations"
            )
            self._notify(notifications.SUBMISSION_RECEIVED, submission)
        else:
            self.log.info(
                f"Violation '{violation_type}' logged on submission {submission.id} "
                f"({submission.violations}/{self.violation_threshold})"
            )
        return ViolationResult(
            submission=submission,
            violations=submission.violations,
            should_auto_submit=should_auto_submit,
        )

    def grade_open_questions(
        self,
        submission_id: int,
        *,
        grader: Actor,
        grades: Iterable,
    ) -> Submission:
        """
        Teacher grading. Regrading a graded submission re-applies the grades
        and recomputes the totals.
        """
        submission = self._load(submission_id)
        exam = self._exam_for(submission)
        if not self._can_review(exam, grader):
            self.log.warning(
                f"User {grader.user_id} is not allowed to grade submission {submission.id}"
            )
            raise AuthorizationError("You are not authorized to grade this submission")
        if submission.status not in GRADABLE_STATUSES:
            raise StateConflictError(
                f"Cannot grade a submission with status '{submission.status}'",
                current=submission.status,
                attempted=SubmissionStatus.GRADED.value,
            )

        questions = parse_questions(exam.questions)
        previous = {
            "status": submission.status,
            "score": submission.score,
            "answers": list(submission.answers or []),
        }
        submission.answers = scoring.apply_grades(questions, list(submission.answers or []), grades)

        points = exam.total_points or scoring.total_points(questions)
        submission.score = scoring.submission_score(submission.answers)
        submission.total_points = points
        submission.percentage = scoring.percentage(submission.score, points)
        submission.grade_letter = scoring.grade_letter(submission.percentage)
        submission.status = SubmissionStatus.GRADED.value
        submission.graded_by = grader.user_id
        submission.graded_at = self._now()

        record_audit(
            self.db,
            entity_type="submission",
            entity_id=submission.id,
            action="grade",
            performed_by=grader.user_id,
            previous_values=previous,
            new_values={
                "status": submission.status,
                "score": submission.score,
                "percentage": submission.percentage,
            },
        )
        commit(self.db, submission)

        self.log.info(
            f"Submission {submission.id} graded by {grader.user_id}: "
            f"{submission.score}/{submission.total_points}"
        )
        self._notify(notifications.SUBMISSION_GRADED, submission)
        return submission

    # ------------------------------------------------------------------- reads

    def get(self, submission_id: int, *, actor: Actor) -> Submission:
        submission = self._load(submission_id)
        exam = self._exam_for(submission)
        if submission.student_id != actor.user_id and not self._can_review(exam, actor):
            raise AuthorizationError("You are not authorized to view this submission")
        self._expire_if_overdue(submission, exam)
        return submission

    def list_for_student(self, *, actor: Actor, skip: int = 0, limit: int = 100) -> List[Submission]:
        return (
            self.db.query(Submission)
            .filter(Submission.student_id == actor.user_id, Submission.is_deleted.is_(False))
            .order_by(Submission.started_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def list_for_exam(
        self,
        exam_id: int,
        *,
        actor: Actor,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Submission]:
        exam = self.exams.get(exam_id)
        if not self._can_review(exam, actor):
            raise AuthorizationError("You are not authorized to view submissions for this exam")
        return (
            self.db.query(Submission)
            .filter(Submission.exam_id == exam.id, Submission.is_deleted.is_(False))
            .order_by(Submission.started_at.asc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def expire_overdue(self, *, batch_size: int = 500) -> int:
        """
        Deadline sweep: auto-submit in-progress attempts past their deadline.

        Walks every in-progress attempt in id order, ``batch_size`` rows at a
        time, so attempts that are not yet due never hide overdue ones.
        """
        expired = 0
        last_id = 0
        while True:
            batch = (
                self.db.query(Submission)
                .filter(
                    Submission.status == SubmissionStatus.IN_PROGRESS.value,
                    Submission.is_deleted.is_(False),
                    Submission.id > last_id,
                )
                .order_by(Submission.id.asc())
                .limit(batch_size)
                .all()
            )
            if not batch:
                break
            for submission in batch:
                if self._expire_if_overdue(submission, self._exam_for(submission)):
                    expired += 1
            last_id = batch[-1].id
        if expired:
            self.log.info(f"Deadline sweep auto-submitted {expired} submissions")
        return expired
