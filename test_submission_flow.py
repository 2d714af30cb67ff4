"""
Submission lifecycle: start/resume, autosave, submit, auto-submit,
violations, deadline enforcement and teacher grading.
"""

from datetime import timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from conftest import mcq, open_question
from exam_engine.core.clock import as_utc
from exam_engine.core.errors import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from exam_engine.models.submission import SubmissionStatus
from exam_engine.schemas.submission import AnswerIn, AutoSubmitReason, GradeIn
from exam_engine.services.audit_service import list_audit_entries
from exam_engine.services.submission_service import SubmissionService


def answers(**by_question):
    return [AnswerIn(question_id=qid, answer_text=text) for qid, text in by_question.items()]


@pytest.fixture
def active_exam(make_active_exam):
    return make_active_exam(duration_minutes=60)


@pytest.fixture
def mixed_exam(make_active_exam):
    """MCQ worth 10 plus an open question worth 10."""
    return make_active_exam(
        duration_minutes=60,
        questions=[mcq("q1", "B"), open_question("q2")],
    )


@pytest.fixture
def started(submission_service, active_exam, student):
    return submission_service.start(active_exam.id, actor=student).submission


# ----------------------------------------------------------------- start


def test_start_creates_in_progress_submission(submission_service, active_exam, student, clock):
    result = submission_service.start(active_exam.id, actor=student)

    assert result.created is True
    assert result.time_remaining == 60 * 60 * 1000
    sub = result.submission
    assert sub.status == SubmissionStatus.IN_PROGRESS.value
    assert sub.student_id == student.user_id
    assert as_utc(sub.started_at) == clock.now
    assert [a["question_id"] for a in sub.answers] == ["q1", "q2"]
    assert all(a["answer_text"] == "" for a in sub.answers)
    assert sub.total_points == 20


def test_restart_resumes_with_remaining_time(submission_service, started, active_exam, student, clock):
    clock.advance(minutes=10)
    result = submission_service.start(active_exam.id, actor=student)

    assert result.created is False
    assert result.submission.id == started.id
    assert result.time_remaining == 50 * 60 * 1000


def test_one_submission_per_student(submission_service, started, active_exam, student, classmate, teacher):
    submission_service.start(active_exam.id, actor=student)
    other = submission_service.start(active_exam.id, actor=classmate).submission

    assert other.id != started.id
    assert len(submission_service.list_for_exam(active_exam.id, actor=teacher)) == 2


def test_cannot_restart_after_submitting(submission_service, started, active_exam, student):
    submission_service.submit(started.id, actor=student)
    with pytest.raises(StateConflictError) as exc_info:
        submission_service.start(active_exam.id, actor=student)
    assert exc_info.value.message == "Already submitted"


def test_cannot_start_inactive_exam(submission_service, make_exam, exam_service, teacher, student, clock):
    exam = make_exam()
    with pytest.raises(StateConflictError):
        submission_service.start(exam.id, actor=student)

    exam_service.schedule(exam.id, actor=teacher, start=clock.now + timedelta(hours=1), duration_minutes=30)
    with pytest.raises(StateConflictError):
        submission_service.start(exam.id, actor=student)


def test_start_triggers_lazy_activation(submission_service, make_exam, exam_service, teacher, student, clock):
    exam = make_exam()
    exam_service.schedule(exam.id, actor=teacher, start=clock.now + timedelta(hours=1), duration_minutes=30)
    clock.advance(hours=1, seconds=1)

    result = submission_service.start(exam.id, actor=student)
    assert result.created is True
    assert exam_service.get(exam.id).status == "active"


def test_outsider_cannot_start(submission_service, active_exam, outsider):
    with pytest.raises(AuthorizationError):
        submission_service.start(active_exam.id, actor=outsider)


def test_start_unknown_exam(submission_service, student):
    with pytest.raises(NotFoundError):
        submission_service.start(999, actor=student)


# ------------------------------------------------------------------ save


def test_save_merges_and_ignores_unknown_questions(submission_service, started, student):
    submission_service.save_answers(started.id, actor=student, answers=answers(q1="A"))
    sub = submission_service.save_answers(
        started.id, actor=student, answers=answers(q2="C", q7="ghost")
    )

    assert [(a["question_id"], a["answer_text"]) for a in sub.answers] == [("q1", "A"), ("q2", "C")]
    assert len(sub.autosave_log) == 2
    assert sub.autosave_log[-1]["snapshot"][0]["question_id"] == "q2"


def test_save_is_idempotent(submission_service, started, student):
    first = list(submission_service.save_answers(started.id, actor=student, answers=answers(q1="B")).answers)
    second = submission_service.save_answers(started.id, actor=student, answers=answers(q1="B")).answers
    assert first == second


def test_save_by_another_student_is_forbidden(submission_service, started, classmate):
    with pytest.raises(AuthorizationError):
        submission_service.save_answers(started.id, actor=classmate, answers=answers(q1="B"))


def test_save_after_submit_is_rejected(submission_service, started, student):
    submission_service.submit(started.id, actor=student)
    with pytest.raises(StateConflictError):
        submission_service.save_answers(started.id, actor=student, answers=answers(q1="B"))


# ---------------------------------------------------------------- submit


def test_submit_scores_mcq(submission_service, started, student, clock, notifier):
    submission_service.save_answers(started.id, actor=student, answers=answers(q1="B", q2="A"))
    clock.advance(minutes=12)

    sub = submission_service.submit(started.id, actor=student)

    assert sub.status == SubmissionStatus.SUBMITTED.value
    assert sub.score == 10
    assert sub.total_points == 20
    assert sub.percentage == 50
    assert sub.grade_letter == "D"
    assert sub.time_spent_seconds == 12 * 60
    assert as_utc(sub.submitted_at) == clock.now
    assert all(a["graded"] for a in sub.answers)
    assert notifier.names()[-1] == "submission.received"


def test_submit_merges_final_answers(submission_service, started, student):
    sub = submission_service.submit(started.id, actor=student, answers=answers(q1="B", q2="C"))
    assert sub.score == 20
    assert sub.percentage == 100
    assert sub.grade_letter == "A+"


def test_submit_twice_is_rejected(submission_service, started, student):
    submission_service.submit(started.id, actor=student)
    with pytest.raises(StateConflictError):
        submission_service.submit(started.id, actor=student)


def test_auto_submit_scores_like_submit(submission_service, started, student):
    sub = submission_service.auto_submit(
        started.id,
        actor=student,
        reason=AutoSubmitReason(type="timeout", details="Timer reached zero"),
        answers=answers(q1="B", q2="A"),
    )
    assert sub.status == SubmissionStatus.AUTO_SUBMITTED.value
    assert sub.score == 10
    assert sub.percentage == 50
    assert sub.violation_log[-1]["type"] == "timeout"
    assert sub.violations == 0


def test_submit_writes_audit_row(db_session, submission_service, started, student):
    submission_service.submit(started.id, actor=student)
    actions = [e.action for e in list_audit_entries(db_session, entity_type="submission", entity_id=started.id)]
    assert actions == ["create", "status_change"]


# ------------------------------------------------------------ violations


def test_violation_threshold_auto_submits(submission_service, started, student):
    submission_service.save_answers(started.id, actor=student, answers=answers(q1="B"))

    first = submission_service.log_violation(started.id, actor=student, violation_type="tab-switch")
    assert first.violations == 1
    assert first.should_auto_submit is False
    assert first.submission.status == SubmissionStatus.IN_PROGRESS.value

    second = submission_service.log_violation(
        started.id, actor=student, violation_type="copy-attempt", details="ctrl+c"
    )
    assert second.violations == 2
    assert second.should_auto_submit is True
    assert second.submission.status == SubmissionStatus.AUTO_SUBMITTED.value
    assert second.submission.score == 10
    assert [v["type"] for v in second.submission.violation_log] == ["tab-switch", "copy-attempt"]

    with pytest.raises(StateConflictError):
        submission_service.log_violation(started.id, actor=student, violation_type="tab-switch")
    assert submission_service.get(started.id, actor=student).violations == 2


# -------------------------------------------------------------- deadline


def test_writes_within_grace_period_are_accepted(submission_service, started, student, clock):
    clock.advance(minutes=60, seconds=20)
    sub = submission_service.save_answers(started.id, actor=student, answers=answers(q1="B"))
    assert sub.status == SubmissionStatus.IN_PROGRESS.value


def test_write_after_deadline_auto_submits(submission_service, started, student, clock, notifier):
    submission_service.save_answers(started.id, actor=student, answers=answers(q1="B"))
    clock.advance(minutes=61)

    with pytest.raises(StateConflictError):
        submission_service.save_answers(started.id, actor=student, answers=answers(q2="C"))

    sub = submission_service.get(started.id, actor=student)
    assert sub.status == SubmissionStatus.AUTO_SUBMITTED.value
    assert sub.score == 10
    assert sub.violation_log[-1]["type"] == "timeout"
    assert notifier.names()[-1] == "submission.received"


def test_late_auto_submit_drops_late_answers(submission_service, started, student, clock):
    clock.advance(hours=2)
    sub = submission_service.auto_submit(started.id, actor=student, answers=answers(q1="B", q2="C"))
    assert sub.status == SubmissionStatus.AUTO_SUBMITTED.value
    assert sub.score == 0


def test_resume_after_deadline_is_rejected(submission_service, started, active_exam, student, clock):
    clock.advance(hours=2)
    with pytest.raises(StateConflictError):
        submission_service.start(active_exam.id, actor=student)
    assert submission_service.get(started.id, actor=student).status == "auto-submitted"


def test_late_auto_submit_keeps_client_reason(submission_service, started, student, clock):
    clock.advance(hours=2)
    sub = submission_service.auto_submit(
        started.id,
        actor=student,
        reason=AutoSubmitReason(type="hidden-tab", details="Tab was hidden when time ran out"),
    )
    assert sub.status == SubmissionStatus.AUTO_SUBMITTED.value
    assert [v["type"] for v in sub.violation_log] == ["hidden-tab", "timeout"]
    assert sub.violation_log[0]["details"] == "Tab was hidden when time ran out"


def test_sweep_reaches_overdue_attempts_behind_long_ones(
    submission_service, make_active_exam, student, outsider, clock
):
    long_exam = make_active_exam(duration_minutes=180)
    long_attempt = submission_service.start(long_exam.id, actor=student).submission
    short_exam = make_active_exam(duration_minutes=30, class_ids=["class-z"])
    short_attempt = submission_service.start(short_exam.id, actor=outsider).submission

    clock.advance(minutes=45)
    assert submission_service.expire_overdue(batch_size=1) == 1
    assert short_attempt.status == SubmissionStatus.AUTO_SUBMITTED.value
    assert long_attempt.status == SubmissionStatus.IN_PROGRESS.value


def test_expire_overdue_sweep(submission_service, active_exam, student, classmate, clock):
    first = submission_service.start(active_exam.id, actor=student).submission
    clock.advance(minutes=30)
    second = submission_service.start(active_exam.id, actor=classmate).submission

    clock.advance(minutes=31)
    assert submission_service.expire_overdue() == 1
    assert first.status == SubmissionStatus.AUTO_SUBMITTED.value
    assert second.status == SubmissionStatus.IN_PROGRESS.value

    clock.advance(minutes=30)
    assert submission_service.expire_overdue() == 1
    assert submission_service.expire_overdue() == 0


# --------------------------------------------------------------- grading


def test_grading_open_questions(submission_service, mixed_exam, student, teacher, notifier):
    sub = submission_service.start(mixed_exam.id, actor=student).submission
    sub = submission_service.submit(sub.id, actor=student, answers=answers(q1="B", q2="Because."))
    assert sub.score == 10
    assert sub.answers[1]["graded"] is False

    graded = submission_service.grade_open_questions(
        sub.id, grader=teacher, grades=[GradeIn(question_id="q2", score=7, feedback="Good")]
    )
    assert graded.status == SubmissionStatus.GRADED.value
    assert graded.score == 17
    assert graded.percentage == 85
    assert graded.grade_letter == "A"
    assert graded.graded_by == teacher.user_id
    assert graded.answers[1]["feedback"] == "Good"
    assert notifier.names()[-1] == "submission.graded"


def test_grading_is_idempotent_and_allows_regrade(submission_service, mixed_exam, student, teacher):
    sub = submission_service.start(mixed_exam.id, actor=student).submission
    submission_service.submit(sub.id, actor=student, answers=answers(q1="B"))

    grades = [GradeIn(question_id="q2", score=4)]
    once = submission_service.grade_open_questions(sub.id, grader=teacher, grades=grades).score
    twice = submission_service.grade_open_questions(sub.id, grader=teacher, grades=grades).score
    assert once == twice == 14

    regraded = submission_service.grade_open_questions(
        sub.id, grader=teacher, grades=[GradeIn(question_id="q2", score=25)]
    )
    # clamped to the question's max score
    assert regraded.score == 20


def test_cannot_grade_in_progress(submission_service, mixed_exam, student, teacher):
    sub = submission_service.start(mixed_exam.id, actor=student).submission
    with pytest.raises(StateConflictError):
        submission_service.grade_open_questions(
            sub.id, grader=teacher, grades=[GradeIn(question_id="q2", score=4)]
        )


def test_only_owner_or_elevated_can_grade(submission_service, mixed_exam, student, other_teacher, dean):
    sub = submission_service.start(mixed_exam.id, actor=student).submission
    submission_service.submit(sub.id, actor=student)

    with pytest.raises(AuthorizationError):
        submission_service.grade_open_questions(
            sub.id, grader=other_teacher, grades=[GradeIn(question_id="q2", score=4)]
        )
    graded = submission_service.grade_open_questions(
        sub.id, grader=dean, grades=[GradeIn(question_id="q2", score=4)]
    )
    assert graded.graded_by == dean.user_id


def test_grading_unknown_question(submission_service, mixed_exam, student, teacher):
    sub = submission_service.start(mixed_exam.id, actor=student).submission
    submission_service.submit(sub.id, actor=student)
    with pytest.raises(NotFoundError):
        submission_service.grade_open_questions(
            sub.id, grader=teacher, grades=[GradeIn(question_id="q9", score=4)]
        )


# ----------------------------------------------------------------- reads


def test_read_access(submission_service, started, student, classmate, teacher, other_teacher):
    assert submission_service.get(started.id, actor=student).id == started.id
    assert submission_service.get(started.id, actor=teacher).id == started.id
    with pytest.raises(AuthorizationError):
        submission_service.get(started.id, actor=classmate)
    with pytest.raises(AuthorizationError):
        submission_service.get(started.id, actor=other_teacher)
    with pytest.raises(AuthorizationError):
        submission_service.list_for_exam(started.exam_id, actor=other_teacher)


def test_list_for_student(submission_service, started, student, classmate):
    assert [s.id for s in submission_service.list_for_student(actor=student)] == [started.id]
    assert submission_service.list_for_student(actor=classmate) == []


def test_competing_saves_resolve_last_write_wins(db_session, submission_service, started, student, clock):
    # a second tab holding its own session
    other_db = sessionmaker(bind=db_session.get_bind())()
    try:
        other_tab = SubmissionService(other_db, clock=clock)
        submission_service.save_answers(started.id, actor=student, answers=answers(q1="A"))
        other_tab.save_answers(started.id, actor=student, answers=answers(q1="C"))
    finally:
        other_db.close()

    db_session.expire_all()
    assert submission_service.get(started.id, actor=student).answers[0]["answer_text"] == "C"


def test_non_finite_grade_is_rejected(submission_service, mixed_exam, student, teacher):
    sub = submission_service.start(mixed_exam.id, actor=student).submission
    submission_service.submit(sub.id, actor=student, answers=answers(q1="B"))

    grade = GradeIn.model_construct(question_id="q2", score=float("nan"), feedback=None)
    with pytest.raises(ValidationError):
        submission_service.grade_open_questions(sub.id, grader=teacher, grades=[grade])

    unchanged = submission_service.get(sub.id, actor=teacher)
    assert unchanged.status == SubmissionStatus.SUBMITTED.value
    assert unchanged.score == 10
