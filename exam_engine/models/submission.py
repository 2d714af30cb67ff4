# exam_engine/models/submission.py
import enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.sql import func

from exam_engine.db.base import Base


class SubmissionStatus(str, enum.Enum):
    IN_PROGRESS = "in-progress"
    SUBMITTED = "submitted"
    AUTO_SUBMITTED = "auto-submitted"
    GRADED = "graded"


FINALIZED_STATUSES = (SubmissionStatus.SUBMITTED.value, SubmissionStatus.AUTO_SUBMITTED.value)


class Submission(Base):
    __tablename__ = "submissions"

    id = Column(Integer, primary_key=True, index=True)

    exam_id = Column(Integer, ForeignKey("exams.id"), nullable=False, index=True)
    student_id = Column(String(64), nullable=False, index=True)

    # one slot per exam question, in exam order:
    # {question_id, answer_text, score, graded, feedback, time_spent}
    answers = Column(JSON, nullable=False, default=list)

    # in-progress / submitted / auto-submitted / graded
    status = Column(
        String(20), nullable=False, default=SubmissionStatus.IN_PROGRESS.value, index=True
    )

    # integrity monitoring
    violations = Column(Integer, nullable=False, default=0)
    violation_log = Column(JSON, nullable=False, default=list)
    # audit trail of autosave payloads, not authoritative state
    autosave_log = Column(JSON, nullable=False, default=list)

    started_at = Column(DateTime(timezone=True), nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    time_spent_seconds = Column(Integer, nullable=False, default=0)

    # scoring
    score = Column(Float, nullable=False, default=0)
    total_points = Column(Integer, nullable=False, default=0)
    percentage = Column(Integer, nullable=False, default=0)
    grade_letter = Column(String(2), nullable=True)

    # teacher grading
    graded_by = Column(String(64), nullable=True)
    graded_at = Column(DateTime(timezone=True), nullable=True)

    is_deleted = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


# one live attempt per (exam, student); soft-deleted rows do not count
Index(
    "uq_submissions_exam_student_live",
    Submission.exam_id,
    Submission.student_id,
    unique=True,
    postgresql_where=Submission.is_deleted == False,  # noqa: E712
    sqlite_where=Submission.is_deleted == False,  # noqa: E712
)
