# exam_engine/models/exam.py
import enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    Text,
)
from sqlalchemy.sql import func

from exam_engine.db.base import Base

DEFAULT_INSTRUCTIONS = "Read all questions carefully before answering."


class ExamStatus(str, enum.Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"


class ExamType(str, enum.Enum):
    ASSIGNMENT1 = "assignment1"
    ASSIGNMENT2 = "assignment2"
    HOMEWORK = "homework"
    EXAM = "exam"
    MIDTERM = "midterm"
    FINAL = "final"
    QUIZ = "quiz"
    PRACTICE = "practice"


class Exam(Base):
    __tablename__ = "exams"

    id = Column(Integer, primary_key=True, index=True)

    title = Column(String(255), nullable=False)
    teacher_id = Column(String(64), nullable=False, index=True)
    subject_id = Column(String(64), nullable=False, index=True)
    # list[str] of class references
    class_ids = Column(JSON, nullable=False, default=list)

    type = Column(String(20), nullable=False, default=ExamType.QUIZ.value)
    instructions = Column(Text, nullable=False, default=DEFAULT_INSTRUCTIONS)

    # schedule: both set or both null; required once status leaves draft
    schedule_start = Column(DateTime(timezone=True), nullable=True)
    duration_minutes = Column(Integer, nullable=True)

    # ordered list of serialized Question variants (see schemas.question)
    questions = Column(JSON, nullable=False, default=list)
    total_points = Column(Integer, nullable=False, default=0)

    # draft / scheduled / active / completed
    status = Column(String(20), nullable=False, default=ExamStatus.DRAFT.value, index=True)
    is_deleted = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
