# exam_engine/schemas/exam.py
from datetime import datetime

from pydantic import BaseModel, Field

from exam_engine.models.exam import ExamStatus, ExamType
from exam_engine.schemas.question import Question


class ScheduleIn(BaseModel):
    start: datetime
    duration_minutes: int


class ExamCreate(BaseModel):
    title: str
    type: ExamType = ExamType.QUIZ
    subject_id: str
    class_ids: list[str]
    # must match the authenticated teacher when given
    teacher_id: str | None = None
    schedule: ScheduleIn | None = None
    questions: list[Question] = Field(default_factory=list)
    instructions: str | None = None


class ExamUpdate(BaseModel):
    title: str | None = None
    type: ExamType | None = None
    subject_id: str | None = None
    class_ids: list[str] | None = None
    schedule: ScheduleIn | None = None
    questions: list[Question] | None = None
    instructions: str | None = None


class ExamPublic(BaseModel):
    """Teacher view, including correct answers."""
    id: int
    title: str
    type: str
    teacher_id: str
    subject_id: str
    class_ids: list[str]
    instructions: str
    schedule_start: datetime | None = None
    duration_minutes: int | None = None
    questions: list[Question]
    total_points: int
    status: ExamStatus
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class ExamStudentView(BaseModel):
    """Student view: questions without correct answers."""
    id: int
    title: str
    type: str
    subject_id: str
    class_ids: list[str]
    instructions: str
    schedule_start: datetime | None = None
    duration_minutes: int | None = None
    questions: list[dict]
    total_points: int
    status: ExamStatus


class ConflictCheckIn(BaseModel):
    class_ids: list[str]
    start: datetime
    duration_minutes: int
    exclude_exam_id: int | None = None


class ScheduleConflictOut(BaseModel):
    id: int
    title: str
    status: ExamStatus
    schedule_start: datetime
    duration_minutes: int
    class_ids: list[str]
