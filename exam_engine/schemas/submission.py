# exam_engine/schemas/submission.py
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from exam_engine.models.submission import SubmissionStatus

ViolationType = Literal[
    "tab-switch",
    "hidden-tab",
    "copy-attempt",
    "fullscreen-exit",
    "timeout",
    "other",
]


class StartExamIn(BaseModel):
    exam_id: int


class AnswerIn(BaseModel):
    question_id: str
    answer_text: str = ""
    time_spent: int | None = Field(default=None, ge=0)  # seconds


class SaveAnswersIn(BaseModel):
    answers: list[AnswerIn]


class SubmitIn(BaseModel):
    answers: list[AnswerIn] | None = None


class AutoSubmitReason(BaseModel):
    type: ViolationType | None = None
    details: str | None = None


class AutoSubmitIn(BaseModel):
    reason: AutoSubmitReason | None = None
    answers: list[AnswerIn] | None = None


class ViolationIn(BaseModel):
    type: ViolationType
    details: str | None = None


class GradeIn(BaseModel):
    question_id: str
    score: float = Field(allow_inf_nan=False)
    feedback: str | None = None


class GradeOpenQuestionsIn(BaseModel):
    grades: list[GradeIn] = Field(min_length=1)


class AnswerSlot(BaseModel):
    question_id: str
    answer_text: str = ""
    score: float = 0
    graded: bool = False
    feedback: str | None = None
    time_spent: int = 0


class ViolationEntry(BaseModel):
    type: str
    timestamp: datetime
    details: str = ""


class SubmissionPublic(BaseModel):
    """What the student sees of their own attempt."""
    id: int
    exam_id: int
    student_id: str
    status: SubmissionStatus
    answers: list[AnswerSlot]
    violations: int
    violation_log: list[ViolationEntry]
    started_at: datetime
    submitted_at: datetime | None = None
    time_spent_seconds: int
    score: float
    total_points: int
    percentage: int
    grade_letter: str | None = None
    graded_at: datetime | None = None

    model_config = {"from_attributes": True}


class SubmissionDetail(SubmissionPublic):
    """Teacher view, with the grader and the autosave audit trail."""
    graded_by: str | None = None
    autosave_log: list[dict]


class StartExamOut(BaseModel):
    submission: SubmissionPublic
    time_remaining: int  # milliseconds


class SaveAnswersOut(BaseModel):
    message: str = "Answers saved"
    last_saved: datetime


class ViolationOut(BaseModel):
    violations: int
    should_auto_submit: bool
    status: SubmissionStatus
