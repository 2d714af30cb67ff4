# exam_engine/services/scoring_service.py
"""
Scoring Aggregator.

Pure functions over questions and answer slots; nothing here touches the
database. MCQ answers are auto-scored by exact match, open answers are only
ever scored by a teacher through ``apply_grades``.
"""
from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence, Union

from exam_engine.core.errors import NotFoundError, ValidationError
from exam_engine.schemas.question import McqQuestion, OpenQuestion, parse_questions

AnyQuestion = Union[McqQuestion, OpenQuestion]

# (lower bound on percentage, letter), checked top-down
GRADE_BOUNDARIES = (
    (90, "A+"),
    (80, "A"),
    (75, "B+"),
    (70, "B"),
    (65, "C+"),
    (60, "C"),
    (55, "D+"),
    (50, "D"),
)


def total_points(questions: Iterable[AnyQuestion]) -> int:
    return sum(q.max_score for q in questions)


def recompute_totals(exam) -> int:
    """Refresh ``exam.total_points`` from its stored questions."""
    exam.total_points = total_points(parse_questions(exam.questions))
    return exam.total_points


def empty_answer_slots(questions: Sequence[AnyQuestion]) -> list[dict]:
    return [
        {
            "question_id": q.id,
            "answer_text": "",
            "score": 0,
            "graded": False,
            "feedback": None,
            "time_spent": 0,
        }
        for q in questions
    ]


def merge_answers(slots: list[dict], payload: Iterable) -> list[dict]:
    """
    Copy of ``slots`` with each ``{question_id, answer_text, time_spent}``
    from ``payload`` written into the slot with the same question id.
    Unknown question ids are ignored.
    """
    merged = [dict(slot) for slot in slots]
    index = {slot["question_id"]: slot for slot in merged}
    for item in payload or []:
        slot = index.get(item.question_id)
        if slot is None:
            continue
        slot["answer_text"] = item.answer_text or ""
        if item.time_spent is not None:
            slot["time_spent"] = item.time_spent
    return merged


def autograde_answer(question: AnyQuestion, slot: dict) -> dict:
    graded = dict(slot)
    if isinstance(question, McqQuestion):
        # exact, case-sensitive match; no trimming
        graded["score"] = question.max_score if slot.get("answer_text") == question.correct_answer else 0
        graded["graded"] = True
    elif isinstance(question, OpenQuestion):
        pass
    else:
        raise TypeError(f"unsupported question variant: {type(question).__name__}")
    return graded


def autograde(questions: Sequence[AnyQuestion], slots: list[dict]) -> list[dict]:
    by_id = {q.id: q for q in questions}
    result = []
    for slot in slots:
        question = by_id.get(slot["question_id"])
        result.append(autograde_answer(question, slot) if question is not None else dict(slot))
    return result


def clamp_score(score: float, max_score: int) -> float:
    return min(max(score, 0), max_score)


def apply_grades(questions: Sequence[AnyQuestion], slots: list[dict], grades: Iterable) -> list[dict]:
    """
    Teacher grading: each ``{question_id, score, feedback}`` sets the slot's
    score (clamped to ``[0, max_score]``), feedback and ``graded``.
    """
    by_id = {q.id: q for q in questions}
    result = [dict(slot) for slot in slots]
    index = {slot["question_id"]: slot for slot in result}
    for grade in grades:
        slot = index.get(grade.question_id)
        question = by_id.get(grade.question_id)
        if slot is None or question is None:
            raise NotFoundError(f"question {grade.question_id} not found in this submission")
        if not math.isfinite(grade.score):
            raise ValidationError(f"Score for question {grade.question_id} must be a finite number")
        slot["score"] = clamp_score(grade.score, question.max_score)
        if grade.feedback is not None:
            slot["feedback"] = grade.feedback
        slot["graded"] = True
    return result


def submission_score(slots: Iterable[dict]) -> float:
    return sum(slot.get("score") or 0 for slot in slots)


def percentage(score: float, points: int) -> int:
    if points <= 0:
        return 0
    ratio = Decimal(str(score)) / Decimal(points) * 100
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def grade_letter(pct: float) -> str:
    for bound, letter in GRADE_BOUNDARIES:
        if pct >= bound:
            return letter
    return "F"
