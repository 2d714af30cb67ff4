# exam_engine/schemas/question.py
"""
Questions are a tagged variant keyed on ``kind``:

- ``mcq``: options (at least two) and a correct answer that is one of them,
  auto-graded by exact match.
- ``open``: free text, scored only by a teacher.
"""
from typing import Annotated, Any, Iterable, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, Field, TypeAdapter, model_validator


def _new_question_id() -> str:
    return uuid4().hex


class QuestionBase(BaseModel):
    id: str = Field(default_factory=_new_question_id, min_length=1)
    text: str = Field(min_length=1)
    max_score: int = Field(gt=0)


class McqQuestion(QuestionBase):
    kind: Literal["mcq"] = "mcq"
    options: list[str] = Field(min_length=2)
    correct_answer: str

    @model_validator(mode="after")
    def correct_answer_is_an_option(self):
        if self.correct_answer not in self.options:
            raise ValueError("correct_answer must be one of options")
        return self


class OpenQuestion(QuestionBase):
    kind: Literal["open"] = "open"


Question = Annotated[Union[McqQuestion, OpenQuestion], Field(discriminator="kind")]

_question_list = TypeAdapter(list[Question])


def parse_questions(raw: Iterable[Any]) -> list[Union[McqQuestion, OpenQuestion]]:
    """Load stored question dicts (or already-built variants) into variants."""
    return _question_list.validate_python(list(raw or []))


def dump_questions(questions: Iterable[Union[McqQuestion, OpenQuestion]]) -> list[dict]:
    return [q.model_dump(mode="json") for q in questions]


def public_question(question: Union[McqQuestion, OpenQuestion]) -> dict:
    """Student-facing view: the correct answer never leaves the server."""
    return question.model_dump(mode="json", exclude={"correct_answer"})
