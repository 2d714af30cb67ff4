"""
Shared fixtures: in-memory SQLite, a controllable clock, a recording
notification sink, and ready-made teachers/students.
"""

import os
from datetime import datetime, timedelta, timezone

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("NOTIFICATION_BACKEND", "none")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from exam_engine import models  # noqa: F401
from exam_engine.core.security import Actor
from exam_engine.db.base import Base
from exam_engine.schemas.exam import ExamCreate
from exam_engine.services.exam_service import ExamService
from exam_engine.services.submission_service import SubmissionService

# Test database (in-memory SQLite shared across the session's connections)
TEST_DATABASE_URL = "sqlite://"

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event, payload):
        self.events.append((event, payload))

    def names(self):
        return [event for event, _ in self.events]


class FailingNotifier:
    def notify(self, event, payload):
        raise ConnectionError("notification backend unavailable")


def mcq(qid, correct, *, options=None, max_score=10, text=None):
    return {
        "kind": "mcq",
        "id": qid,
        "text": text or f"Question {qid}",
        "options": options or ["A", "B", "C", "D"],
        "correct_answer": correct,
        "max_score": max_score,
    }


def open_question(qid, *, max_score=10, text=None):
    return {"kind": "open", "id": qid, "text": text or f"Explain {qid}", "max_score": max_score}


@pytest.fixture(scope="function")
def db_session():
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def exam_service(db_session, notifier, clock):
    return ExamService(db_session, notifier=notifier, clock=clock)


@pytest.fixture
def submission_service(db_session, exam_service, notifier, clock):
    return SubmissionService(
        db_session,
        exams=exam_service,
        notifier=notifier,
        clock=clock,
        violation_threshold=2,
        enforce_deadline=True,
        grace_seconds=30,
    )


@pytest.fixture
def teacher():
    return Actor(user_id="teacher-1", role="teacher")


@pytest.fixture
def other_teacher():
    return Actor(user_id="teacher-2", role="teacher")


@pytest.fixture
def dean():
    return Actor(user_id="dean-1", role="dean")


@pytest.fixture
def student():
    return Actor(user_id="student-1", role="student", class_id="class-a")


@pytest.fixture
def classmate():
    return Actor(user_id="student-2", role="student", class_id="class-a")


@pytest.fixture
def outsider():
    return Actor(user_id="student-9", role="student", class_id="class-z")


@pytest.fixture
def make_exam(exam_service, teacher):
    """Create a draft exam; keyword overrides go straight into ExamCreate."""

    def _make(actor=None, **overrides):
        data = {
            "title": "Algebra quiz",
            "type": "quiz",
            "subject_id": "math",
            "class_ids": ["class-a"],
            "questions": [mcq("q1", "B"), mcq("q2", "C")],
        }
        data.update(overrides)
        return exam_service.create(actor=actor or teacher, obj_in=ExamCreate(**data))

    return _make


@pytest.fixture
def make_active_exam(make_exam, exam_service, teacher, clock):
    """Draft -> scheduled one hour out -> clock moved to the start -> active."""

    def _make(duration_minutes=60, **overrides):
        exam = make_exam(**overrides)
        exam_service.schedule(
            exam.id,
            actor=teacher,
            start=clock.now + timedelta(hours=1),
            duration_minutes=duration_minutes,
        )
        clock.advance(hours=1)
        return exam_service.get(exam.id)

    return _make
