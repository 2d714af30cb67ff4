# exam_engine/api/v1/endpoints/exams.py
from typing import List

from fastapi import APIRouter, Depends, status

from exam_engine.api.deps import get_exam_service, get_submission_service
from exam_engine.core.errors import AuthorizationError
from exam_engine.core.security import (
    ROLE_STUDENT,
    Actor,
    get_current_actor,
    get_current_student,
    get_current_teacher,
)
from exam_engine.models.exam import Exam
from exam_engine.schemas.exam import (
    ConflictCheckIn,
    ExamCreate,
    ExamPublic,
    ExamStudentView,
    ExamUpdate,
    ScheduleConflictOut,
    ScheduleIn,
)
from exam_engine.schemas.question import parse_questions, public_question
from exam_engine.schemas.submission import SubmissionDetail
from exam_engine.services.exam_service import ExamService
from exam_engine.services.submission_service import SubmissionService

router = APIRouter(prefix="/exams", tags=["exams"])


def _student_view(exam: Exam) -> ExamStudentView:
    return ExamStudentView(
        id=exam.id,
        title=exam.title,
        type=exam.type,
        subject_id=exam.subject_id,
        class_ids=list(exam.class_ids or []),
        instructions=exam.instructions,
        schedule_start=exam.schedule_start,
        duration_minutes=exam.duration_minutes,
        questions=[public_question(q) for q in parse_questions(exam.questions)],
        total_points=exam.total_points,
        status=exam.status,
    )


@router.post("/", response_model=ExamPublic, status_code=status.HTTP_201_CREATED)
def create_exam(
    obj_in: ExamCreate,
    exams: ExamService = Depends(get_exam_service),
    current_teacher: Actor = Depends(get_current_teacher),
):
    """
    Teacher creates an exam; it starts as a draft.
    """
    return exams.create(actor=current_teacher, obj_in=obj_in)


@router.get("/mine", response_model=List[ExamPublic])
def list_my_exams(
    exams: ExamService = Depends(get_exam_service),
    current_teacher: Actor = Depends(get_current_teacher),
    skip: int = 0,
    limit: int = 100,
):
    return exams.list_for_teacher(actor=current_teacher, skip=skip, limit=limit)


@router.get("/available", response_model=List[ExamStudentView])
def list_available_exams(
    exams: ExamService = Depends(get_exam_service),
    current_student: Actor = Depends(get_current_student),
):
    """
    Scheduled and active exams for the student's class (no correct answers).
    """
    return [_student_view(e) for e in exams.list_for_student(actor=current_student)]


@router.post("/schedule-conflicts", response_model=List[ScheduleConflictOut])
def check_schedule_conflicts(
    obj_in: ConflictCheckIn,
    exams: ExamService = Depends(get_exam_service),
    current_teacher: Actor = Depends(get_current_teacher),
):
    """
    Dry run of the conflict check; nothing is modified.
    """
    return exams.check_conflicts(
        class_ids=obj_in.class_ids,
        start=obj_in.start,
        duration_minutes=obj_in.duration_minutes,
        exclude_exam_id=obj_in.exclude_exam_id,
    )


@router.get("/{exam_id}")
def get_exam(
    exam_id: int,
    exams: ExamService = Depends(get_exam_service),
    current_user: Actor = Depends(get_current_actor),
):
    exam = exams.get(exam_id)
    if current_user.role == ROLE_STUDENT:
        if str(current_user.class_id) not in [str(c) for c in exam.class_ids or []]:
            raise AuthorizationError("This exam is not assigned to your class")
        return _student_view(exam)

    if exam.teacher_id != current_user.user_id and not current_user.is_elevated:
        raise AuthorizationError("You are not authorized to view this exam")
    return ExamPublic.model_validate(exam)


@router.put("/{exam_id}", response_model=ExamPublic)
def update_exam(
    exam_id: int,
    patch: ExamUpdate,
    exams: ExamService = Depends(get_exam_service),
    current_teacher: Actor = Depends(get_current_teacher),
):
    return exams.update(exam_id, actor=current_teacher, patch=patch)


@router.delete("/{exam_id}")
def delete_exam(
    exam_id: int,
    exams: ExamService = Depends(get_exam_service),
    current_teacher: Actor = Depends(get_current_teacher),
):
    exams.delete(exam_id, actor=current_teacher)
    return {"message": "Exam deleted successfully"}


@router.put("/{exam_id}/schedule", response_model=ExamPublic)
def schedule_exam(
    exam_id: int,
    obj_in: ScheduleIn,
    exams: ExamService = Depends(get_exam_service),
    current_teacher: Actor = Depends(get_current_teacher),
):
    return exams.schedule(
        exam_id,
        actor=current_teacher,
        start=obj_in.start,
        duration_minutes=obj_in.duration_minutes,
    )


@router.put("/{exam_id}/activate", response_model=ExamPublic)
def activate_exam(
    exam_id: int,
    exams: ExamService = Depends(get_exam_service),
    current_teacher: Actor = Depends(get_current_teacher),
):
    return exams.activate(exam_id, actor=current_teacher)


@router.put("/{exam_id}/complete", response_model=ExamPublic)
def complete_exam(
    exam_id: int,
    exams: ExamService = Depends(get_exam_service),
    current_teacher: Actor = Depends(get_current_teacher),
):
    return exams.complete(exam_id, actor=current_teacher)


@router.get("/{exam_id}/submissions", response_model=List[SubmissionDetail])
def list_exam_submissions(
    exam_id: int,
    submissions: SubmissionService = Depends(get_submission_service),
    current_teacher: Actor = Depends(get_current_teacher),
    skip: int = 0,
    limit: int = 100,
):
    return submissions.list_for_exam(exam_id, actor=current_teacher, skip=skip, limit=limit)
