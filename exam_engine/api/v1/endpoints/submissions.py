# exam_engine/api/v1/endpoints/submissions.py
from typing import List

from fastapi import APIRouter, Depends, Response, status

from exam_engine.api.deps import get_submission_service
from exam_engine.core.security import (
    Actor,
    get_current_actor,
    get_current_student,
    get_current_teacher,
)
from exam_engine.schemas.submission import (
    AutoSubmitIn,
    GradeOpenQuestionsIn,
    SaveAnswersIn,
    SaveAnswersOut,
    StartExamIn,
    StartExamOut,
    SubmissionDetail,
    SubmissionPublic,
    SubmitIn,
    ViolationIn,
    ViolationOut,
)
from exam_engine.services.submission_service import SubmissionService

router = APIRouter(prefix="/submissions", tags=["submissions"])


@router.post("/start", response_model=StartExamOut, status_code=status.HTTP_201_CREATED)
def start_exam(
    obj_in: StartExamIn,
    response: Response,
    submissions: SubmissionService = Depends(get_submission_service),
    current_student: Actor = Depends(get_current_student),
):
    """
    Student opens an exam. Re-opening an in-progress attempt returns it with
    the time it has left (200 instead of 201).
    """
    result = submissions.start(obj_in.exam_id, actor=current_student)
    if not result.created:
        response.status_code = status.HTTP_200_OK
    return StartExamOut(
        submission=SubmissionPublic.model_validate(result.submission),
        time_remaining=result.time_remaining,
    )


@router.get("/me", response_model=List[SubmissionPublic])
def list_my_submissions(
    submissions: SubmissionService = Depends(get_submission_service),
    current_student: Actor = Depends(get_current_student),
    skip: int = 0,
    limit: int = 100,
):
    return submissions.list_for_student(actor=current_student, skip=skip, limit=limit)


@router.get("/{submission_id}")
def get_submission(
    submission_id: int,
    submissions: SubmissionService = Depends(get_submission_service),
    current_user: Actor = Depends(get_current_actor),
):
    """
    Students see their own attempt; the owning teacher also sees the
    autosave trail and the grader.
    """
    sub = submissions.get(submission_id, actor=current_user)
    if sub.student_id == current_user.user_id:
        return SubmissionPublic.model_validate(sub)
    return SubmissionDetail.model_validate(sub)


@router.put("/{submission_id}/answers", response_model=SaveAnswersOut)
def save_answers(
    submission_id: int,
    obj_in: SaveAnswersIn,
    submissions: SubmissionService = Depends(get_submission_service),
    current_student: Actor = Depends(get_current_student),
):
    sub = submissions.save_answers(submission_id, actor=current_student, answers=obj_in.answers)
    return SaveAnswersOut(last_saved=sub.autosave_log[-1]["timestamp"])


@router.post("/{submission_id}/submit", response_model=SubmissionPublic)
def submit_exam(
    submission_id: int,
    obj_in: SubmitIn,
    submissions: SubmissionService = Depends(get_submission_service),
    current_student: Actor = Depends(get_current_student),
):
    return submissions.submit(submission_id, actor=current_student, answers=obj_in.answers)


@router.post("/{submission_id}/auto-submit", response_model=SubmissionPublic)
def auto_submit_exam(
    submission_id: int,
    obj_in: AutoSubmitIn,
    submissions: SubmissionService = Depends(get_submission_service),
    current_student: Actor = Depends(get_current_student),
):
    """
    Client-side timer ran out (or the client decided to end the attempt).
    """
    return submissions.auto_submit(
        submission_id,
        actor=current_student,
        reason=obj_in.reason,
        answers=obj_in.answers,
    )


@router.post("/{submission_id}/violations", response_model=ViolationOut)
def log_violation(
    submission_id: int,
    obj_in: ViolationIn,
    submissions: SubmissionService = Depends(get_submission_service),
    current_student: Actor = Depends(get_current_student),
):
    """
    Reaching the violation threshold ends the attempt; that is reported as a
    normal response with should_auto_submit=true.
    """
    result = submissions.log_violation(
        submission_id,
        actor=current_student,
        violation_type=obj_in.type,
        details=obj_in.details,
    )
    return ViolationOut(
        violations=result.violations,
        should_auto_submit=result.should_auto_submit,
        status=result.submission.status,
    )


@router.put("/{submission_id}/grades", response_model=SubmissionDetail)
def grade_open_questions(
    submission_id: int,
    obj_in: GradeOpenQuestionsIn,
    submissions: SubmissionService = Depends(get_submission_service),
    current_teacher: Actor = Depends(get_current_teacher),
):
    return submissions.grade_open_questions(
        submission_id, grader=current_teacher, grades=obj_in.grades
    )
