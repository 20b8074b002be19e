"""Quiz assignment and attempt routes."""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status

from api.routes.auth import get_current_user
from core.dependencies import AssignmentManagerDep, AttemptManagerDep, ClassManagerDep
from core.exceptions import (
    AttemptClosedError,
    ClassNotFoundError,
    ClassroomError,
    NotFoundError,
    ValidationError,
)
from schemas.quiz import (
    AttemptRow,
    CreateQuizRequest,
    GradeResponse,
    QuizAssignment,
    QuizAttempt,
    QuizQuestion,
    SaveChoiceRequest,
    SaveTextRequest,
)
from schemas.user import AuthenticatedUser
from utils.class_manager import ClassManager

router = APIRouter(prefix="/api/classes/{class_id}/assignments", tags=["Assignment"])

HIDDEN_FROM_STUDENTS = {
    "correct_index": None,
    "correct": None,
    "correct_multi": None,
    "correct_text": None,
}


def _http_error(exc: ClassroomError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, AttemptClosedError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _require_member(class_manager: ClassManager, class_id: str, uid: str) -> str:
    try:
        class_manager.get_class(class_id)
    except ClassNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Class not found",
        )
    role = class_manager.member_role(class_id, uid)
    if role is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this class.",
        )
    return role


def _require_staff(class_manager: ClassManager, class_id: str, uid: str) -> None:
    if _require_member(class_manager, class_id, uid) == "student":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only instructors and TAs can manage assignments.",
        )


def _student_view(assignment: QuizAssignment) -> QuizAssignment:
    """Drop correctness data from the pool."""
    return assignment.model_copy(
        update={
            "pool": [
                question.model_copy(update=HIDDEN_FROM_STUDENTS)
                for question in assignment.pool
            ]
        }
    )


# --- Authoring ---


@router.get(
    "",
    response_model=List[QuizAssignment],
    response_model_exclude_none=True,
    summary="List assignments",
)
def list_assignments(
    class_id: str,
    class_manager: ClassManagerDep,
    assignment_manager: AssignmentManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> List[QuizAssignment]:
    role = _require_member(class_manager, class_id, current_user.uid)
    assignments = assignment_manager.list_assignments(class_id)
    if role == "student":
        return [_student_view(assignment) for assignment in assignments]
    return assignments


@router.post("", summary="Create a custom quiz")
def create_quiz(
    class_id: str,
    req: CreateQuizRequest,
    class_manager: ClassManagerDep,
    assignment_manager: AssignmentManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
    _require_staff(class_manager, class_id, current_user.uid)
    try:
        assignment_id = assignment_manager.create_custom_quiz(
            class_id,
            current_user.uid,
            req.title,
            req.pool,
            points=req.points,
            num_questions=req.num_questions,
            instructions=req.instructions,
        )
    except ValidationError as exc:
        raise _http_error(exc)
    return {"id": assignment_id}


@router.post("/quick", summary="Create the demo quick quiz")
def create_quick_quiz(
    class_id: str,
    class_manager: ClassManagerDep,
    assignment_manager: AssignmentManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
    _require_staff(class_manager, class_id, current_user.uid)
    return {"id": assignment_manager.create_quick_quiz(class_id, current_user.uid)}


@router.get("/attempt-counts", summary="Attempts with progress per assignment")
def attempt_counts(
    class_id: str,
    class_manager: ClassManagerDep,
    attempt_manager: AttemptManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> Dict[str, int]:
    _require_staff(class_manager, class_id, current_user.uid)
    return attempt_manager.attempt_counts(class_id)


@router.get(
    "/{assignment_id}",
    response_model=QuizAssignment,
    response_model_exclude_none=True,
    summary="Get an assignment",
)
def get_assignment(
    class_id: str,
    assignment_id: str,
    class_manager: ClassManagerDep,
    assignment_manager: AssignmentManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> QuizAssignment:
    role = _require_member(class_manager, class_id, current_user.uid)
    try:
        assignment = assignment_manager.get_assignment(class_id, assignment_id)
    except NotFoundError as exc:
        raise _http_error(exc)
    return _student_view(assignment) if role == "student" else assignment


@router.delete("/{assignment_id}", summary="Delete an assignment and its attempts")
def delete_assignment(
    class_id: str,
    assignment_id: str,
    class_manager: ClassManagerDep,
    assignment_manager: AssignmentManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
    _require_staff(class_manager, class_id, current_user.uid)
    deleted = assignment_manager.delete_assignment(class_id, assignment_id)
    return {"success": True, "deletedAttempts": deleted}


@router.post("/{assignment_id}/questions", summary="Add a question to the pool")
def add_question(
    class_id: str,
    assignment_id: str,
    question: QuizQuestion,
    class_manager: ClassManagerDep,
    assignment_manager: AssignmentManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
    _require_staff(class_manager, class_id, current_user.uid)
    try:
        assignment_manager.add_question(class_id, assignment_id, question)
    except (NotFoundError, ValidationError) as exc:
        raise _http_error(exc)
    return {"success": True}


@router.delete(
    "/{assignment_id}/questions/{question_id}", summary="Remove a question from the pool"
)
def remove_question(
    class_id: str,
    assignment_id: str,
    question_id: str,
    class_manager: ClassManagerDep,
    assignment_manager: AssignmentManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
    _require_staff(class_manager, class_id, current_user.uid)
    try:
        assignment_manager.remove_question(class_id, assignment_id, question_id)
    except (NotFoundError, ValidationError) as exc:
        raise _http_error(exc)
    return {"success": True}


@router.get("/{assignment_id}/attempts", response_model=List[AttemptRow], summary="All attempts")
def list_attempts(
    class_id: str,
    assignment_id: str,
    class_manager: ClassManagerDep,
    attempt_manager: AttemptManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> List[AttemptRow]:
    _require_staff(class_manager, class_id, current_user.uid)
    return attempt_manager.attempts_with_members(class_id, assignment_id)


# --- Own attempt ---


@router.post("/{assignment_id}/attempt", response_model=QuizAttempt, summary="Start my attempt")
def start_attempt(
    class_id: str,
    assignment_id: str,
    class_manager: ClassManagerDep,
    attempt_manager: AttemptManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> QuizAttempt:
    _require_member(class_manager, class_id, current_user.uid)
    try:
        return attempt_manager.start_attempt_if_needed(
            class_id, assignment_id, current_user.uid
        )
    except NotFoundError as exc:
        raise _http_error(exc)


@router.get("/{assignment_id}/attempt", response_model=QuizAttempt, summary="Get my attempt")
def get_attempt(
    class_id: str,
    assignment_id: str,
    class_manager: ClassManagerDep,
    attempt_manager: AttemptManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> QuizAttempt:
    _require_member(class_manager, class_id, current_user.uid)
    attempt = attempt_manager.get_attempt(class_id, assignment_id, current_user.uid)
    if attempt is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Attempt not found",
        )
    return attempt


@router.put("/{assignment_id}/attempt/choice", summary="Save a single-choice answer")
def save_choice(
    class_id: str,
    assignment_id: str,
    req: SaveChoiceRequest,
    class_manager: ClassManagerDep,
    attempt_manager: AttemptManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> Dict[str, Any]:
    _require_member(class_manager, class_id, current_user.uid)
    try:
        answer = attempt_manager.save_answer_single(
            class_id, assignment_id, current_user.uid, req.index, req.choice_index
        )
    except (NotFoundError, ValidationError, AttemptClosedError) as exc:
        raise _http_error(exc)
    return {"index": req.index, "answer": answer}


@router.post("/{assignment_id}/attempt/toggle", summary="Toggle a multi-choice option")
def toggle_choice(
    class_id: str,
    assignment_id: str,
    req: SaveChoiceRequest,
    class_manager: ClassManagerDep,
    attempt_manager: AttemptManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> Dict[str, Any]:
    _require_member(class_manager, class_id, current_user.uid)
    try:
        answer = attempt_manager.toggle_answer_multi(
            class_id, assignment_id, current_user.uid, req.index, req.choice_index
        )
    except (NotFoundError, ValidationError, AttemptClosedError) as exc:
        raise _http_error(exc)
    return {"index": req.index, "answer": answer}


@router.put("/{assignment_id}/attempt/text", summary="Save a text answer")
def save_text(
    class_id: str,
    assignment_id: str,
    req: SaveTextRequest,
    class_manager: ClassManagerDep,
    attempt_manager: AttemptManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> Dict[str, Any]:
    _require_member(class_manager, class_id, current_user.uid)
    try:
        answer = attempt_manager.save_answer_text(
            class_id, assignment_id, current_user.uid, req.index, req.text
        )
    except (NotFoundError, ValidationError, AttemptClosedError) as exc:
        raise _http_error(exc)
    return {"index": req.index, "answer": answer}


@router.post(
    "/{assignment_id}/attempt/submit", response_model=GradeResponse, summary="Submit for grading"
)
def submit_attempt(
    class_id: str,
    assignment_id: str,
    class_manager: ClassManagerDep,
    attempt_manager: AttemptManagerDep,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> GradeResponse:
    _require_member(class_manager, class_id, current_user.uid)
    try:
        score = attempt_manager.submit_and_grade(class_id, assignment_id, current_user.uid)
    except (NotFoundError, AttemptClosedError) as exc:
        raise _http_error(exc)
    attempt = attempt_manager.get_attempt(class_id, assignment_id, current_user.uid)
    return GradeResponse(score=score, total=len(attempt.selected_ids) if attempt else 0)
