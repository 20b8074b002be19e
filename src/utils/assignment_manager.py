"""Quiz assignment authoring.

Assignments live under ``classes/{classId}/assignments/{assignmentId}`` with
their question pool embedded. Pool edits use array transforms plus an atomic
increment of ``numQuestions``, so they need no transaction.
"""

import logging
from typing import Iterable, List, Optional

from config import QUICK_QUIZ_NUM_QUESTIONS, QUICK_QUIZ_POINTS
from core.exceptions import AssignmentNotFoundError, ValidationError
from schemas.quiz import QuizAssignment, QuizQuestion
from utils.document_store import DocumentStore, new_id
from utils.field_values import SERVER_TIMESTAMP, ArrayRemove, ArrayUnion, Increment

logger = logging.getLogger(__name__)


def assignments_path(class_id: str) -> str:
    return f"classes/{class_id}/assignments"


def assignment_path(class_id: str, assignment_id: str) -> str:
    return f"classes/{class_id}/assignments/{assignment_id}"


def attempts_path(class_id: str, assignment_id: str) -> str:
    return f"{assignment_path(class_id, assignment_id)}/attempts"


def attempt_path(class_id: str, assignment_id: str, uid: str) -> str:
    return f"{assignment_path(class_id, assignment_id)}/attempts/{uid}"


# Legacy-format demo pool: flat choices + correctIndex, no kind
QUICK_QUIZ_POOL = [
    {
        "id": "q1",
        "prompt": "What does APR stand for?",
        "choices": [
            "Annual Percentage Rate",
            "Average Periodic Rate",
            "Applied Payment Ratio",
            "Annualized Payment Rate",
        ],
        "correctIndex": 0,
    },
    {
        "id": "q2",
        "prompt": "Which is a liability?",
        "choices": ["Cash", "Inventory", "Accounts Payable", "Revenue"],
        "correctIndex": 2,
    },
    {
        "id": "q3",
        "prompt": "Compound interest grows...",
        "choices": ["Linearly", "Exponentially", "Randomly", "Not at all"],
        "correctIndex": 1,
    },
    {
        "id": "q4",
        "prompt": "Primary key purpose?",
        "choices": ["Speed UI", "Ensure row uniqueness", "Encrypt data", "Format dates"],
        "correctIndex": 1,
    },
    {
        "id": "q5",
        "prompt": "TLS is mainly for...",
        "choices": [
            "Styling pages",
            "Data encryption in transit",
            "Storing files",
            "Server billing",
        ],
        "correctIndex": 1,
    },
    {
        "id": "q6",
        "prompt": "Writes in a single batch are limited to...",
        "choices": ["50", "200", "500", "1000"],
        "correctIndex": 2,
    },
    {
        "id": "q7",
        "prompt": "Best practice for user emails?",
        "choices": ["Store as-is", "Lowercase for lookups", "Uppercase always", "Hash only"],
        "correctIndex": 1,
    },
    {
        "id": "q8",
        "prompt": "A join table is used to...",
        "choices": ["Cache CSS", "Map many-to-many", "Delete logs", "Host images"],
        "correctIndex": 1,
    },
]


def _valid_index(value: Optional[int], choices: List[str]) -> bool:
    return value is not None and 0 <= value < len(choices)


def validate_question(question: QuizQuestion) -> None:
    """Check that a question carries the correctness data its kind needs.

    Raises:
        ValidationError: If the question is incomplete.
    """
    if not question.id.strip():
        raise ValidationError("Question id cannot be empty")
    if not question.prompt.strip():
        raise ValidationError(f"Question {question.id} has no prompt")
    kind = question.resolved_kind
    choices = question.choices or []
    if kind == "mcq-single":
        if not choices:
            raise ValidationError(f"Question {question.id} has no choices")
        if not _valid_index(question.expected_choice, choices):
            raise ValidationError(f"Question {question.id} has no valid correct choice")
    elif kind == "mcq-multi":
        expected = question.correct_multi or []
        if not choices:
            raise ValidationError(f"Question {question.id} has no choices")
        if not expected or len(set(expected)) != len(expected):
            raise ValidationError(f"Question {question.id} needs distinct correct choices")
        if not all(_valid_index(value, choices) for value in expected):
            raise ValidationError(f"Question {question.id} has an out-of-range correct choice")
    elif not (question.correct_text or "").strip():
        raise ValidationError(f"Question {question.id} has no correct text")


def validate_pool(pool: Iterable[QuizQuestion]) -> List[QuizQuestion]:
    questions = list(pool)
    if not questions:
        raise ValidationError("Add at least one question")
    seen = set()
    for question in questions:
        validate_question(question)
        if question.id in seen:
            raise ValidationError(f"Duplicate question id: {question.id}")
        seen.add(question.id)
    return questions


class AssignmentManager:
    """Manages quiz assignments and their question pools."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def create_quick_quiz(self, class_id: str, created_by: str) -> str:
        """Create a demo quiz drawing 5 of 8 single-choice questions."""
        assignment_id = new_id()
        self.store.set(
            assignment_path(class_id, assignment_id),
            {
                "id": assignment_id,
                "classId": class_id,
                "title": f"Quick quiz ({QUICK_QUIZ_NUM_QUESTIONS} questions)",
                "instructions": "Answer every question. Each has exactly one correct choice.",
                "type": "quiz",
                "points": QUICK_QUIZ_POINTS,
                "numQuestions": QUICK_QUIZ_NUM_QUESTIONS,
                "pool": QUICK_QUIZ_POOL,
                "createdBy": created_by,
                "createdAt": SERVER_TIMESTAMP,
                "updatedAt": SERVER_TIMESTAMP,
            },
        )
        logger.info("Created quick quiz %s in class %s", assignment_id, class_id)
        return assignment_id

    def create_custom_quiz(
        self,
        class_id: str,
        created_by: str,
        title: str,
        pool: Iterable[QuizQuestion],
        points: Optional[int] = None,
        num_questions: Optional[int] = None,
        instructions: Optional[str] = None,
    ) -> str:
        """Create a quiz from an authored pool.

        Args:
            class_id: Class ID.
            created_by: Author uid.
            title: Quiz title.
            pool: Candidate questions.
            points: Total points; defaults to one per question.
            num_questions: Questions drawn per attempt; defaults to the pool size.
            instructions: Optional text shown to students.

        Returns:
            The new assignment id.

        Raises:
            ValidationError: If the title or pool is invalid.
        """
        clean_title = (title or "").strip()
        if not clean_title:
            raise ValidationError("Title is required")
        questions = validate_pool(pool)
        count = len(questions) if num_questions is None else num_questions
        if count < 1:
            raise ValidationError("A quiz must draw at least one question")

        assignment_id = new_id()
        assignment = QuizAssignment(
            id=assignment_id,
            class_id=class_id,
            title=clean_title,
            instructions=instructions,
            created_by=created_by,
            pool=questions,
            num_questions=count,
            points=len(questions) if points is None else points,
        )
        self.store.set(
            assignment_path(class_id, assignment_id),
            {
                **assignment.to_document(),
                "createdAt": SERVER_TIMESTAMP,
                "updatedAt": SERVER_TIMESTAMP,
            },
        )
        logger.info(
            "Created quiz %s in class %s (%d questions)",
            assignment_id,
            class_id,
            len(questions),
        )
        return assignment_id

    def get_assignment(self, class_id: str, assignment_id: str) -> QuizAssignment:
        snapshot = self.store.get(assignment_path(class_id, assignment_id))
        if not snapshot.exists:
            raise AssignmentNotFoundError(assignment_id)
        return QuizAssignment.model_validate({**snapshot.to_dict(), "id": snapshot.id})

    def list_assignments(self, class_id: str) -> List[QuizAssignment]:
        snapshots = (
            self.store.query(assignments_path(class_id)).order_by("createdAt", "desc").get()
        )
        return [
            QuizAssignment.model_validate({**snapshot.to_dict(), "id": snapshot.id})
            for snapshot in snapshots
        ]

    def add_question(self, class_id: str, assignment_id: str, question: QuizQuestion) -> None:
        validate_question(question)
        assignment = self.get_assignment(class_id, assignment_id)
        if any(existing.id == question.id for existing in assignment.pool):
            raise ValidationError(f"Duplicate question id: {question.id}")
        self.store.update(
            assignment_path(class_id, assignment_id),
            {
                "pool": ArrayUnion([question.to_document()]),
                "numQuestions": Increment(1),
                "updatedAt": SERVER_TIMESTAMP,
            },
        )

    def remove_question(self, class_id: str, assignment_id: str, question_id: str) -> None:
        """Remove a question from the pool by id.

        Raises:
            AssignmentNotFoundError: If the assignment does not exist.
            ValidationError: If no question has that id.
        """
        snapshot = self.store.get(assignment_path(class_id, assignment_id))
        if not snapshot.exists:
            raise AssignmentNotFoundError(assignment_id)
        stored = [q for q in snapshot.get("pool") or [] if q.get("id") == question_id]
        if not stored:
            raise ValidationError(f"Question {question_id} is not in the pool")
        self.store.update(
            snapshot.path,
            {
                "pool": ArrayRemove(stored),
                "numQuestions": Increment(-len(stored)),
                "updatedAt": SERVER_TIMESTAMP,
            },
        )

    def delete_assignment(self, class_id: str, assignment_id: str) -> int:
        """Delete every attempt in bounded batches, then the assignment.

        Returns:
            Number of attempts deleted.

        Raises:
            PartialCascadeIncompleteError: If a chunk fails midway.
        """
        path = assignment_path(class_id, assignment_id)
        deleted = self.store.delete_in_chunks(
            self.store.query(attempts_path(class_id, assignment_id)), path
        )
        self.store.delete(path)
        logger.info("Deleted assignment %s (%d attempts)", assignment_id, deleted)
        return deleted
