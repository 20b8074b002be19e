"""Quiz attempt lifecycle.

An attempt goes ``unstarted -> in-progress -> submitted-graded``:

- ``start_attempt_if_needed`` draws the question subset exactly once per
  (assignment, uid); the draw happens inside the same transaction as the
  existence check, so concurrent starts converge on the first commit.
- ``save_answer_single`` / ``toggle_answer_multi`` / ``save_answer_text``
  rewrite one slot of ``answers`` transactionally, so concurrent saves to
  different slots never lose each other.
- ``submit_and_grade`` scores the attempt once; graded attempts are immutable.
"""

import logging
import random
from typing import Any, Callable, Dict, List, Optional

from config import UNANSWERED
from core.exceptions import (
    AssignmentNotFoundError,
    AttemptClosedError,
    AttemptNotFoundError,
    ValidationError,
)
from schemas.class_schema import ClassMember
from schemas.quiz import (
    AttemptRow,
    MultiChoiceAnswer,
    QuizAssignment,
    QuizAttempt,
    SingleChoiceAnswer,
    TextAnswer,
)
from schemas.user import User
from utils.assignment_manager import assignment_path, assignments_path, attempt_path, attempts_path
from utils.document_store import DocumentSnapshot, DocumentStore, Transaction
from utils.field_values import SERVER_TIMESTAMP
from utils.grading import blank_answers, decode_answer, grade

logger = logging.getLogger(__name__)


def _attempt_from(snapshot: DocumentSnapshot) -> QuizAttempt:
    data = snapshot.to_dict()
    data.setdefault("uid", snapshot.id)
    return QuizAttempt.model_validate(data)


class AttemptManager:
    """Manages student attempts: allocation, answer capture and grading."""

    def __init__(self, store: DocumentStore, rng: Optional[random.Random] = None):
        """Initialize AttemptManager.

        Args:
            store: Document store.
            rng: Source of randomness for question draws.
        """
        self.store = store
        self.rng = rng or random.Random()

    def start_attempt_if_needed(
        self, class_id: str, assignment_id: str, uid: str
    ) -> QuizAttempt:
        """Return the student's attempt, creating it on first call.

        Raises:
            AssignmentNotFoundError: If the assignment does not exist.
        """
        path = attempt_path(class_id, assignment_id, uid)

        def body(tx: Transaction) -> QuizAttempt:
            assignment_doc = tx.get(assignment_path(class_id, assignment_id))
            attempt_doc = tx.get(path)
            if not assignment_doc.exists:
                raise AssignmentNotFoundError(assignment_id)
            drawn = attempt_doc.get("selectedIds") is not None
            if attempt_doc.exists and (drawn or attempt_doc.get("score") is not None):
                return _attempt_from(attempt_doc)

            assignment = QuizAssignment.model_validate(assignment_doc.to_dict())
            count = max(assignment.num_questions, 0)
            question_ids = list(dict.fromkeys(question.id for question in assignment.pool))
            selected_ids = self.rng.sample(question_ids, min(count, len(question_ids)))
            if not attempt_doc.exists:
                attempt = QuizAttempt(
                    uid=uid, selected_ids=selected_ids, answers=blank_answers(count)
                )
                tx.set(path, {**attempt.to_document(), "startedAt": SERVER_TIMESTAMP})
                return attempt

            # Answers saved before the draw keep their slots
            existing = attempt_doc.get("answers")
            answers = list(existing)[:count] if isinstance(existing, list) else []
            answers.extend(blank_answers(count - len(answers)))
            tx.set(
                path,
                {
                    "uid": uid,
                    "selectedIds": selected_ids,
                    "answers": answers,
                    "startedAt": SERVER_TIMESTAMP,
                },
                merge=True,
            )
            return _attempt_from(attempt_doc).model_copy(
                update={"selected_ids": selected_ids, "answers": answers}
            )

        return self.store.run_transaction(body)

    def get_attempt(
        self, class_id: str, assignment_id: str, uid: str
    ) -> Optional[QuizAttempt]:
        snapshot = self.store.get(attempt_path(class_id, assignment_id, uid))
        return _attempt_from(snapshot) if snapshot.exists else None

    # --- Answers ---

    def _save_answer(
        self,
        class_id: str,
        assignment_id: str,
        uid: str,
        index: int,
        mutate: Callable[[Any], Any],
    ) -> Any:
        if index < 0:
            raise ValidationError("Answer index must be non-negative")
        path = attempt_path(class_id, assignment_id, uid)

        def body(tx: Transaction) -> Any:
            assignment_doc = tx.get(assignment_path(class_id, assignment_id))
            snapshot = tx.get(path)
            if not assignment_doc.exists:
                raise AssignmentNotFoundError(assignment_id)
            data = snapshot.to_dict() if snapshot.exists else {}
            if data.get("score") is not None:
                raise AttemptClosedError(path)
            selected = data.get("selectedIds")
            if isinstance(selected, list) and selected:
                limit = len(selected)
            else:
                limit = max(int(assignment_doc.get("numQuestions") or 0), 0)
            if index >= limit:
                raise ValidationError(
                    f"Answer index {index} is out of range for {limit} questions"
                )
            answers = list(data["answers"]) if isinstance(data.get("answers"), list) else []
            if index >= len(answers):
                answers.extend([UNANSWERED] * (index + 1 - len(answers)))
            answers[index] = mutate(answers[index])
            tx.set(
                path,
                {"uid": uid, "answers": answers, "updatedAt": SERVER_TIMESTAMP},
                merge=True,
            )
            return answers[index]

        return self.store.run_transaction(body)

    def save_answer_single(
        self, class_id: str, assignment_id: str, uid: str, index: int, choice_index: int
    ) -> int:
        if choice_index < 0:
            raise ValidationError("Choice index must be non-negative")
        answer = SingleChoiceAnswer(choice=choice_index)
        return self._save_answer(
            class_id, assignment_id, uid, index, lambda _: answer.to_stored()
        )

    def toggle_answer_multi(
        self, class_id: str, assignment_id: str, uid: str, index: int, choice_index: int
    ) -> Any:
        """Add ``choice_index`` to the slot's selection, or remove it if present.

        The stored selection stays sorted ascending; an emptied selection is
        stored as unanswered, so toggling twice restores the original slot.
        """
        if choice_index < 0:
            raise ValidationError("Choice index must be non-negative")

        def toggle(raw: Any) -> Any:
            current = decode_answer(raw, "mcq-multi")
            if not isinstance(current, MultiChoiceAnswer):
                current = MultiChoiceAnswer()
            toggled = current.toggle(choice_index)
            return toggled.to_stored() if toggled.choices else UNANSWERED

        return self._save_answer(class_id, assignment_id, uid, index, toggle)

    def save_answer_text(
        self, class_id: str, assignment_id: str, uid: str, index: int, text: Optional[str]
    ) -> str:
        answer = TextAnswer(text="" if text is None else str(text))
        return self._save_answer(
            class_id, assignment_id, uid, index, lambda _: answer.to_stored()
        )

    # --- Grading ---

    def submit_and_grade(self, class_id: str, assignment_id: str, uid: str) -> int:
        """Grade the attempt against the pool and stamp submission times.

        Returns:
            Number of correct answers.

        Raises:
            AssignmentNotFoundError: If the assignment does not exist.
            AttemptNotFoundError: If the student never started the quiz.
            AttemptClosedError: If the attempt was already graded.
        """
        path = attempt_path(class_id, assignment_id, uid)

        def body(tx: Transaction) -> int:
            assignment_doc = tx.get(assignment_path(class_id, assignment_id))
            attempt_doc = tx.get(path)
            if not assignment_doc.exists:
                raise AssignmentNotFoundError(assignment_id)
            if not attempt_doc.exists:
                raise AttemptNotFoundError(uid, "No attempt to submit")
            attempt = _attempt_from(attempt_doc)
            if attempt.is_graded:
                raise AttemptClosedError(path)
            assignment = QuizAssignment.model_validate(assignment_doc.to_dict())
            score = grade(assignment.pool, attempt.selected_ids, attempt.answers)
            tx.set(
                path,
                {
                    "score": score,
                    "submittedAt": SERVER_TIMESTAMP,
                    "gradedAt": SERVER_TIMESTAMP,
                    "updatedAt": SERVER_TIMESTAMP,
                },
                merge=True,
            )
            return score

        score = self.store.run_transaction(body)
        logger.info("Graded attempt of %s on %s: %d", uid, assignment_id, score)
        return score

    # --- Derived views ---

    def attempts_for_assignment(self, class_id: str, assignment_id: str) -> List[QuizAttempt]:
        """Attempts with recorded progress; untouched placeholders are left out."""
        attempts = [
            _attempt_from(snapshot)
            for snapshot in self.store.query(attempts_path(class_id, assignment_id)).get()
        ]
        return [attempt for attempt in attempts if attempt.has_progress]

    def attempt_counts(self, class_id: str) -> Dict[str, int]:
        return {
            assignment.id: len(self.attempts_for_assignment(class_id, assignment.id))
            for assignment in self.store.query(assignments_path(class_id)).get()
        }

    def attempts_with_members(self, class_id: str, assignment_id: str) -> List[AttemptRow]:
        attempts = self.attempts_for_assignment(class_id, assignment_id)
        uids = [attempt.uid for attempt in attempts]
        members = self.store.get_all([f"classes/{class_id}/members/{uid}" for uid in uids])
        users = self.store.get_all([f"users/{uid}" for uid in uids])
        rows = []
        for attempt, member, user in zip(attempts, members, users):
            rows.append(
                AttemptRow(
                    uid=attempt.uid,
                    attempt=attempt,
                    member=(
                        ClassMember.model_validate({**member.to_dict(), "uid": member.id})
                        if member.exists
                        else None
                    ),
                    user=(
                        User.model_validate({**user.to_dict(), "uid": user.id})
                        if user.exists
                        else None
                    ),
                )
            )
        return rows
