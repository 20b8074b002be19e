"""Answer decoding and deterministic quiz grading."""

import logging
import unicodedata
from typing import Any, Dict, Iterable, List, Sequence

from config import UNANSWERED
from schemas.quiz import (
    Answer,
    MultiChoiceAnswer,
    QuestionKind,
    QuizQuestion,
    SingleChoiceAnswer,
    TextAnswer,
    Unanswered,
)

logger = logging.getLogger(__name__)


def normalize_text(value: Any) -> str:
    """Trim, case-fold and strip combining diacritics (NFD)."""
    text = "" if value is None else str(value)
    decomposed = unicodedata.normalize("NFD", text.strip().casefold())
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def decode_answer(raw: Any, kind: QuestionKind) -> Answer:
    """Resolve a stored answer slot against the question kind.

    A slot whose stored type does not fit the kind counts as unanswered.
    """
    if kind == "mcq-single":
        if _is_int(raw) and raw != UNANSWERED and raw >= 0:
            return SingleChoiceAnswer(choice=raw)
    elif kind == "mcq-multi":
        if isinstance(raw, list) and all(_is_int(item) for item in raw):
            return MultiChoiceAnswer(choices=sorted(raw))
    elif kind == "text":
        if isinstance(raw, str):
            return TextAnswer(text=raw)
    return Unanswered()


def is_correct(question: QuizQuestion, answer: Answer) -> bool:
    kind = question.resolved_kind
    if kind == "mcq-single":
        expected = question.expected_choice
        return (
            isinstance(answer, SingleChoiceAnswer)
            and expected is not None
            and answer.choice == expected
        )
    if kind == "mcq-multi":
        if not isinstance(answer, MultiChoiceAnswer):
            return False
        expected = sorted(question.correct_multi or [])
        got = sorted(answer.choices)
        return len(expected) == len(got) and all(
            want == have for want, have in zip(expected, got)
        )
    if isinstance(answer, TextAnswer):
        return normalize_text(answer.text) == normalize_text(question.correct_text or "")
    return False


def grade(
    pool: Iterable[QuizQuestion], selected_ids: Sequence[str], answers: Sequence[Any]
) -> int:
    """Count correct answers for the selected questions.

    Args:
        pool: The assignment's question pool.
        selected_ids: Question ids drawn for the attempt, in order.
        answers: Stored answers aligned with ``selected_ids``.

    Returns:
        Number of correct answers.
    """
    by_id: Dict[str, QuizQuestion] = {question.id: question for question in pool}
    score = 0
    for position, question_id in enumerate(selected_ids):
        question = by_id.get(question_id)
        if question is None:
            logger.warning("Selected question %s is missing from the pool", question_id)
            continue
        raw = answers[position] if position < len(answers) else None
        if is_correct(question, decode_answer(raw, question.resolved_kind)):
            score += 1
    return score


def blank_answers(count: int) -> List[int]:
    return [UNANSWERED] * count
