import pytest

from schemas.quiz import (
    MultiChoiceAnswer,
    QuizQuestion,
    SingleChoiceAnswer,
    TextAnswer,
    Unanswered,
)
from utils.grading import decode_answer, grade, is_correct, normalize_text

SINGLE = QuizQuestion(id="s", prompt="p", kind="mcq-single", choices=["a", "b", "c"], correct=1)
LEGACY = QuizQuestion(id="l", prompt="p", choices=["a", "b"], correct_index=0)
MULTI = QuizQuestion(id="m", prompt="p", kind="mcq-multi", choices=["a", "b", "c", "d"], correct_multi=[2, 0])
TEXT = QuizQuestion(id="t", prompt="p", kind="text", correct_text="Café")


@pytest.mark.parametrize(
    "value, expected",
    [("  Café ", "cafe"), ("ÉCOLE", "ecole"), ("Straße", "strasse"), (None, "")],
)
def test_normalize_text(value, expected):
    assert normalize_text(value) == expected


def test_decode_answer():
    assert decode_answer(2, "mcq-single") == SingleChoiceAnswer(choice=2)
    assert decode_answer(-1, "mcq-single") == Unanswered()
    assert decode_answer(None, "mcq-single") == Unanswered()
    assert decode_answer([3, 1], "mcq-multi") == MultiChoiceAnswer(choices=[1, 3])
    assert decode_answer(-1, "mcq-multi") == Unanswered()
    assert decode_answer("x", "text") == TextAnswer(text="x")
    # Stored type does not fit the question kind
    assert decode_answer("x", "mcq-single") == Unanswered()
    assert decode_answer(1, "text") == Unanswered()
    assert decode_answer(True, "mcq-single") == Unanswered()


def test_is_correct_single():
    assert is_correct(SINGLE, SingleChoiceAnswer(choice=1))
    assert not is_correct(SINGLE, SingleChoiceAnswer(choice=0))
    assert not is_correct(SINGLE, Unanswered())
    assert is_correct(LEGACY, SingleChoiceAnswer(choice=0))


def test_is_correct_multi_is_exact_set_match():
    assert is_correct(MULTI, MultiChoiceAnswer(choices=[0, 2]))
    assert not is_correct(MULTI, MultiChoiceAnswer(choices=[0]))
    assert not is_correct(MULTI, MultiChoiceAnswer(choices=[0, 2, 3]))
    assert not is_correct(MULTI, SingleChoiceAnswer(choice=0))


def test_is_correct_text_ignores_case_and_accents():
    assert is_correct(TEXT, TextAnswer(text="  cafe"))
    assert is_correct(TEXT, TextAnswer(text="CAFÉ"))
    assert not is_correct(TEXT, TextAnswer(text="coffee"))
    assert not is_correct(TEXT, Unanswered())


def test_grade_mixed_attempt():
    pool = [SINGLE, MULTI, TEXT, LEGACY]
    assert grade(pool, ["s", "m", "t", "l"], [1, [0, 2], "cafe", 1]) == 3
    assert grade(pool, ["t", "s"], ["CAFE", -1]) == 1


def test_grade_skips_missing_questions_and_short_answers():
    assert grade([SINGLE], ["gone", "s"], [0, 1]) == 1
    assert grade([SINGLE, TEXT], ["s", "t"], [1]) == 1
    assert grade([SINGLE], [], []) == 0
