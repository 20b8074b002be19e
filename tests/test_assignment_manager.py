import pytest

from core.exceptions import AssignmentNotFoundError, ValidationError
from schemas.quiz import QuizQuestion
from utils.assignment_manager import QUICK_QUIZ_POOL, validate_question


def single(qid, correct=0):
    return QuizQuestion(
        id=qid, prompt=f"Question {qid}", kind="mcq-single", choices=["a", "b", "c"], correct=correct
    )


def test_create_quick_quiz(assignments, class_id):
    assignment_id = assignments.create_quick_quiz(class_id, "prof")
    quiz = assignments.get_assignment(class_id, assignment_id)
    assert quiz.type == "quiz"
    assert quiz.num_questions == 5
    assert quiz.points == 100
    assert len(quiz.pool) == len(QUICK_QUIZ_POOL) == 8
    assert all(q.resolved_kind == "mcq-single" for q in quiz.pool)


def test_create_custom_quiz_defaults(assignments, class_id):
    pool = [
        single("q1"),
        QuizQuestion(id="q2", prompt="Pick two", kind="mcq-multi", choices=["a", "b", "c"], correct_multi=[0, 2]),
        QuizQuestion(id="q3", prompt="Capital of France?", kind="text", correct_text="Paris"),
    ]
    assignment_id = assignments.create_custom_quiz(class_id, "prof", " Week 1 ", pool)
    quiz = assignments.get_assignment(class_id, assignment_id)
    assert quiz.title == "Week 1"
    assert quiz.num_questions == 3
    assert quiz.points == 3
    assert quiz.created_by == "prof"
    assert quiz.created_at


def test_create_custom_quiz_validation(assignments, class_id):
    with pytest.raises(ValidationError):
        assignments.create_custom_quiz(class_id, "prof", "", [single("q1")])
    with pytest.raises(ValidationError):
        assignments.create_custom_quiz(class_id, "prof", "Empty", [])
    with pytest.raises(ValidationError):
        assignments.create_custom_quiz(class_id, "prof", "Dupes", [single("q1"), single("q1")])
    with pytest.raises(ValidationError):
        assignments.create_custom_quiz(class_id, "prof", "Zero", [single("q1")], num_questions=0)


@pytest.mark.parametrize(
    "question",
    [
        QuizQuestion(id="q", prompt="p", kind="mcq-single", choices=["a"], correct=3),
        QuizQuestion(id="q", prompt="p", kind="mcq-single", choices=[], correct=0),
        QuizQuestion(id="q", prompt="p", kind="mcq-multi", choices=["a", "b"], correct_multi=[]),
        QuizQuestion(id="q", prompt="p", kind="mcq-multi", choices=["a", "b"], correct_multi=[1, 1]),
        QuizQuestion(id="q", prompt="p", kind="text", correct_text="  "),
        QuizQuestion(id="q", prompt="  ", kind="text", correct_text="x"),
    ],
)
def test_validate_question_rejects(question):
    with pytest.raises(ValidationError):
        validate_question(question)


def test_legacy_question_accepted():
    validate_question(QuizQuestion(id="q", prompt="p", choices=["a", "b"], correct_index=1))


def test_add_and_remove_question(assignments, class_id):
    assignment_id = assignments.create_custom_quiz(class_id, "prof", "Quiz", [single("q1")])
    assignments.add_question(class_id, assignment_id, single("q2", correct=1))
    quiz = assignments.get_assignment(class_id, assignment_id)
    assert [q.id for q in quiz.pool] == ["q1", "q2"]
    assert quiz.num_questions == 2

    with pytest.raises(ValidationError):
        assignments.add_question(class_id, assignment_id, single("q2"))

    assignments.remove_question(class_id, assignment_id, "q1")
    quiz = assignments.get_assignment(class_id, assignment_id)
    assert [q.id for q in quiz.pool] == ["q2"]
    assert quiz.num_questions == 1

    with pytest.raises(ValidationError):
        assignments.remove_question(class_id, assignment_id, "q1")


def test_remove_question_drops_every_entry_with_that_id(store, assignments, class_id):
    first, second = QUICK_QUIZ_POOL[0], QUICK_QUIZ_POOL[1]
    store.set(
        f"classes/{class_id}/assignments/legacy",
        {
            "title": "Legacy",
            "createdBy": "prof",
            "numQuestions": 3,
            "pool": [first, {**first, "prompt": "Reworded"}, second],
        },
    )
    assignments.remove_question(class_id, "legacy", first["id"])
    quiz = assignments.get_assignment(class_id, "legacy")
    assert [q.id for q in quiz.pool] == [second["id"]]
    assert quiz.num_questions == 1


def test_missing_assignment(assignments, class_id):
    with pytest.raises(AssignmentNotFoundError):
        assignments.get_assignment(class_id, "nope")
    with pytest.raises(AssignmentNotFoundError):
        assignments.add_question(class_id, "nope", single("q1"))
    with pytest.raises(AssignmentNotFoundError):
        assignments.remove_question(class_id, "nope", "q1")


def test_list_assignments(assignments, class_id):
    first = assignments.create_quick_quiz(class_id, "prof")
    second = assignments.create_quick_quiz(class_id, "prof")
    listed = [a.id for a in assignments.list_assignments(class_id)]
    assert sorted(listed) == sorted([first, second])


def test_delete_assignment_removes_attempts(store, assignments, attempts, class_id):
    assignment_id = assignments.create_quick_quiz(class_id, "prof")
    for uid in ("s1", "s2", "s3"):
        attempts.start_attempt_if_needed(class_id, assignment_id, uid)
    assert assignments.delete_assignment(class_id, assignment_id) == 3
    assert store.query(f"classes/{class_id}/assignments/{assignment_id}/attempts").get() == []
    with pytest.raises(AssignmentNotFoundError):
        assignments.get_assignment(class_id, assignment_id)
