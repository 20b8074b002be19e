"""Quiz assignment, question, attempt and answer schema definitions."""

from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from config import UNANSWERED
from schemas.class_schema import ClassMember, DocumentSchema
from schemas.user import User

QuestionKind = Literal["mcq-single", "mcq-multi", "text"]


class QuizQuestion(DocumentSchema):
    """One pool question.

    Legacy questions have no ``kind``: with ``choices`` they are single-choice
    graded against ``correct_index``, otherwise free text.
    """

    id: str = Field(description="Unique within the pool.")
    prompt: str
    kind: Optional[QuestionKind] = None
    choices: Optional[List[str]] = None
    correct_index: Optional[int] = None
    correct: Optional[int] = None
    correct_multi: Optional[List[int]] = None
    correct_text: Optional[str] = None

    @property
    def resolved_kind(self) -> QuestionKind:
        if self.kind:
            return self.kind
        return "mcq-single" if self.choices is not None else "text"

    @property
    def expected_choice(self) -> Optional[int]:
        return self.correct if self.correct is not None else self.correct_index


class QuizAssignment(DocumentSchema):
    id: Optional[str] = None
    class_id: Optional[str] = None
    title: str
    instructions: Optional[str] = None
    type: Literal["quiz"] = "quiz"
    created_by: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    pool: List[QuizQuestion] = Field(default_factory=list)
    num_questions: int = Field(description="Size of the subset each attempt draws.")
    points: Optional[int] = None


class QuizAttempt(DocumentSchema):
    """A student's attempt. ``answers`` keeps the compact stored form.

    Each stored answer is a number (single choice), a sorted list of numbers
    (multi choice), a string (text) or -1/None (unanswered). Use
    ``utils.grading.decode_answer`` to get the typed variant.
    """

    uid: Optional[str] = None
    selected_ids: List[str] = Field(default_factory=list)
    answers: List[Any] = Field(default_factory=list)
    score: Optional[int] = None
    submitted_at: Optional[str] = None
    graded_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_graded(self) -> bool:
        return self.score is not None

    @property
    def has_progress(self) -> bool:
        """True once graded or at least one slot holds an answer."""
        if self.is_graded:
            return True
        for answer in self.answers:
            if answer is None or answer == UNANSWERED:
                continue
            if isinstance(answer, (int, float)) and answer < 0:
                continue
            return True
        return False


# --- Typed answer variants ---


class SingleChoiceAnswer(BaseModel):
    kind: Literal["mcq-single"] = "mcq-single"
    choice: int

    def to_stored(self) -> int:
        return self.choice


class MultiChoiceAnswer(BaseModel):
    kind: Literal["mcq-multi"] = "mcq-multi"
    choices: List[int] = Field(default_factory=list)

    def to_stored(self) -> List[int]:
        return sorted(set(self.choices))

    def toggle(self, choice: int) -> "MultiChoiceAnswer":
        """Symmetric difference with {choice}; the result stays sorted."""
        current = set(self.choices)
        current ^= {choice}
        return MultiChoiceAnswer(choices=sorted(current))


class TextAnswer(BaseModel):
    kind: Literal["text"] = "text"
    text: str

    def to_stored(self) -> str:
        return self.text


class Unanswered(BaseModel):
    kind: Literal["unanswered"] = "unanswered"

    def to_stored(self) -> int:
        return UNANSWERED


Answer = Annotated[
    Union[SingleChoiceAnswer, MultiChoiceAnswer, TextAnswer, Unanswered],
    Field(discriminator="kind"),
]


# --- Requests / responses ---


class CreateQuizRequest(DocumentSchema):
    title: str
    pool: List[QuizQuestion]
    points: Optional[int] = None
    num_questions: Optional[int] = None
    instructions: Optional[str] = None


class SaveChoiceRequest(DocumentSchema):
    index: int
    choice_index: int


class SaveTextRequest(DocumentSchema):
    index: int
    text: str


class GradeResponse(DocumentSchema):
    score: int
    total: int


class AttemptRow(DocumentSchema):
    """Attempt joined with the student's membership and user document."""

    uid: str
    attempt: QuizAttempt
    member: Optional[ClassMember] = None
    user: Optional[User] = None
