"""
Test Buddy - Test History Schemas
Generated questions, user answers and saved tests
"""
from datetime import datetime
from enum import Enum
from typing import ClassVar, Union

from pydantic import Field

from testbuddy.schemas.common import DocumentModel


class QuestionType(str, Enum):
    MCQ = "MCQ"
    MSQ = "MSQ"
    TRUE_FALSE = "True-False"
    FILL_IN_THE_BLANK = "Fill-in-the-blank"
    ESSAY = "Essay"


class QuizType(str, Enum):
    MCQ = "MCQ"
    MSQ = "MSQ"
    TRUE_FALSE = "True-False"
    FILL_IN_THE_BLANK = "Fill-in-the-blank"
    ESSAY = "Essay"
    MIXED = "Mixed"


# bool first so True/False are never read as 1/0
AnswerValue = Union[bool, int, str, list[int]]


class Question(DocumentModel):
    """
    One generated question.

    ``correct_answer`` is an option index for MCQ, a list of indices for
    MSQ, a bool for True-False and text for fill-in and essay questions.
    """
    id: str
    type: QuestionType
    question: str
    options: list[str] | None = None
    correct_answer: AnswerValue
    explanation: str | None = None
    points: float = 1


class UserAnswer(DocumentModel):
    question_id: str
    answer: AnswerValue | None = None
    is_correct: bool | None = None
    time_spent: float | None = None
    marked_for_review: bool = False


class TestHistoryCreate(DocumentModel):
    """Payload for saving a generated test."""
    __test__: ClassVar[bool] = False

    test_name: str
    file_name: str
    file_type: str
    extracted_text: str
    quiz_type: QuizType
    questions: list[Question]
    answers: list[UserAnswer] = Field(default_factory=list)
    score: float | None = None
    folder_id: str | None = None
    retake_of: str | None = None


class TestHistory(TestHistoryCreate):
    """
    A saved test. Stored twice under the same id: ``testHistory/{id}``
    and ``users/{uid}/tests/{id}``.
    """
    id: str | None = None
    user_id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None


class TestHistoryPage(DocumentModel):
    __test__: ClassVar[bool] = False

    tests: list[TestHistory]
    has_more: bool
    cursor: str | None = None


class CompleteTestRequest(DocumentModel):
    answers: list[UserAnswer]
    time_taken: float | None = None


class MoveTestRequest(DocumentModel):
    folder_id: str | None = None
