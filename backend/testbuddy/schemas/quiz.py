"""
Test Buddy - Quiz Generation Schemas
"""
from typing import Literal

from pydantic import BaseModel, Field

from testbuddy.schemas.common import DocumentModel
from testbuddy.schemas.test_history import Question, QuizType


class GenerateQuizRequest(DocumentModel):
    """Study material plus the kind of quiz to build from it."""
    text: str = Field(..., min_length=1)
    quiz_type: QuizType = QuizType.MIXED
    question_count: int = Field(default=5, ge=1, le=100)
    test_name: str | None = None
    file_name: str = "pasted-text"
    file_type: str = "text/plain"
    folder_id: str | None = None
    save: bool = True


class GeneratedQuiz(DocumentModel):
    questions: list[Question]
    model: str
    test_id: str | None = None
    tests_remaining: int | None = None


class FeedbackRequest(DocumentModel):
    test_id: str


# ============================================================================
# AI feedback (keys are snake_case in the model output)
# ============================================================================

class FocusArea(BaseModel):
    topic: str
    why: str = ""
    examples: list[str] = Field(default_factory=list)
    study_actions: list[str] = Field(default_factory=list)


class SuggestedQuiz(BaseModel):
    difficulty: Literal["easy", "medium", "hard"] = "medium"
    question_mix: list[str] = Field(default_factory=list)
    target_topics: list[str] = Field(default_factory=list)


class FeedbackSummary(BaseModel):
    overall_assessment: str
    strengths: list[str] = Field(default_factory=list)
    focus_areas: list[FocusArea] = Field(default_factory=list)
    suggested_next_quiz: SuggestedQuiz | None = None
