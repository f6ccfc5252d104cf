"""
Test Buddy - Results, Usage and Analytics Schemas
"""
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from testbuddy.core.plans import UserPlan
from testbuddy.schemas.common import DocumentModel


# ============================================================================
# Results
# ============================================================================

class ScoreSummary(BaseModel):
    """Outcome of scoring a set of answers."""
    score: int
    earned_points: float
    total_points: float
    correct_count: int
    question_count: int


class Result(DocumentModel):
    """Result document stored at ``users/{uid}/results/{id}``."""
    id: str | None = None
    test_id: str | None = None
    test_name: str
    score: float
    time_taken: float | None = None
    quiz_type: str
    question_count: int
    topics: list[str] = Field(default_factory=list)
    folder_id: str | None = None
    retake_of: str | None = None
    created_at: datetime | None = None


# ============================================================================
# Usage
# ============================================================================

class UsageRecord(DocumentModel):
    """Monthly counter stored at ``users/{uid}/usage/{YYYY-MM}``."""
    month_id: str
    tests_generated: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UsageCheck(DocumentModel):
    allowed: bool
    used: int
    limit: int | None = None
    remaining: int | None = None
    reason: str | None = None


class UsageSummary(DocumentModel):
    plan: UserPlan
    current_month: UsageRecord
    last_month: UsageRecord
    limit: int | None = None
    remaining: int | None = None


# ============================================================================
# Analytics
# ============================================================================

class QuizTypeStats(DocumentModel):
    count: int
    average_score: float


class TrendPoint(DocumentModel):
    test_id: str
    test_name: str
    score: float
    created_at: datetime | None = None


class UserAnalytics(DocumentModel):
    tier: Literal["basic", "advanced"]
    total_tests: int
    completed_tests: int
    average_score: float
    best_score: float
    by_quiz_type: dict[str, QuizTypeStats]
    recent_trend: list[TrendPoint] | None = None
    by_folder: dict[str, QuizTypeStats] | None = None
