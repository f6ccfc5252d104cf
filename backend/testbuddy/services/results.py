"""
Test Buddy - Results Service
Answer scoring and the per-user results log
"""
import logging
import math
import string
from typing import Any, List, Optional, Sequence, Tuple

from testbuddy.schemas.results import Result, ScoreSummary
from testbuddy.schemas.test_history import Question, QuestionType, UserAnswer
from testbuddy.services.query_optimizer import QueryOptimizer, cache_key_prefix
from testbuddy.services.retry import RetryExecutor, RetryPolicy
from testbuddy.services.validation import sanitize_for_firestore
from testbuddy.store.base import (
    SERVER_TIMESTAMP,
    DocumentStore,
    OrderBy,
    QuerySpec,
    SortDirection,
    Write,
    WriteKind,
    join_path,
)

logger = logging.getLogger(__name__)

_QUIZ_TYPE_LABELS = {
    "MCQ": "multiple_choice",
    "Fill-in-the-blank": "fill_blank",
    "True-False": "true_false",
    "Essay": "essay",
}


def _normalize_text(value: Any) -> str:
    text = " ".join(str(value).casefold().split())
    return text.strip(string.punctuation + " ")


def _to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def is_answer_correct(question: Question, answer: Any) -> bool:
    """
    Grade one answer.

    Essays always need manual review and are never marked correct.
    """
    if answer is None:
        return False

    question_type = question.type
    correct = question.correct_answer

    if question_type == QuestionType.MCQ:
        if isinstance(answer, bool):
            return False
        if isinstance(answer, int):
            return answer == correct
        # Answer given as option text
        options = question.options or []
        if isinstance(correct, int) and 0 <= correct < len(options):
            return _normalize_text(answer) == _normalize_text(options[correct])
        return False

    if question_type == QuestionType.TRUE_FALSE:
        given = _to_bool(answer)
        return given is not None and given == _to_bool(correct)

    if question_type == QuestionType.MSQ:
        if not isinstance(answer, list) or not isinstance(correct, list):
            return False
        return set(answer) == set(correct)

    if question_type == QuestionType.FILL_IN_THE_BLANK:
        return _normalize_text(answer) == _normalize_text(correct)

    return False


def score_answers(
    questions: Sequence[Question],
    answers: Sequence[UserAnswer],
) -> Tuple[List[UserAnswer], ScoreSummary]:
    """
    Mark every answer and compute the percentage score.

    Score is earned points over total points times 100, rounded half up.
    Unanswered questions earn nothing. Only the last answer per question
    counts and answers to unknown questions are dropped.
    """
    by_id = {question.id: question for question in questions}
    latest = {}
    for answer in answers:
        if answer.question_id in by_id:
            latest[answer.question_id] = answer

    marked = []
    earned = 0.0
    correct_count = 0

    for question_id, answer in latest.items():
        question = by_id[question_id]
        correct = is_answer_correct(question, answer.answer)
        marked.append(answer.model_copy(update={"is_correct": correct}))
        if correct:
            earned += question.points
            correct_count += 1

    total = float(sum(question.points for question in questions))
    score = math.floor(earned / total * 100 + 0.5) if total > 0 else 0
    return marked, ScoreSummary(
        score=score,
        earned_points=earned,
        total_points=total,
        correct_count=correct_count,
        question_count=len(questions),
    )


def infer_quiz_type_from(questions: Sequence[Any]) -> str:
    """Label used in the results log: one of the known labels, or 'mixed'."""
    if not questions:
        return "unknown"

    types = {q.type if isinstance(q, Question) else q.get("type") for q in questions}
    if len(types) > 1:
        return "mixed"

    question_type = str(types.pop())
    if question_type in _QUIZ_TYPE_LABELS:
        return _QUIZ_TYPE_LABELS[question_type]
    return "".join(c if c.isalnum() else "_" for c in question_type.lower())


class ResultsService:
    """Writes and reads ``users/{uid}/results``."""

    def __init__(self, store: DocumentStore, retry: RetryExecutor, query_optimizer: Optional[QueryOptimizer] = None):
        self.store = store
        self.retry = retry
        self.query_optimizer = query_optimizer

    async def log_result(self, user_id: str, result: Result, policy: Optional[RetryPolicy] = None) -> str:
        """Append a result; empty optional references are left out."""
        data = {
            "testName": result.test_name,
            "score": result.score,
            "timeTaken": result.time_taken,
            "quizType": result.quiz_type,
            "questionCount": result.question_count,
            "topics": list(result.topics or []),
            "createdAt": SERVER_TIMESTAMP,
        }
        if result.test_id:
            data["testId"] = result.test_id
        if result.folder_id:
            data["folderId"] = result.folder_id
        if result.retake_of:
            data["retakeOf"] = result.retake_of

        result_id = self.store.new_id()
        path = join_path("users", user_id, "results", result_id)

        write = Write(WriteKind.SET, path, sanitize_for_firestore(data))
        await self.retry.execute(lambda: self.store.commit_batch([write]), policy, "Log result")
        if self.query_optimizer is not None:
            self.query_optimizer.invalidate_cache(cache_key_prefix("users", "results", user_id))
        logger.info(f"Result logged for user {user_id}: {result_id}")
        return result_id

    async def get_user_results(
        self,
        user_id: str,
        limit: int = 100,
        policy: Optional[RetryPolicy] = None,
    ) -> List[Result]:
        spec = QuerySpec(
            collection=join_path("users", user_id, "results"),
            order_by=OrderBy("createdAt", SortDirection.DESC),
            limit=limit,
        )
        snapshots = await self.retry.execute(lambda: self.store.query(spec), policy, "Get user results")
        return [Result.from_document(snapshot.to_dict()) for snapshot in snapshots]
