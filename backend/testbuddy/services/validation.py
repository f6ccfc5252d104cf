"""
Test Buddy - Validation
Payload checks and sanitisation applied before anything reaches the store
"""
import math
import re
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from testbuddy.core.errors import ValidationError
from testbuddy.store.base import SERVER_TIMESTAMP, UNSET, Increment

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MIN_PASSWORD_LENGTH = 6
MAX_FOLDER_NAME_LENGTH = 50
MAX_FOLDER_DESCRIPTION_LENGTH = 200

QUESTION_TYPES = frozenset({"MCQ", "MSQ", "True-False", "Fill-in-the-blank", "Essay"})
QUIZ_TYPES = QUESTION_TYPES | {"Mixed"}
OPTION_QUESTION_TYPES = frozenset({"MCQ", "MSQ"})


def _is_blank(value: Any) -> bool:
    return value is None or value is UNSET or (isinstance(value, str) and not value.strip())


def _require(data: Mapping[str, Any], field: str, label: Optional[str] = None) -> Any:
    value = data.get(field, UNSET)
    if _is_blank(value):
        raise ValidationError(f"{label or field} is required", field=field)
    return value


def validate_email(email: Any) -> str:
    if not isinstance(email, str) or not email.strip():
        raise ValidationError("Email is required", field="email")
    if not EMAIL_PATTERN.match(email.strip()):
        raise ValidationError("Invalid email format", field="email")
    return email.strip()


def validate_password(password: Any) -> str:
    if not isinstance(password, str) or not password:
        raise ValidationError("Password is required", field="password")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long",
            field="password",
        )
    return password


def validate_user_id(user_id: Any) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("User ID is required", field="userId")
    return user_id.strip()


def validate_question(question: Mapping[str, Any], index: int = 0) -> None:
    """Check one generated question."""
    prefix = f"questions[{index}]"
    if not isinstance(question, Mapping):
        raise ValidationError(f"{prefix} must be an object", field=prefix)

    _require(question, "id", f"{prefix}.id")
    _require(question, "question", f"{prefix}.question")

    question_type = question.get("type")
    if question_type not in QUESTION_TYPES:
        raise ValidationError(f"{prefix}.type is invalid: {question_type!r}", field=f"{prefix}.type")

    if question_type in OPTION_QUESTION_TYPES:
        options = question.get("options")
        if not isinstance(options, (list, tuple)) or len(options) < 2:
            raise ValidationError(
                f"{prefix} must have at least 2 options for {question_type} questions",
                field=f"{prefix}.options",
            )

    correct = question.get("correctAnswer", UNSET)
    if correct is UNSET or correct is None:
        raise ValidationError(f"{prefix}.correctAnswer is required", field=f"{prefix}.correctAnswer")

    points = question.get("points", UNSET)
    if points is not UNSET:
        if isinstance(points, bool) or not isinstance(points, (int, float)) or points <= 0:
            raise ValidationError(f"{prefix}.points must be positive", field=f"{prefix}.points")


def validate_user_answer(answer: Mapping[str, Any], index: int = 0) -> None:
    prefix = f"answers[{index}]"
    if not isinstance(answer, Mapping):
        raise ValidationError(f"{prefix} must be an object", field=prefix)
    _require(answer, "questionId", f"{prefix}.questionId")
    if answer.get("answer", UNSET) is UNSET:
        raise ValidationError(f"{prefix}.answer is required", field=f"{prefix}.answer")
    is_correct = answer.get("isCorrect", UNSET)
    if is_correct is not UNSET and is_correct is not None and not isinstance(is_correct, bool):
        raise ValidationError(f"{prefix}.isCorrect must be a boolean", field=f"{prefix}.isCorrect")


def validate_test_history(data: Mapping[str, Any]) -> None:
    """
    Check a test history payload (camelCase document shape).

    Raises:
        ValidationError: naming the first offending field
    """
    for field in ("userId", "testName", "fileName", "fileType", "extractedText"):
        _require(data, field)

    quiz_type = _require(data, "quizType")
    if quiz_type not in QUIZ_TYPES:
        raise ValidationError(f"quizType is invalid: {quiz_type!r}", field="quizType")

    questions = data.get("questions")
    if not isinstance(questions, (list, tuple)) or not questions:
        raise ValidationError("At least one question is required", field="questions")
    for index, question in enumerate(questions):
        validate_question(question, index)

    answers = data.get("answers", [])
    if answers is UNSET or answers is None:
        answers = []
    if not isinstance(answers, (list, tuple)):
        raise ValidationError("answers must be a list", field="answers")
    for index, answer in enumerate(answers):
        validate_user_answer(answer, index)

    score = data.get("score", UNSET)
    if score is not UNSET and score is not None:
        validate_score(score)


def validate_score(score: Any) -> None:
    if (
        isinstance(score, bool)
        or not isinstance(score, (int, float))
        or not math.isfinite(score)
        or not 0 <= score <= 100
    ):
        raise ValidationError("Score must be a number between 0 and 100", field="score")


def validate_folder(data: Mapping[str, Any]) -> None:
    _require(data, "userId")
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Folder name is required", field="name")
    if len(name.strip()) > MAX_FOLDER_NAME_LENGTH:
        raise ValidationError(
            f"Folder name must be {MAX_FOLDER_NAME_LENGTH} characters or less",
            field="name",
        )
    description = data.get("description")
    if isinstance(description, str) and len(description) > MAX_FOLDER_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Folder description must be {MAX_FOLDER_DESCRIPTION_LENGTH} characters or less",
            field="description",
        )


def sanitize_string(value: Any, max_length: Optional[int] = None) -> str:
    """Trim whitespace and optionally truncate. Non-strings become ''."""
    if not isinstance(value, str):
        return ""
    value = value.strip()
    if max_length is not None:
        value = value[:max_length]
    return value


def sanitize_for_firestore(obj: Any) -> Any:
    """
    Return a copy of ``obj`` with every ``UNSET`` value removed.

    Works through nested mappings and sequences; sequences come back as
    lists. ``None`` is kept. Datetimes and store sentinels pass through.
    """
    if obj is UNSET:
        return None
    if isinstance(obj, (datetime, Increment)) or obj is SERVER_TIMESTAMP:
        return obj
    if isinstance(obj, Mapping):
        cleaned: Dict[str, Any] = {}
        for key, value in obj.items():
            if value is UNSET:
                continue
            cleaned[key] = sanitize_for_firestore(value)
        return cleaned
    if isinstance(obj, (list, tuple)):
        return [sanitize_for_firestore(item) for item in obj if item is not UNSET]
    return obj
