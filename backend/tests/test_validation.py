"""
Test Buddy - Validation Tests
"""
from datetime import datetime, timezone

import pytest

from testbuddy.core.errors import ErrorKind, ValidationError
from testbuddy.services.validation import (
    sanitize_for_firestore,
    sanitize_string,
    validate_email,
    validate_folder,
    validate_password,
    validate_question,
    validate_test_history,
    validate_user_id,
)
from testbuddy.store.base import SERVER_TIMESTAMP, UNSET, Increment


def test_sanitize_drops_unset_recursively():
    data = {"a": 1, "b": UNSET, "c": {"d": UNSET, "e": 2}}

    assert sanitize_for_firestore(data) == {"a": 1, "c": {"e": 2}}


def test_sanitize_keeps_none_sentinels_and_datetimes():
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    data = {
        "folderId": None,
        "createdAt": now,
        "updatedAt": SERVER_TIMESTAMP,
        "count": Increment(2),
        "items": ({"x": UNSET, "y": 1}, UNSET),
    }

    cleaned = sanitize_for_firestore(data)

    assert cleaned["folderId"] is None
    assert cleaned["createdAt"] == now
    assert cleaned["updatedAt"] is SERVER_TIMESTAMP
    assert cleaned["count"] == Increment(2)
    assert cleaned["items"] == [{"y": 1}]


def test_sanitize_does_not_mutate_input():
    data = {"a": UNSET, "b": {"c": UNSET}}
    sanitize_for_firestore(data)

    assert data["a"] is UNSET
    assert data["b"]["c"] is UNSET


@pytest.mark.parametrize("email", ["", "   ", "no-at-sign", "a@b", "a b@c.com", None])
def test_invalid_emails(email):
    with pytest.raises(ValidationError) as exc_info:
        validate_email(email)
    assert exc_info.value.kind == ErrorKind.VALIDATION
    assert exc_info.value.field == "email"


def test_valid_email_is_trimmed():
    assert validate_email("  user@example.com ") == "user@example.com"


def test_password_length():
    with pytest.raises(ValidationError):
        validate_password("12345")
    assert validate_password("123456") == "123456"


def test_user_id_required():
    with pytest.raises(ValidationError):
        validate_user_id("  ")
    assert validate_user_id(" uid-1 ") == "uid-1"


def test_question_needs_options_for_choice_types(sample_questions):
    question = dict(sample_questions[0], options=["only one"])

    with pytest.raises(ValidationError) as exc_info:
        validate_question(question, 3)
    assert exc_info.value.field == "questions[3].options"


def test_question_type_must_be_known(sample_questions):
    with pytest.raises(ValidationError):
        validate_question(dict(sample_questions[0], type="Matching"))


def test_question_correct_answer_required(sample_questions):
    question = dict(sample_questions[1])
    del question["correctAnswer"]

    with pytest.raises(ValidationError):
        validate_question(question)


def test_false_is_a_valid_correct_answer(sample_questions):
    validate_question(dict(sample_questions[1], correctAnswer=False))


def _test_doc(sample_test_data, **overrides):
    return {**sample_test_data, "userId": "user-1", **overrides}


def test_valid_test_history(sample_test_data):
    validate_test_history(_test_doc(sample_test_data, score=87))


@pytest.mark.parametrize("field", ["userId", "testName", "fileName", "fileType", "extractedText", "quizType"])
def test_test_history_required_fields(sample_test_data, field):
    data = _test_doc(sample_test_data)
    data[field] = ""

    with pytest.raises(ValidationError) as exc_info:
        validate_test_history(data)
    assert exc_info.value.field == field


@pytest.mark.parametrize("score", [-1, 101, float("nan"), "87", True])
def test_test_history_score_range(sample_test_data, score):
    with pytest.raises(ValidationError) as exc_info:
        validate_test_history(_test_doc(sample_test_data, score=score))
    assert exc_info.value.field == "score"


def test_test_history_needs_questions(sample_test_data):
    with pytest.raises(ValidationError):
        validate_test_history(_test_doc(sample_test_data, questions=[]))


def test_test_history_checks_answers(sample_test_data):
    with pytest.raises(ValidationError):
        validate_test_history(_test_doc(sample_test_data, answers=[{"answer": 0}]))


def test_folder_limits():
    validate_folder({"userId": "u", "name": "Biology"})

    with pytest.raises(ValidationError):
        validate_folder({"userId": "u", "name": "x" * 51})
    with pytest.raises(ValidationError):
        validate_folder({"userId": "u", "name": "ok", "description": "x" * 201})
    with pytest.raises(ValidationError):
        validate_folder({"userId": "u", "name": "   "})


def test_sanitize_string():
    assert sanitize_string("  hello  ") == "hello"
    assert sanitize_string("abcdef", max_length=3) == "abc"
    assert sanitize_string(42) == ""
