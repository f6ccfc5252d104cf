"""
Test Buddy - Results Service Tests
"""
import pytest

from testbuddy.schemas.results import Result
from testbuddy.schemas.test_history import Question, UserAnswer
from testbuddy.services.results import (
    ResultsService,
    infer_quiz_type_from,
    is_answer_correct,
    score_answers,
)


@pytest.fixture
def questions(sample_questions) -> list[Question]:
    return [Question.from_document(q) for q in sample_questions]


def test_all_auto_graded_answers_correct(questions):
    answers = [
        UserAnswer(question_id="q1", answer=0),
        UserAnswer(question_id="q2", answer="true"),
        UserAnswer(question_id="q3", answer=[2, 0]),
        UserAnswer(question_id="q4", answer="  firewall."),
        UserAnswer(question_id="q5", answer="Several layers of controls."),
    ]

    marked, summary = score_answers(questions, answers)

    assert [a.is_correct for a in marked] == [True, True, True, True, False]
    assert summary.score == 80
    assert summary.earned_points == 4
    assert summary.total_points == 5
    assert summary.correct_count == 4
    assert summary.question_count == 5


def test_unanswered_questions_earn_nothing(questions):
    _, summary = score_answers(questions, [UserAnswer(question_id="q2", answer=True)])

    assert summary.score == 20


def test_repeated_and_unknown_answers_do_not_inflate_score(questions):
    answers = [UserAnswer(question_id="q1", answer=0) for _ in range(6)]
    answers += [UserAnswer(question_id="q2", answer=False), UserAnswer(question_id="q2", answer=True)]
    answers.append(UserAnswer(question_id="ghost", answer=0))

    marked, summary = score_answers(questions, answers)

    assert [(a.question_id, a.is_correct) for a in marked] == [("q1", True), ("q2", True)]
    assert summary.score == 40
    assert summary.correct_count == 2


def test_score_rounds_half_up():
    questions = [
        Question(id=f"q{i}", type="Fill-in-the-blank", question="?", correct_answer="yes")
        for i in range(8)
    ]

    _, summary = score_answers(questions, [UserAnswer(question_id="q0", answer="yes")])

    assert summary.score == 13


def test_zero_points_scores_zero():
    _, summary = score_answers([], [])

    assert summary.score == 0


def test_mcq_accepts_option_text(questions):
    mcq = questions[0]

    assert is_answer_correct(mcq, "confidentiality, integrity, availability")
    assert not is_answer_correct(mcq, "Control, Identity, Access")
    assert not is_answer_correct(mcq, 1)
    assert not is_answer_correct(mcq, None)


def test_msq_needs_exact_set(questions):
    msq = questions[2]

    assert not is_answer_correct(msq, [0])
    assert not is_answer_correct(msq, [0, 1, 2])
    assert not is_answer_correct(msq, 0)


def test_true_false_rejects_non_boolean_text(questions):
    assert not is_answer_correct(questions[1], "maybe")
    assert not is_answer_correct(questions[1], False)


def test_quiz_type_labels(sample_questions):
    assert infer_quiz_type_from(sample_questions) == "mixed"
    assert infer_quiz_type_from([{"type": "MCQ"}, {"type": "MCQ"}]) == "multiple_choice"
    assert infer_quiz_type_from([{"type": "True-False"}]) == "true_false"
    assert infer_quiz_type_from([{"type": "MSQ"}]) == "msq"
    assert infer_quiz_type_from([]) == "unknown"


@pytest.mark.asyncio
async def test_log_and_read_results(store, retry):
    service = ResultsService(store, retry)

    first = await service.log_result("u1", Result(
        test_name="Quiz A", score=80, quiz_type="mixed", question_count=5, test_id="t1",
    ))
    await service.log_result("u1", Result(
        test_name="Quiz B", score=60, quiz_type="essay", question_count=2, folder_id=None,
    ))

    results = await service.get_user_results("u1")

    assert {r.test_name for r in results} == {"Quiz A", "Quiz B"}
    stored = (await store.get(f"users/u1/results/{first}")).data
    assert stored["testId"] == "t1"
    assert "folderId" not in stored
    assert "retakeOf" not in stored
    assert stored["createdAt"] is not None
    assert await service.get_user_results("u2") == []
