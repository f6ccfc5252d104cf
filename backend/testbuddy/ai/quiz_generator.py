"""
Test Buddy - AI Quiz Generator
Turns study material into validated questions, and scored tests into study feedback
"""
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from testbuddy.ai.core.llm import LLMClient
from testbuddy.core.errors import ErrorKind, StoreError, ValidationError
from testbuddy.schemas.quiz import FeedbackSummary
from testbuddy.schemas.test_history import Question, QuizType, UserAnswer
from testbuddy.services.retry import RetryExecutor, RetryPolicy
from testbuddy.services.validation import QUESTION_TYPES, validate_question

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 8000
MAX_QUESTION_COUNT = 50

# Generation is slow; one retry, long deadline
GENERATION_POLICY = RetryPolicy(max_attempts=2, initial_delay=1.0, max_delay=5.0, timeout=180.0)

_TYPE_ALIASES = {
    "multiple choice": "MCQ",
    "multiple_choice": "MCQ",
    "mcq": "MCQ",
    "msq": "MSQ",
    "multiple select": "MSQ",
    "true/false": "True-False",
    "true_false": "True-False",
    "true-false": "True-False",
    "fill-in-the-blank": "Fill-in-the-blank",
    "fill in the blank": "Fill-in-the-blank",
    "fill_blank": "Fill-in-the-blank",
    "essay": "Essay",
    "short answer": "Essay",
}

_TYPE_INSTRUCTIONS = {
    QuizType.MCQ: "IMPORTANT: Create ONLY multiple choice questions with exactly 4-5 options each. Do NOT create any other question types.",
    QuizType.MSQ: "IMPORTANT: Create ONLY multiple select questions with 4-5 options and two or more correct options. Do NOT create any other question types.",
    QuizType.TRUE_FALSE: "IMPORTANT: Create ONLY true/false questions. Do NOT create any other question types.",
    QuizType.FILL_IN_THE_BLANK: "IMPORTANT: Create ONLY fill-in-the-blank questions with clear, concise answers. Do NOT create any other question types.",
    QuizType.ESSAY: "IMPORTANT: Create ONLY essay questions that require analysis and critical thinking. Do NOT create any other question types.",
    QuizType.MIXED: "Create a balanced mix of question types: multiple choice, true/false, fill-in-the-blank, and essay questions. Vary the difficulty levels.",
}


class QuizGenerator:
    """Generate practice tests from study material using the LLM."""

    SYSTEM_PROMPT = """You are Test Buddy, an AI exam generator.
Your job is to create dynamic practice tests from the provided study material.

Rules:
1. Rephrase questions instead of repeating text directly.
2. Vary difficulty: some questions easy recall, some requiring analysis.
3. Provide correct answers and short explanations for each.
4. Use these question types and answer formats:
   - "MCQ": 4-5 "options", "correctAnswer" is the index of the correct option.
   - "MSQ": 4-5 "options", "correctAnswer" is a list of correct option indices.
   - "True-False": "correctAnswer" is true or false.
   - "Fill-in-the-blank": "correctAnswer" is the short answer text.
   - "Essay": "correctAnswer" is a model answer.

Respond with ONLY a JSON array (no markdown, no explanation):
[
  {
    "id": "q1",
    "type": "MCQ",
    "question": "What does CIA in cybersecurity stand for?",
    "options": ["Confidentiality, Integrity, Availability", "Control, Identity, Access", "Confidential, Internal, Audit", "Cybersecurity, Integrity, Authentication"],
    "correctAnswer": 0,
    "explanation": "CIA refers to the core triad of information security.",
    "points": 1
  }
]"""

    FEEDBACK_SYSTEM_PROMPT = """You are Test Buddy, a study coach.
Review the learner's test and write a short, encouraging study plan.

Respond with ONLY this JSON (no markdown, no explanation):
{
  "overall_assessment": "Two or three sentences on how the learner did",
  "strengths": ["What they clearly understand"],
  "focus_areas": [
    {"topic": "Topic", "why": "Why it needs work", "examples": ["Missed question"], "study_actions": ["Concrete action"]}
  ],
  "suggested_next_quiz": {"difficulty": "easy|medium|hard", "question_mix": ["MCQ"], "target_topics": ["Topic"]}
}"""

    def __init__(self, llm: LLMClient, retry: RetryExecutor, policy: RetryPolicy = GENERATION_POLICY):
        self.llm = llm
        self.retry = retry
        self.policy = policy

    # ========================================
    # Quiz generation
    # ========================================

    @staticmethod
    def build_prompt(text: str, quiz_type: QuizType | str, question_count: int) -> str:
        instruction = _TYPE_INSTRUCTIONS.get(
            QuizType(quiz_type), "Create a variety of question types appropriate for the content."
        )
        material = text[:MAX_TEXT_LENGTH]
        if len(text) > MAX_TEXT_LENGTH:
            material += "\n\n[Content truncated for length - focus on key concepts covered above]"

        return f"""Generate exactly {question_count} dynamic practice questions from this study material.

{instruction}

Study Material:
{material}

Requirements:
- Create {question_count} questions that test deep understanding, not just memorization
- Rephrase concepts rather than copying text directly
- Include scenario-based questions where appropriate
- Vary difficulty from basic recall to analysis
- Provide clear explanations for all answers"""

    async def generate_quiz(
        self,
        text: str,
        quiz_type: QuizType | str = QuizType.MIXED,
        question_count: int = 5,
        model: Optional[str] = None,
    ) -> List[Question]:
        """
        Generate questions from ``text``.

        Malformed model output counts as a retryable failure, so the
        model is asked again within the policy's attempt budget.

        Raises:
            ValidationError: empty study material
            StoreError: generation failed after retries
        """
        if not text or not text.strip():
            raise ValidationError("Study material is required", field="text")

        quiz_type = QuizType(quiz_type)
        count = max(1, min(question_count, MAX_QUESTION_COUNT))
        if count != question_count:
            logger.warning(f"Requested {question_count} questions, generating {count}")

        prompt = self.build_prompt(text, quiz_type, count)

        async def _generate() -> List[Question]:
            raw = await self._generate_json(prompt, self.SYSTEM_PROMPT, model, "quiz")
            return parse_questions(raw, quiz_type)

        questions = await self.retry.execute(_generate, self.policy, "Generate quiz")
        logger.info(f"Generated {len(questions)} {quiz_type.value} questions")
        return questions

    # ========================================
    # Feedback
    # ========================================

    async def generate_feedback(
        self,
        test_name: str,
        score: float,
        questions: Sequence[Question],
        answers: Sequence[UserAnswer],
        model: Optional[str] = None,
    ) -> FeedbackSummary:
        """Study feedback for a scored test."""
        by_question = {answer.question_id: answer for answer in answers}
        review = []
        for question in questions:
            answer = by_question.get(question.id)
            review.append({
                "question": question.question,
                "type": question.type,
                "correctAnswer": question.correct_answer,
                "learnerAnswer": answer.answer if answer else None,
                "isCorrect": answer.is_correct if answer else False,
            })

        prompt = (
            f"Test: {test_name}\n"
            f"Score: {round(score)}%\n\n"
            f"Questions and answers:\n{json.dumps(review, indent=2, default=str)}"
        )

        async def _feedback() -> FeedbackSummary:
            raw = await self._generate_json(prompt, self.FEEDBACK_SYSTEM_PROMPT, model, "feedback")
            if not isinstance(raw, dict):
                raise StoreError(ErrorKind.INTERNAL, "Model returned malformed feedback")
            return FeedbackSummary.model_validate(raw)

        return await self.retry.execute(_feedback, self.policy, "Generate feedback")

    async def _generate_json(self, prompt: str, system_prompt: str, model: Optional[str], what: str) -> Any:
        try:
            return await self.llm.generate_json(prompt, system_prompt=system_prompt, model=model)
        except json.JSONDecodeError as e:
            logger.warning(f"Model returned invalid JSON for {what}: {e}")
            raise StoreError(ErrorKind.INTERNAL, f"Model returned invalid JSON for {what}", cause=e)


# ========================================
# Parsing
# ========================================

def _normalize_type(value: Any, quiz_type: QuizType) -> str:
    if isinstance(value, str):
        if value in QUESTION_TYPES:
            return value
        alias = _TYPE_ALIASES.get(value.strip().lower())
        if alias:
            return alias
    if quiz_type != QuizType.MIXED:
        return quiz_type.value
    return value if isinstance(value, str) else "MCQ"


def _normalize_answer(question_type: str, correct: Any, options: Any) -> Any:
    if question_type == "True-False" and isinstance(correct, str):
        lowered = correct.strip().lower()
        if lowered in ("true", "false"):
            return lowered == "true"
    if question_type == "MCQ" and isinstance(correct, str) and isinstance(options, list):
        if correct.strip().isdigit():
            return int(correct.strip())
        if correct in options:
            return options.index(correct)
    if question_type == "MSQ" and isinstance(correct, int) and not isinstance(correct, bool):
        return [correct]
    return correct


def normalize_question(raw: Dict[str, Any], index: int, quiz_type: QuizType) -> Dict[str, Any]:
    """Fill defaults and coerce answer formats the model commonly gets wrong."""
    question_type = _normalize_type(raw.get("type"), quiz_type)
    options = raw.get("options") or None
    normalized = {
        "id": str(raw.get("id") or f"q{index + 1}"),
        "type": question_type,
        "question": raw.get("question") or "",
        "correctAnswer": _normalize_answer(question_type, raw.get("correctAnswer"), options),
        "explanation": raw.get("explanation") or "No explanation provided",
        "points": raw.get("points") or 1,
    }
    if options is not None:
        normalized["options"] = [str(option) for option in options]
    return normalized


def parse_questions(raw: Any, quiz_type: QuizType | str = QuizType.MIXED) -> List[Question]:
    """
    Validate decoded model output and build ``Question`` objects.

    Accepts a bare array, a single question object, or ``{"questions": [...]}``.
    """
    quiz_type = QuizType(quiz_type)
    if isinstance(raw, dict):
        raw = raw.get("questions", [raw])
    if not isinstance(raw, list) or not raw:
        raise StoreError(ErrorKind.INTERNAL, "Model returned no questions")

    questions = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise StoreError(ErrorKind.INTERNAL, f"Invalid question format at index {index}")
        normalized = normalize_question(item, index, quiz_type)
        try:
            validate_question(normalized, index)
        except ValidationError as e:
            raise StoreError(ErrorKind.INTERNAL, f"Model returned an invalid question: {e.message}", cause=e)
        questions.append(Question.from_document(normalized))
    return questions
