"""
Test Buddy - Quiz API Routes
AI quiz generation within monthly plan limits, and AI feedback for Pro
"""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from testbuddy.api.deps import FEATURE_LABELS, CurrentProfile, Services, require_feature
from testbuddy.core.errors import ErrorKind, FeatureNotAvailableError, StoreError
from testbuddy.core.plans import can_use_feature, get_plan_features, get_upgrade_message
from testbuddy.schemas.quiz import FeedbackRequest, FeedbackSummary, GeneratedQuiz, GenerateQuizRequest
from testbuddy.schemas.test_history import TestHistory
from testbuddy.schemas.user import UserProfile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quiz", tags=["Quiz"])


@router.post(
    "/generate",
    response_model=GeneratedQuiz,
    summary="Generate a quiz",
    description="Generate questions from study material with the plan's model. Counts toward the monthly limit.",
)
async def generate_quiz(payload: GenerateQuizRequest, profile: CurrentProfile, services: Services) -> GeneratedQuiz:
    if payload.folder_id and not can_use_feature(profile.plan, "folders"):
        raise FeatureNotAvailableError("folders", get_upgrade_message(profile.plan, FEATURE_LABELS["folders"]))

    check = await services.usage.can_generate_test(profile.uid, profile.plan)
    if not check.allowed:
        raise FeatureNotAvailableError("max_tests_per_month", check.reason or "Monthly test limit reached")

    model = get_plan_features(profile.plan).model
    questions = await services.quiz_generator.generate_quiz(
        payload.text, payload.quiz_type, payload.question_count, model=model
    )
    await services.usage.increment_test_usage(profile.uid)

    test_id = None
    if payload.save:
        test = TestHistory(
            user_id=profile.uid,
            test_name=payload.test_name or payload.file_name,
            file_name=payload.file_name,
            file_type=payload.file_type,
            extracted_text=payload.text,
            quiz_type=payload.quiz_type,
            questions=questions,
        )
        if payload.folder_id:
            test.folder_id = payload.folder_id
        test_id = await services.firebase.save_test_history(test)

    logger.info(f"Quiz generated for user {profile.uid}: {len(questions)} questions")
    return GeneratedQuiz(
        questions=questions,
        model=model,
        test_id=test_id,
        tests_remaining=max(0, check.remaining - 1) if check.remaining is not None else None,
    )


@router.post("/feedback", response_model=FeedbackSummary, summary="AI feedback on a completed test")
async def generate_feedback(
    payload: FeedbackRequest,
    profile: Annotated[UserProfile, Depends(require_feature("ai_feedback"))],
    services: Services,
) -> FeedbackSummary:
    test = await services.firebase.get_test_history(profile.uid, payload.test_id)
    if test is None:
        raise StoreError(ErrorKind.NOT_FOUND, f"Test {payload.test_id} not found")
    if test.score is None:
        raise StoreError(ErrorKind.FAILED_PRECONDITION, "Complete the test before requesting feedback")

    return await services.quiz_generator.generate_feedback(
        test.test_name,
        test.score,
        test.questions,
        test.answers,
        model=get_plan_features(profile.plan).model,
    )
