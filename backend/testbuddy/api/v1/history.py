"""
Test Buddy - Test History API Routes
Saving, paging, completing and organising tests
"""
from typing import Optional

from fastapi import APIRouter, Query, status

from testbuddy.api.deps import FEATURE_LABELS, CurrentProfile, CurrentUser, Services
from testbuddy.core.errors import ErrorKind, FeatureNotAvailableError, StoreError
from testbuddy.core.plans import can_use_feature, get_upgrade_message
from testbuddy.schemas.results import Result
from testbuddy.schemas.test_history import (
    CompleteTestRequest,
    MoveTestRequest,
    TestHistory,
    TestHistoryCreate,
    TestHistoryPage,
)
from testbuddy.schemas.user import UserProfile
from testbuddy.services.results import infer_quiz_type_from
from testbuddy.store.base import QueryFilter

router = APIRouter(prefix="/tests", tags=["Test History"])


def _check_feature(profile: UserProfile, feature: str) -> None:
    if not can_use_feature(profile.plan, feature):
        raise FeatureNotAvailableError(feature, get_upgrade_message(profile.plan, FEATURE_LABELS[feature]))


@router.get("", response_model=TestHistoryPage, summary="List my tests")
async def list_tests(
    user: CurrentUser,
    services: Services,
    page_size: int = Query(default=20, ge=1, le=100),
    cursor: Optional[str] = Query(default=None),
    folder_id: Optional[str] = Query(default=None),
) -> TestHistoryPage:
    """Newest first. Pass the returned ``cursor`` to get the next page."""
    filters = [QueryFilter.of("folderId", "==", folder_id)] if folder_id else []
    return await services.firebase.get_user_test_history(
        user.uid, page_size=page_size, cursor=cursor, filters=filters
    )


@router.post(
    "",
    response_model=TestHistory,
    status_code=status.HTTP_201_CREATED,
    summary="Save a test",
)
async def save_test(payload: TestHistoryCreate, profile: CurrentProfile, services: Services) -> TestHistory:
    if payload.retake_of:
        _check_feature(profile, "retakes_allowed")
    if payload.folder_id:
        _check_feature(profile, "folders")

    test = TestHistory(**payload.model_dump(exclude_unset=True), user_id=profile.uid)
    test_id = await services.firebase.save_test_history(test)
    return await services.firebase.get_test_history(profile.uid, test_id)


@router.get("/{test_id}", response_model=TestHistory, summary="Get a test")
async def get_test(test_id: str, user: CurrentUser, services: Services) -> TestHistory:
    test = await services.firebase.get_test_history(user.uid, test_id)
    if test is None:
        raise StoreError(ErrorKind.NOT_FOUND, f"Test {test_id} not found")
    return test


@router.post(
    "/{test_id}/complete",
    response_model=TestHistory,
    summary="Submit answers",
    description="Score the answers, store them on the test and log a result.",
)
async def complete_test(
    test_id: str,
    payload: CompleteTestRequest,
    user: CurrentUser,
    services: Services,
) -> TestHistory:
    test = await services.firebase.complete_test_history(user.uid, test_id, payload.answers)
    await services.results.log_result(user.uid, Result(
        test_id=test.id,
        test_name=test.test_name,
        score=test.score or 0,
        time_taken=payload.time_taken,
        quiz_type=infer_quiz_type_from(test.questions),
        question_count=len(test.questions),
        folder_id=test.folder_id,
        retake_of=test.retake_of,
    ))
    return test


@router.put("/{test_id}/folder", status_code=status.HTTP_204_NO_CONTENT, summary="Move a test")
async def move_test(
    test_id: str,
    payload: MoveTestRequest,
    profile: CurrentProfile,
    services: Services,
) -> None:
    """Move into a folder, or back to unorganized with ``folderId: null``."""
    if payload.folder_id is not None:
        _check_feature(profile, "folders")
    await services.firebase.move_test_to_folder(profile.uid, test_id, payload.folder_id)


@router.delete("/{test_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a test")
async def delete_test(test_id: str, user: CurrentUser, services: Services) -> None:
    await services.firebase.delete_test_history(user.uid, test_id)
