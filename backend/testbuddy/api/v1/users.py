"""
Test Buddy - User API Routes
Profile, plan, usage and analytics for the signed-in user
"""
from fastapi import APIRouter, Query

from testbuddy.api.deps import CurrentProfile, CurrentUser, Services
from testbuddy.schemas.results import Result, UsageSummary, UserAnalytics
from testbuddy.schemas.user import PlanUpdate, UserProfile, UserProfileUpdate

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me", response_model=UserProfile, summary="Get my profile")
async def get_profile(profile: CurrentProfile) -> UserProfile:
    return profile


@router.patch("/me", response_model=UserProfile, summary="Update my profile")
async def update_profile(updates: UserProfileUpdate, user: CurrentUser, services: Services) -> UserProfile:
    return await services.firebase.update_user_profile(user.uid, updates)


@router.put(
    "/me/plan",
    response_model=UserProfile,
    summary="Change plan",
    description="Switch subscription plan. Billing is handled outside this service.",
)
async def update_plan(payload: PlanUpdate, user: CurrentUser, services: Services) -> UserProfile:
    return await services.firebase.update_user_plan(user.uid, payload.plan)


@router.get("/me/usage", response_model=UsageSummary, summary="Monthly test usage")
async def get_usage(profile: CurrentProfile, services: Services) -> UsageSummary:
    return await services.usage.get_usage_summary(profile.uid, profile.plan)


@router.get(
    "/me/analytics",
    response_model=UserAnalytics,
    summary="Performance metrics",
    description="Basic metrics on the Student plan; trends and per-folder breakdown on Pro.",
)
async def get_analytics(profile: CurrentProfile, services: Services) -> UserAnalytics:
    return await services.analytics.get_user_analytics(profile.uid, profile.plan)


@router.get("/me/results", response_model=list[Result], summary="Logged results")
async def get_results(
    user: CurrentUser,
    services: Services,
    limit: int = Query(default=50, ge=1, le=500),
) -> list[Result]:
    return await services.results.get_user_results(user.uid, limit=limit)
