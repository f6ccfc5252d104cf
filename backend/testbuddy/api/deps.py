"""
Test Buddy - API Dependencies
FastAPI dependencies for services, authentication and plan gating
"""
from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from testbuddy.core.errors import ErrorKind, FeatureNotAvailableError, StoreError
from testbuddy.core.plans import can_use_feature, get_upgrade_message
from testbuddy.schemas.user import AuthenticatedUser, UserProfile
from testbuddy.services.container import ServiceContainer

# Security scheme; missing credentials are reported by get_current_user
security = HTTPBearer(auto_error=False)

FEATURE_LABELS = {
    "retakes_allowed": "test retakes",
    "folders": "folders",
    "ai_feedback": "AI feedback",
    "metrics": "performance metrics",
}


def get_services(request: Request) -> ServiceContainer:
    """The container built at startup."""
    return request.app.state.services


Services = Annotated[ServiceContainer, Depends(get_services)]


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    services: Services,
) -> AuthenticatedUser:
    """
    Verify the bearer token.

    Raises:
        StoreError: ``unauthenticated`` if the token is missing, invalid or revoked
    """
    if credentials is None or not credentials.credentials:
        raise StoreError(ErrorKind.UNAUTHENTICATED, "Missing bearer token")
    return await services.firebase.verify_token(credentials.credentials)


CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]


async def get_current_profile(user: CurrentUser, services: Services) -> UserProfile:
    """The signed-in user's profile; every account gets one at sign up."""
    profile = await services.firebase.get_user_profile(user.uid)
    if profile is None:
        raise StoreError(ErrorKind.NOT_FOUND, f"No profile for user {user.uid}")
    return profile


CurrentProfile = Annotated[UserProfile, Depends(get_current_profile)]


def require_feature(feature: str):
    """
    Dependency factory for plan-based feature gating.

    Usage:
        @router.post("/folders")
        async def create(profile: UserProfile = Depends(require_feature("folders"))):
            ...
    """
    label = FEATURE_LABELS.get(feature, feature)

    async def feature_checker(profile: CurrentProfile) -> UserProfile:
        if not can_use_feature(profile.plan, feature):
            message = get_upgrade_message(profile.plan, label) or f"Your plan does not include {label}"
            raise FeatureNotAvailableError(feature, message)
        return profile

    return feature_checker
