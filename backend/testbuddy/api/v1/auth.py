"""
Test Buddy - Authentication API Routes
Endpoints for sign up, sign in and sign out
"""
from fastapi import APIRouter, status

from testbuddy.api.deps import CurrentUser, Services
from testbuddy.schemas.user import AuthenticatedUser, AuthSession, SignInRequest, SignUpRequest

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post(
    "/signup",
    response_model=AuthSession,
    status_code=status.HTTP_201_CREATED,
    summary="Create an account",
    description="Create an email/password account and its profile on the free plan.",
)
async def sign_up(payload: SignUpRequest, services: Services) -> AuthSession:
    return await services.firebase.sign_up(payload.email, payload.password, payload.display_name)


@router.post(
    "/signin",
    response_model=AuthSession,
    summary="Sign in",
)
async def sign_in(payload: SignInRequest, services: Services) -> AuthSession:
    return await services.firebase.sign_in(payload.email, payload.password)


@router.post(
    "/signout",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Sign out",
    description="Revoke the user's tokens and drop their cached queries.",
)
async def sign_out(user: CurrentUser, services: Services) -> None:
    await services.firebase.sign_out(user.uid)


@router.get("/me", response_model=AuthenticatedUser, summary="Current identity")
async def me(user: CurrentUser) -> AuthenticatedUser:
    return user
