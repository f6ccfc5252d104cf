"""
Test Buddy - User Schemas
Pydantic schemas for authentication and user profiles
"""
from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, EmailStr, Field

from testbuddy.core.plans import DEFAULT_PLAN, UserPlan
from testbuddy.schemas.common import DocumentModel


# ============================================================================
# Authentication
# ============================================================================

class SignUpRequest(DocumentModel):
    """Schema for account registration."""
    email: EmailStr
    password: Annotated[str, Field(min_length=6, max_length=128)]
    display_name: Annotated[str, Field(min_length=1, max_length=100)]


class SignInRequest(DocumentModel):
    """Schema for sign in."""
    email: EmailStr
    password: str


class AuthSession(DocumentModel):
    """Result of a successful sign up or sign in."""
    uid: str
    email: str
    id_token: str
    refresh_token: str | None = None
    expires_in: int


class AuthenticatedUser(BaseModel):
    """Identity extracted from a verified token."""
    uid: str
    email: str | None = None


# ============================================================================
# Profile
# ============================================================================

class UserProfile(DocumentModel):
    """Profile document stored at ``users/{uid}``."""
    uid: str
    email: str
    display_name: str
    plan: UserPlan = DEFAULT_PLAN
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UserProfileUpdate(DocumentModel):
    """Fields a user may change on their own profile."""
    display_name: Annotated[str, Field(min_length=1, max_length=100)] | None = None


class PlanUpdate(DocumentModel):
    plan: UserPlan
