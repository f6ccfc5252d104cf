"""
Test Buddy - Subscription Plans
Feature limits for each plan and helpers for gating
"""
import math
from dataclasses import dataclass
from enum import Enum
from typing import Literal, Union


class UserPlan(str, Enum):
    FREE = "free"
    STUDENT = "student"
    PRO = "pro"


MetricsTier = Union[Literal[False], Literal["basic"], Literal["advanced"]]


@dataclass(frozen=True)
class PlanFeatures:
    max_tests_per_month: float
    retakes_allowed: bool
    folders: bool
    ai_feedback: bool
    metrics: MetricsTier
    model: str
    name: str
    price: str
    description: str

    @property
    def unlimited_tests(self) -> bool:
        return math.isinf(self.max_tests_per_month)


PLAN_FEATURES = {
    UserPlan.FREE: PlanFeatures(
        max_tests_per_month=3,
        retakes_allowed=False,
        folders=False,
        ai_feedback=False,
        metrics=False,
        model="qwen/qwen3-235b-a22b:free",
        name="Freemium",
        price="Free",
        description="Perfect for trying out Test Buddy",
    ),
    UserPlan.STUDENT: PlanFeatures(
        max_tests_per_month=20,
        retakes_allowed=True,
        folders=False,
        ai_feedback=False,
        metrics="basic",
        model="qwen/qwen3-235b-a22b:free",
        name="Student",
        price="$5/month",
        description="Great for students with regular testing needs",
    ),
    UserPlan.PRO: PlanFeatures(
        max_tests_per_month=math.inf,
        retakes_allowed=True,
        folders=True,
        ai_feedback=True,
        metrics="advanced",
        model="openai/gpt-4o-mini",
        name="Pro",
        price="$15/month",
        description="Full access to all Test Buddy features",
    ),
}

DEFAULT_PLAN = UserPlan.FREE

# Features that can be gated with can_use_feature()
GATED_FEATURES = ("retakes_allowed", "folders", "ai_feedback", "metrics")


def get_plan_features(plan: Union[UserPlan, str]) -> PlanFeatures:
    """Features for ``plan``; unknown plans get the default plan's."""
    try:
        return PLAN_FEATURES[UserPlan(plan)]
    except ValueError:
        return PLAN_FEATURES[DEFAULT_PLAN]


def can_use_feature(plan: Union[UserPlan, str], feature: str) -> bool:
    if feature not in GATED_FEATURES:
        raise ValueError(f"Unknown feature: {feature}")
    return bool(getattr(get_plan_features(plan), feature))


def get_upgrade_message(current_plan: Union[UserPlan, str], required_feature: str) -> str:
    try:
        plan = UserPlan(current_plan)
    except ValueError:
        return ""
    if plan == UserPlan.FREE:
        return f"Upgrade to Student ($5/mo) or Pro ($15/mo) to unlock {required_feature}"
    if plan == UserPlan.STUDENT:
        return f"Upgrade to Pro ($15/mo) to unlock {required_feature}"
    return ""
