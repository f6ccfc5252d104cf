"""
Test Buddy - Usage Service
Monthly test-generation counters and plan limit checks
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from testbuddy.core.plans import UserPlan, get_plan_features, get_upgrade_message
from testbuddy.schemas.results import UsageCheck, UsageRecord, UsageSummary
from testbuddy.services.retry import RetryExecutor, RetryPolicy
from testbuddy.store.base import SERVER_TIMESTAMP, Increment, Transaction, join_path

logger = logging.getLogger(__name__)


def month_id_for(moment: datetime) -> str:
    return f"{moment.year}-{moment.month:02d}"


def previous_month_id(moment: datetime) -> str:
    if moment.month == 1:
        return f"{moment.year - 1}-12"
    return f"{moment.year}-{moment.month - 1:02d}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UsageService:
    """
    Tracks how many tests each user generated per calendar month (UTC).

    Counters live at ``users/{uid}/usage/{YYYY-MM}``; a missing document
    means nothing was generated that month.
    """

    def __init__(self, store, retry: RetryExecutor, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self.retry = retry
        self._clock = clock

    def get_current_month_id(self) -> str:
        return month_id_for(self._clock())

    def _path(self, user_id: str, month_id: str) -> str:
        return join_path("users", user_id, "usage", month_id)

    async def get_user_usage(
        self,
        user_id: str,
        month_id: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> UsageRecord:
        month_id = month_id or self.get_current_month_id()
        snapshot = await self.retry.execute(
            lambda: self.store.get(self._path(user_id, month_id)), policy, "Get user usage"
        )
        if not snapshot.exists:
            return UsageRecord(month_id=month_id, tests_generated=0)
        return UsageRecord(
            month_id=month_id,
            tests_generated=int(snapshot.data.get("testsGenerated") or 0),
            created_at=snapshot.data.get("createdAt"),
            updated_at=snapshot.data.get("updatedAt"),
        )

    async def can_generate_test(self, user_id: str, plan: UserPlan | str) -> UsageCheck:
        features = get_plan_features(plan)
        usage = await self.get_user_usage(user_id)

        if features.unlimited_tests:
            return UsageCheck(allowed=True, used=usage.tests_generated)

        limit = int(features.max_tests_per_month)
        remaining = max(0, limit - usage.tests_generated)
        allowed = usage.tests_generated < limit
        return UsageCheck(
            allowed=allowed,
            used=usage.tests_generated,
            limit=limit,
            remaining=remaining,
            reason=None if allowed else (
                f"Monthly limit of {limit} tests reached. "
                + get_upgrade_message(plan, "more tests per month")
            ).strip(),
        )

    async def increment_test_usage(self, user_id: str, policy: Optional[RetryPolicy] = None) -> UsageRecord:
        """Add one generated test to the current month, creating the counter if needed."""
        month_id = self.get_current_month_id()
        path = self._path(user_id, month_id)

        async def _increment(transaction: Transaction) -> None:
            snapshot = await transaction.get(path)
            if snapshot.exists:
                transaction.update(path, {"testsGenerated": Increment(1), "updatedAt": SERVER_TIMESTAMP})
            else:
                transaction.set(path, {
                    "testsGenerated": 1,
                    "createdAt": SERVER_TIMESTAMP,
                    "updatedAt": SERVER_TIMESTAMP,
                })

        await self.retry.execute(
            lambda: self.store.run_transaction(_increment), policy, "Increment test usage"
        )
        logger.debug(f"Test usage incremented for user {user_id} ({month_id})")
        return await self.get_user_usage(user_id, month_id)

    async def get_usage_summary(self, user_id: str, plan: UserPlan | str) -> UsageSummary:
        now = self._clock()
        current = await self.get_user_usage(user_id, month_id_for(now))
        last = await self.get_user_usage(user_id, previous_month_id(now))

        features = get_plan_features(plan)
        if features.unlimited_tests:
            limit = remaining = None
        else:
            limit = int(features.max_tests_per_month)
            remaining = max(0, limit - current.tests_generated)

        return UsageSummary(
            plan=plan,
            current_month=current,
            last_month=last,
            limit=limit,
            remaining=remaining,
        )
