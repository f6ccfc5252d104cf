"""
Test Buddy - Analytics Service
Per-user performance metrics, gated by plan
"""
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List

from testbuddy.core.plans import UserPlan, get_plan_features, get_upgrade_message
from testbuddy.core.errors import FeatureNotAvailableError
from testbuddy.schemas.results import QuizTypeStats, TrendPoint, UserAnalytics
from testbuddy.services.query_optimizer import QueryOptimizer

logger = logging.getLogger(__name__)

UNORGANIZED = "unorganized"
TREND_LENGTH = 10

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _stats(scores: List[float]) -> QuizTypeStats:
    return QuizTypeStats(count=len(scores), average_score=round(sum(scores) / len(scores), 1))


class AnalyticsService:
    """
    Builds metrics from the user's tests and logged results.

    Basic tier: totals, average and best score, per quiz type.
    Advanced tier adds the recent score trend and a per-folder breakdown.
    """

    def __init__(self, query_optimizer: QueryOptimizer):
        self.query_optimizer = query_optimizer

    async def get_user_analytics(self, user_id: str, plan: UserPlan | str) -> UserAnalytics:
        features = get_plan_features(plan)
        if not features.metrics:
            raise FeatureNotAvailableError("metrics", get_upgrade_message(plan, "performance metrics"))

        metrics = await self.query_optimizer.get_user_metrics(user_id)
        # A result logged for a saved test duplicates that test
        test_ids = {item["id"] for item in metrics.data if not item.get("testId")}
        items = [item for item in metrics.data if item.get("testId") not in test_ids]
        scored = [item for item in items if isinstance(item.get("score"), (int, float))]
        scored.sort(key=lambda item: item.get("createdAt") or _EPOCH, reverse=True)
        scores = [float(item["score"]) for item in scored]

        by_type: Dict[str, List[float]] = defaultdict(list)
        for item in scored:
            by_type[str(item.get("quizType") or "unknown")].append(float(item["score"]))

        analytics = UserAnalytics(
            tier=features.metrics,
            total_tests=len(items),
            completed_tests=len(scored),
            average_score=round(sum(scores) / len(scores), 1) if scores else 0.0,
            best_score=max(scores) if scores else 0.0,
            by_quiz_type={quiz_type: _stats(values) for quiz_type, values in by_type.items()},
        )

        if features.metrics == "advanced":
            analytics.recent_trend = [
                TrendPoint(
                    test_id=item["id"],
                    test_name=item.get("testName", ""),
                    score=float(item["score"]),
                    created_at=item.get("createdAt"),
                )
                for item in reversed(scored[:TREND_LENGTH])
            ]
            by_folder: Dict[str, List[float]] = defaultdict(list)
            for item in scored:
                by_folder[item.get("folderId") or UNORGANIZED].append(float(item["score"]))
            analytics.by_folder = {folder: _stats(values) for folder, values in by_folder.items()}

        logger.debug(f"Analytics computed for user {user_id} ({features.metrics}, {len(items)} items)")
        return analytics
