"""
Test Buddy - Service Container
Builds every service once and wires their collaborators explicitly
"""
import logging
from dataclasses import dataclass
from typing import Optional

from testbuddy.ai.core.llm import LLMClient
from testbuddy.ai.quiz_generator import QuizGenerator
from testbuddy.core.config import Settings
from testbuddy.services.analytics import AnalyticsService
from testbuddy.services.auth import AuthProvider, FirebaseAuthProvider, LocalAuthProvider
from testbuddy.services.batch import BatchOperations
from testbuddy.services.firebase_service import FirebaseService
from testbuddy.services.query_optimizer import QueryOptimizer
from testbuddy.services.results import ResultsService
from testbuddy.services.retry import RetryExecutor, RetryPolicy
from testbuddy.services.usage import UsageService
from testbuddy.store import DocumentStore, create_store

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    store: DocumentStore
    auth: AuthProvider
    retry: RetryExecutor
    query_optimizer: QueryOptimizer
    batch: BatchOperations
    firebase: FirebaseService
    usage: UsageService
    results: ResultsService
    analytics: AnalyticsService
    quiz_generator: QuizGenerator

    async def close(self) -> None:
        await self.query_optimizer.stop_cleanup_task()
        await self.auth.close()
        await self.store.close()
        logger.info("Services closed")


async def build_services(
    settings: Settings,
    store: Optional[DocumentStore] = None,
    auth: Optional[AuthProvider] = None,
    llm: Optional[LLMClient] = None,
) -> ServiceContainer:
    """
    Build the service graph for ``settings``.

    ``store``, ``auth`` and ``llm`` replace the configured collaborators,
    which is how tests run against an in-memory store and a fake model.
    """
    store = store or await create_store(settings)
    if auth is None:
        if settings.STORE_BACKEND == "firestore":
            auth = FirebaseAuthProvider.from_settings(settings)
        else:
            auth = LocalAuthProvider(store, settings)

    retry = RetryExecutor(RetryPolicy.from_settings(settings))
    query_optimizer = QueryOptimizer.from_settings(store, settings)
    batch = BatchOperations(store, retry)

    container = ServiceContainer(
        settings=settings,
        store=store,
        auth=auth,
        retry=retry,
        query_optimizer=query_optimizer,
        batch=batch,
        firebase=FirebaseService(
            store,
            auth,
            retry,
            query_optimizer,
            batch,
            default_policy=RetryPolicy.from_settings(settings),
        ),
        usage=UsageService(store, retry),
        results=ResultsService(store, retry, query_optimizer),
        analytics=AnalyticsService(query_optimizer),
        quiz_generator=QuizGenerator(llm or LLMClient(settings), retry),
    )
    logger.info(f"Services ready ({store.name} store, {type(auth).__name__})")
    return container
