"""
Test Buddy - Test Configuration
Pytest fixtures and configuration for testing
"""
import json
from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from testbuddy.ai.core.llm import LLMClient, LLMResponse
from testbuddy.core.config import Settings
from testbuddy.core.database import create_engine
from testbuddy.main import create_app
from testbuddy.services.container import ServiceContainer, build_services
from testbuddy.services.retry import RetryExecutor
from testbuddy.store.sql import SqlDocumentStore


class FakeLLMClient(LLMClient):
    """LLM client that replays queued responses instead of calling a model."""

    def __init__(self, settings: Settings):
        super().__init__(settings, provider="openai", model="fake-model")
        self.responses: list[Any] = []
        self.prompts: list[dict[str, Any]] = []

    def queue(self, *responses: Any) -> None:
        """Queue raw strings, or JSON-serialisable values."""
        for response in responses:
            self.responses.append(response if isinstance(response, (str, Exception)) else json.dumps(response))

    async def generate(self, prompt, system_prompt=None, model=None) -> LLMResponse:
        self.prompts.append({"prompt": prompt, "system_prompt": system_prompt, "model": model})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return LLMResponse(content=response, model=model or self.model)


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture
def settings() -> Settings:
    """Settings for an isolated in-memory store with fast retries."""
    return Settings(
        _env_file=None,
        ENVIRONMENT="development",
        STORE_BACKEND="sql",
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        SECRET_KEY="test-secret-key",
        RETRY_INITIAL_DELAY=0.0,
        RETRY_MAX_DELAY=0.0,
        RETRY_JITTER=False,
        CORS_ORIGINS_STR="http://test",
    )


@pytest_asyncio.fixture(scope="function")
async def store(settings: Settings) -> AsyncGenerator[SqlDocumentStore, None]:
    """A fresh in-memory document store for each test."""
    store = SqlDocumentStore(create_engine(settings.DATABASE_URL))
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def retry() -> RetryExecutor:
    """Retry executor that never actually sleeps."""
    return RetryExecutor(sleep=_no_sleep)


@pytest.fixture
def fake_llm(settings: Settings) -> FakeLLMClient:
    return FakeLLMClient(settings)


@pytest_asyncio.fixture(scope="function")
async def services(
    settings: Settings,
    store: SqlDocumentStore,
    fake_llm: FakeLLMClient,
) -> AsyncGenerator[ServiceContainer, None]:
    container = await build_services(settings, store=store, llm=fake_llm)
    yield container
    await container.query_optimizer.stop_cleanup_task()


@pytest_asyncio.fixture(scope="function")
async def client(settings: Settings, services: ServiceContainer) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to an app that uses the test service container."""
    app = create_app(settings, services=services)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac


@pytest.fixture
def sample_questions() -> list[dict[str, Any]]:
    """One question of each auto-graded type plus an essay (5 points total)."""
    return [
        {
            "id": "q1",
            "type": "MCQ",
            "question": "What does CIA stand for?",
            "options": [
                "Confidentiality, Integrity, Availability",
                "Control, Identity, Access",
                "Confidential, Internal, Audit",
                "Cybersecurity, Integrity, Authentication",
            ],
            "correctAnswer": 0,
            "explanation": "The core triad of information security.",
            "points": 1,
        },
        {
            "id": "q2",
            "type": "True-False",
            "question": "Encryption protects confidentiality.",
            "correctAnswer": True,
            "points": 1,
        },
        {
            "id": "q3",
            "type": "MSQ",
            "question": "Which are hashing algorithms?",
            "options": ["SHA-256", "AES", "MD5", "RSA"],
            "correctAnswer": [0, 2],
            "points": 1,
        },
        {
            "id": "q4",
            "type": "Fill-in-the-blank",
            "question": "A ____ filters network traffic.",
            "correctAnswer": "Firewall",
            "points": 1,
        },
        {
            "id": "q5",
            "type": "Essay",
            "question": "Explain defence in depth.",
            "correctAnswer": "Layered controls so that one failure does not expose the system.",
            "points": 1,
        },
    ]


@pytest.fixture
def sample_test_data(sample_questions) -> dict[str, Any]:
    """A saved-test payload in API (camelCase) shape."""
    return {
        "testName": "Security Basics",
        "fileName": "security.pdf",
        "fileType": "application/pdf",
        "extractedText": "Confidentiality, integrity and availability...",
        "quizType": "Mixed",
        "questions": sample_questions,
    }


@pytest.fixture
def sample_user_data() -> dict[str, Any]:
    """Sample sign up data."""
    return {
        "email": "test@example.com",
        "password": "TestPass123!",
        "displayName": "Test User",
    }
