"""
Test Buddy - API Tests
End-to-end requests against the app with an in-memory store and a scripted LLM
"""
import pytest
import pytest_asyncio
from httpx import AsyncClient

API = "/api/v1"

GENERATED = [
    {
        "type": "MCQ",
        "question": "Which organelle produces ATP?",
        "options": ["Ribosome", "Mitochondrion", "Nucleus", "Golgi body"],
        "correctAnswer": 1,
        "explanation": "Mitochondria run cellular respiration.",
    },
    {
        "type": "True-False",
        "question": "Ribosomes build proteins.",
        "correctAnswer": True,
    },
]


async def sign_up(client: AsyncClient, user_data: dict) -> dict:
    response = await client.post(f"{API}/auth/signup", json=user_data)
    assert response.status_code == 201
    return {"Authorization": f"Bearer {response.json()['idToken']}"}


async def set_plan(client: AsyncClient, headers: dict, plan: str) -> None:
    response = await client.put(f"{API}/users/me/plan", json={"plan": plan}, headers=headers)
    assert response.status_code == 200


@pytest_asyncio.fixture
async def headers(client: AsyncClient, sample_user_data) -> dict:
    return await sign_up(client, sample_user_data)


# ========================================
# Health and auth
# ========================================

@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_store_health(client: AsyncClient):
    response = await client.get(f"{API}/system/health")

    assert response.status_code == 200
    assert response.json()["backend"] == "sql"


@pytest.mark.asyncio
async def test_sign_up_and_profile(client: AsyncClient, sample_user_data):
    headers = await sign_up(client, sample_user_data)

    response = await client.get(f"{API}/users/me", headers=headers)

    assert response.status_code == 200
    data = response.json()
    assert data["email"] == sample_user_data["email"]
    assert data["displayName"] == "Test User"
    assert data["plan"] == "free"


@pytest.mark.asyncio
async def test_duplicate_sign_up(client: AsyncClient, sample_user_data, headers):
    response = await client.post(f"{API}/auth/signup", json=sample_user_data)

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "auth/email-already-in-use"


@pytest.mark.asyncio
async def test_sign_in(client: AsyncClient, sample_user_data, headers):
    response = await client.post(f"{API}/auth/signin", json={
        "email": sample_user_data["email"],
        "password": sample_user_data["password"],
    })
    assert response.status_code == 200
    assert response.json()["idToken"]

    response = await client.post(f"{API}/auth/signin", json={
        "email": sample_user_data["email"],
        "password": "WrongPassword123!",
    })
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"
    assert response.json()["error"]["message"] == "Incorrect password. Please try again."


@pytest.mark.asyncio
async def test_requests_without_token_are_rejected(client: AsyncClient):
    response = await client.get(f"{API}/users/me")

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "unauthenticated"

    response = await client.get(f"{API}/tests", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_sign_out_revokes_token(client: AsyncClient, headers):
    assert (await client.get(f"{API}/auth/me", headers=headers)).status_code == 200

    response = await client.post(f"{API}/auth/signout", headers=headers)
    assert response.status_code == 204

    assert (await client.get(f"{API}/auth/me", headers=headers)).status_code == 401


@pytest.mark.asyncio
async def test_update_display_name(client: AsyncClient, headers):
    response = await client.patch(f"{API}/users/me", json={"displayName": "Renamed"}, headers=headers)

    assert response.status_code == 200
    assert response.json()["displayName"] == "Renamed"


# ========================================
# Test history
# ========================================

@pytest.mark.asyncio
async def test_test_history_lifecycle(client: AsyncClient, headers, sample_test_data):
    response = await client.post(f"{API}/tests", json=sample_test_data, headers=headers)
    assert response.status_code == 201
    test_id = response.json()["id"]
    assert response.json()["testName"] == "Security Basics"

    response = await client.get(f"{API}/tests", headers=headers)
    assert response.status_code == 200
    page = response.json()
    assert [t["id"] for t in page["tests"]] == [test_id]
    assert page["hasMore"] is False

    response = await client.post(f"{API}/tests/{test_id}/complete", json={
        "answers": [{"questionId": "q1", "answer": 0}, {"questionId": "q2", "answer": False}],
        "timeTaken": 42,
    }, headers=headers)
    assert response.status_code == 200
    assert response.json()["score"] == 20
    assert [a["isCorrect"] for a in response.json()["answers"]] == [True, False]

    results = (await client.get(f"{API}/users/me/results", headers=headers)).json()
    assert len(results) == 1
    assert results[0]["testId"] == test_id
    assert results[0]["timeTaken"] == 42
    assert results[0]["quizType"] == "mixed"

    response = await client.delete(f"{API}/tests/{test_id}", headers=headers)
    assert response.status_code == 204

    response = await client.get(f"{API}/tests/{test_id}", headers=headers)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "not-found"


@pytest.mark.asyncio
async def test_invalid_score_is_rejected(client: AsyncClient, headers, sample_test_data):
    response = await client.post(f"{API}/tests", json={**sample_test_data, "score": 150}, headers=headers)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "validation-error"
    assert response.json()["error"]["field"] == "score"


@pytest.mark.asyncio
async def test_free_plan_cannot_use_folders_or_retakes(client: AsyncClient, headers, sample_test_data):
    response = await client.get(f"{API}/folders", headers=headers)
    assert response.status_code == 403
    error = response.json()["error"]
    assert error["code"] == "feature-not-available"
    assert error["feature"] == "folders"
    assert error["message"] == "Upgrade to Student ($5/mo) or Pro ($15/mo) to unlock folders"

    response = await client.post(f"{API}/tests", json={**sample_test_data, "retakeOf": "t0"}, headers=headers)
    assert response.status_code == 403
    assert response.json()["error"]["feature"] == "retakes_allowed"


@pytest.mark.asyncio
async def test_pro_folders(client: AsyncClient, headers, sample_test_data):
    await set_plan(client, headers, "pro")
    folder = (await client.post(f"{API}/folders", json={"name": "Security"}, headers=headers)).json()
    test_id = (await client.post(f"{API}/tests", json=sample_test_data, headers=headers)).json()["id"]

    response = await client.put(f"{API}/tests/{test_id}/folder", json={"folderId": folder["id"]}, headers=headers)
    assert response.status_code == 204

    page = (await client.get(f"{API}/tests", params={"folder_id": folder["id"]}, headers=headers)).json()
    assert [t["id"] for t in page["tests"]] == [test_id]

    response = await client.patch(f"{API}/folders/{folder['id']}", json={"name": "Infosec"}, headers=headers)
    assert response.json()["name"] == "Infosec"

    response = await client.delete(f"{API}/folders/{folder['id']}", headers=headers)
    assert response.json() == {"deleted": folder["id"], "reassignedTests": 1}
    assert (await client.get(f"{API}/folders", headers=headers)).json() == []


# ========================================
# Quiz generation, usage and feedback
# ========================================

@pytest.mark.asyncio
async def test_generate_quiz_saves_and_counts(client: AsyncClient, headers, fake_llm):
    fake_llm.queue(GENERATED)

    response = await client.post(f"{API}/quiz/generate", json={
        "text": "Mitochondria produce ATP. Ribosomes build proteins.",
        "questionCount": 2,
        "testName": "Cells",
    }, headers=headers)

    assert response.status_code == 200
    data = response.json()
    assert [q["id"] for q in data["questions"]] == ["q1", "q2"]
    assert data["model"] == "qwen/qwen3-235b-a22b:free"
    assert data["testsRemaining"] == 2
    assert fake_llm.prompts[0]["model"] == "qwen/qwen3-235b-a22b:free"

    saved = (await client.get(f"{API}/tests/{data['testId']}", headers=headers)).json()
    assert saved["testName"] == "Cells"
    assert saved["fileName"] == "pasted-text"

    usage = (await client.get(f"{API}/users/me/usage", headers=headers)).json()
    assert usage["currentMonth"]["testsGenerated"] == 1
    assert usage["limit"] == 3
    assert usage["remaining"] == 2


@pytest.mark.asyncio
async def test_monthly_limit(client: AsyncClient, headers, fake_llm):
    fake_llm.queue(GENERATED, GENERATED, GENERATED)
    body = {"text": "Cells and organelles.", "save": False}

    for _ in range(3):
        assert (await client.post(f"{API}/quiz/generate", json=body, headers=headers)).status_code == 200

    response = await client.post(f"{API}/quiz/generate", json=body, headers=headers)

    assert response.status_code == 403
    assert response.json()["error"]["feature"] == "max_tests_per_month"
    assert response.json()["error"]["message"].startswith("Monthly limit of 3 tests reached.")
    assert len(fake_llm.prompts) == 3


@pytest.mark.asyncio
async def test_failed_generation_is_not_counted(client: AsyncClient, headers, fake_llm):
    fake_llm.queue("no json here", "still no json")

    response = await client.post(f"{API}/quiz/generate", json={"text": "Cells."}, headers=headers)

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "internal"
    usage = (await client.get(f"{API}/users/me/usage", headers=headers)).json()
    assert usage["currentMonth"]["testsGenerated"] == 0


@pytest.mark.asyncio
async def test_feedback_requires_pro_and_a_completed_test(client: AsyncClient, headers, fake_llm, sample_test_data):
    test_id = (await client.post(f"{API}/tests", json=sample_test_data, headers=headers)).json()["id"]

    response = await client.post(f"{API}/quiz/feedback", json={"testId": test_id}, headers=headers)
    assert response.status_code == 403

    await set_plan(client, headers, "pro")
    response = await client.post(f"{API}/quiz/feedback", json={"testId": test_id}, headers=headers)
    assert response.status_code == 409

    await client.post(f"{API}/tests/{test_id}/complete", json={
        "answers": [{"questionId": "q1", "answer": 0}],
    }, headers=headers)
    fake_llm.queue({"overall_assessment": "Good start.", "strengths": ["CIA triad"]})

    response = await client.post(f"{API}/quiz/feedback", json={"testId": test_id}, headers=headers)
    assert response.status_code == 200
    assert response.json()["overall_assessment"] == "Good start."
    assert fake_llm.prompts[-1]["model"] == "openai/gpt-4o-mini"


@pytest.mark.asyncio
async def test_analytics_by_plan(client: AsyncClient, headers, sample_test_data):
    assert (await client.get(f"{API}/users/me/analytics", headers=headers)).status_code == 403

    await set_plan(client, headers, "student")
    test_id = (await client.post(f"{API}/tests", json=sample_test_data, headers=headers)).json()["id"]
    await client.post(f"{API}/tests/{test_id}/complete", json={
        "answers": [{"questionId": f"q{i}", "answer": a} for i, a in ((1, 0), (2, True))],
    }, headers=headers)

    response = await client.get(f"{API}/users/me/analytics", headers=headers)

    assert response.status_code == 200
    data = response.json()
    assert data["tier"] == "basic"
    assert data["totalTests"] == 1
    assert data["averageScore"] == 40.0


@pytest.mark.asyncio
async def test_cache_stats_require_auth(client: AsyncClient, headers):
    assert (await client.get(f"{API}/system/cache")).status_code == 401

    response = await client.get(f"{API}/system/cache", headers=headers)
    assert response.status_code == 200
    assert response.json()["maxSize"] == 100
    assert response.json()["stats"]["total_queries"] >= 0
