"""
Test Buddy - Authentication Tests
Password hashing, JWTs and both auth providers
"""
from datetime import timedelta

import httpx
import pytest

from testbuddy.core.errors import ErrorKind, StoreError
from testbuddy.core.security import create_access_token, decode_token, get_password_hash, verify_password
from testbuddy.services.auth import IDENTITY_TOOLKIT_URL, FirebaseAuthProvider, LocalAuthProvider
from testbuddy.store.base import Write, WriteKind


def test_password_hashing():
    hashed = get_password_hash("TestPass123!")

    assert hashed != "TestPass123!"
    assert verify_password("TestPass123!", hashed)
    assert not verify_password("WrongPass123!", hashed)


def test_token_round_trip(settings):
    token = create_access_token("uid-1", settings, additional_claims={"email": "a@example.com"})
    payload = decode_token(token, settings)

    assert payload["sub"] == "uid-1"
    assert payload["type"] == "access"
    assert payload["email"] == "a@example.com"


def test_expired_or_foreign_tokens_do_not_decode(settings):
    expired = create_access_token("uid-1", settings, expires_delta=timedelta(minutes=-1))
    foreign = create_access_token("uid-1", settings.model_copy(update={"SECRET_KEY": "other-key"}))

    assert decode_token(expired, settings) is None
    assert decode_token(foreign, settings) is None
    assert decode_token("not-a-jwt", settings) is None


# ========================================
# Local provider
# ========================================

@pytest.fixture
def local_auth(store, settings) -> LocalAuthProvider:
    return LocalAuthProvider(store, settings)


@pytest.mark.asyncio
async def test_local_sign_up_and_sign_in(local_auth, sample_user_data):
    created = await local_auth.sign_up(sample_user_data["email"], sample_user_data["password"])
    signed_in = await local_auth.sign_in("  TEST@example.com ", sample_user_data["password"])

    assert signed_in.uid == created.uid
    assert signed_in.email == "test@example.com"
    assert (await local_auth.verify_token(signed_in.id_token)).uid == created.uid


@pytest.mark.asyncio
async def test_local_sign_in_failures(local_auth, sample_user_data):
    await local_auth.sign_up(sample_user_data["email"], sample_user_data["password"])

    with pytest.raises(StoreError) as exc_info:
        await local_auth.sign_in(sample_user_data["email"], "WrongPass123!")
    assert exc_info.value.kind == ErrorKind.AUTH_WRONG_PASSWORD

    with pytest.raises(StoreError) as exc_info:
        await local_auth.sign_in("nobody@example.com", "whatever")
    assert exc_info.value.kind == ErrorKind.AUTH_USER_NOT_FOUND


@pytest.mark.asyncio
async def test_disabled_account(local_auth, store, sample_user_data):
    session = await local_auth.sign_up(sample_user_data["email"], sample_user_data["password"])
    await store.commit_batch([Write(WriteKind.UPDATE, f"authAccounts/{session.uid}", {"disabled": True})])

    with pytest.raises(StoreError) as exc_info:
        await local_auth.sign_in(sample_user_data["email"], sample_user_data["password"])
    assert exc_info.value.kind == ErrorKind.AUTH_USER_DISABLED

    with pytest.raises(StoreError) as exc_info:
        await local_auth.verify_token(session.id_token)
    assert exc_info.value.kind == ErrorKind.AUTH_USER_DISABLED


@pytest.mark.asyncio
async def test_tokens_of_other_types_are_rejected(local_auth, settings, sample_user_data):
    session = await local_auth.sign_up(sample_user_data["email"], sample_user_data["password"])
    refresh = create_access_token(session.uid, settings, additional_claims={"type": "refresh"})
    stranger = create_access_token("missing-uid", settings)

    for token in (refresh, stranger, "garbage"):
        with pytest.raises(StoreError) as exc_info:
            await local_auth.verify_token(token)
        assert exc_info.value.kind == ErrorKind.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_sign_out_unknown_user(local_auth):
    with pytest.raises(StoreError) as exc_info:
        await local_auth.sign_out("ghost")
    assert exc_info.value.kind == ErrorKind.AUTH_USER_NOT_FOUND


# ========================================
# Identity Toolkit provider
# ========================================

def toolkit(handler) -> FirebaseAuthProvider:
    client = httpx.AsyncClient(base_url=IDENTITY_TOOLKIT_URL, transport=httpx.MockTransport(handler))
    return FirebaseAuthProvider("api-key", client=client)


@pytest.mark.asyncio
async def test_toolkit_sign_in():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={
            "localId": "uid-9",
            "email": "a@example.com",
            "idToken": "id-token",
            "refreshToken": "refresh-token",
            "expiresIn": "3600",
        })

    provider = toolkit(handler)
    session = await provider.sign_in("a@example.com", "secret1")
    await provider.close()

    assert session.uid == "uid-9"
    assert session.id_token == "id-token"
    assert session.expires_in == 3600
    assert requests[0].url.path.endswith("/accounts:signInWithPassword")
    assert requests[0].url.params["key"] == "api-key"


@pytest.mark.parametrize("message, kind", [
    ("EMAIL_EXISTS", ErrorKind.AUTH_EMAIL_ALREADY_IN_USE),
    ("INVALID_LOGIN_CREDENTIALS", ErrorKind.AUTH_WRONG_PASSWORD),
    ("WEAK_PASSWORD : Password should be at least 6 characters", ErrorKind.AUTH_WEAK_PASSWORD),
    ("TOO_MANY_ATTEMPTS_TRY_LATER", ErrorKind.AUTH_TOO_MANY_REQUESTS),
    ("SOMETHING_NEW", ErrorKind.UNKNOWN),
])
@pytest.mark.asyncio
async def test_toolkit_error_codes(message, kind):
    provider = toolkit(lambda request: httpx.Response(400, json={"error": {"message": message}}))

    with pytest.raises(StoreError) as exc_info:
        await provider.sign_up("a@example.com", "secret1")
    await provider.close()

    assert exc_info.value.kind == kind


@pytest.mark.asyncio
async def test_toolkit_transport_failures():
    def timeout(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    for handler, kind in (
        (timeout, ErrorKind.TIMEOUT),
        (refused, ErrorKind.NETWORK),
        (lambda request: httpx.Response(503), ErrorKind.UNAVAILABLE),
    ):
        provider = toolkit(handler)
        with pytest.raises(StoreError) as exc_info:
            await provider.sign_in("a@example.com", "secret1")
        await provider.close()
        assert exc_info.value.kind == kind
        assert exc_info.value.retryable


@pytest.mark.asyncio
async def test_admin_sdk_calls_run_off_the_event_loop(monkeypatch):
    from firebase_admin import auth

    revoked = []
    monkeypatch.setattr(auth, "revoke_refresh_tokens", revoked.append)
    monkeypatch.setattr(
        auth, "verify_id_token", lambda token, check_revoked=False: {"uid": "u1", "email": "a@example.com"}
    )
    provider = toolkit(lambda request: httpx.Response(200, json={}))

    await provider.sign_out("u1")
    user = await provider.verify_token("id-token")
    await provider.close()

    assert revoked == ["u1"]
    assert user.uid == "u1"
    assert user.email == "a@example.com"


@pytest.mark.asyncio
async def test_admin_sdk_rejections_are_classified(monkeypatch):
    from firebase_admin import auth

    def revoke(uid):
        raise auth.UserNotFoundError("no such user")

    def verify(token, check_revoked=False):
        raise auth.RevokedIdTokenError("revoked")

    monkeypatch.setattr(auth, "revoke_refresh_tokens", revoke)
    monkeypatch.setattr(auth, "verify_id_token", verify)
    provider = toolkit(lambda request: httpx.Response(200, json={}))

    with pytest.raises(StoreError) as exc_info:
        await provider.sign_out("ghost")
    assert exc_info.value.kind == ErrorKind.AUTH_USER_NOT_FOUND

    with pytest.raises(StoreError) as exc_info:
        await provider.verify_token("stale")
    assert exc_info.value.kind == ErrorKind.UNAUTHENTICATED
    await provider.close()
