"""
Test Buddy - Authentication Providers
Firebase Authentication for production, a local provider for development and tests
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from testbuddy.core.config import Settings
from testbuddy.core.errors import ErrorKind, StoreError
from testbuddy.core.security import create_access_token, decode_token, get_password_hash, verify_password
from testbuddy.schemas.user import AuthenticatedUser, AuthSession
from testbuddy.store.base import SERVER_TIMESTAMP, DocumentStore, Increment, Transaction, join_path

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"

# Identity Toolkit error codes (prefix of error.message)
_IDENTITY_TOOLKIT_ERRORS = {
    "EMAIL_EXISTS": ErrorKind.AUTH_EMAIL_ALREADY_IN_USE,
    "EMAIL_NOT_FOUND": ErrorKind.AUTH_USER_NOT_FOUND,
    "INVALID_PASSWORD": ErrorKind.AUTH_WRONG_PASSWORD,
    "INVALID_LOGIN_CREDENTIALS": ErrorKind.AUTH_WRONG_PASSWORD,
    "USER_DISABLED": ErrorKind.AUTH_USER_DISABLED,
    "TOO_MANY_ATTEMPTS_TRY_LATER": ErrorKind.AUTH_TOO_MANY_REQUESTS,
    "WEAK_PASSWORD": ErrorKind.AUTH_WEAK_PASSWORD,
    "INVALID_EMAIL": ErrorKind.AUTH_INVALID_EMAIL,
    "MISSING_PASSWORD": ErrorKind.AUTH_WEAK_PASSWORD,
}


class AuthProvider(ABC):
    """Account management used by the service facade."""

    @abstractmethod
    async def sign_up(self, email: str, password: str) -> AuthSession:
        ...

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> AuthSession:
        ...

    @abstractmethod
    async def sign_out(self, uid: str) -> None:
        """Invalidate every token issued to ``uid`` so far."""

    @abstractmethod
    async def verify_token(self, token: str) -> AuthenticatedUser:
        ...

    async def close(self) -> None:
        pass


class FirebaseAuthProvider(AuthProvider):
    """
    Email/password auth through the Identity Toolkit REST API; tokens are
    verified and revoked with the Firebase Admin SDK.
    """

    def __init__(self, api_key: str, timeout: float = 15.0, client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(base_url=IDENTITY_TOOLKIT_URL, timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "FirebaseAuthProvider":
        return cls(settings.FIREBASE_API_KEY, timeout=settings.FIREBASE_AUTH_TIMEOUT_SECONDS)

    async def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post(
                f"/accounts:{endpoint}",
                params={"key": self.api_key},
                json=payload,
            )
        except httpx.TimeoutException as e:
            raise StoreError(ErrorKind.TIMEOUT, f"Identity Toolkit {endpoint} timed out", cause=e) from e
        except httpx.TransportError as e:
            raise StoreError(ErrorKind.NETWORK, f"Identity Toolkit {endpoint} failed: {e}", cause=e) from e

        if response.status_code >= 500:
            raise StoreError(ErrorKind.UNAVAILABLE, f"Identity Toolkit {endpoint} returned {response.status_code}")

        data = response.json()
        if response.status_code >= 400:
            message = data.get("error", {}).get("message", "")
            code = message.split(":")[0].strip()
            kind = _IDENTITY_TOOLKIT_ERRORS.get(code, ErrorKind.UNKNOWN)
            raise StoreError(kind, f"Identity Toolkit {endpoint}: {message or response.status_code}")
        return data

    @staticmethod
    def _session(data: Dict[str, Any]) -> AuthSession:
        return AuthSession(
            uid=data["localId"],
            email=data["email"],
            id_token=data["idToken"],
            refresh_token=data.get("refreshToken"),
            expires_in=int(data.get("expiresIn", 3600)),
        )

    async def sign_up(self, email: str, password: str) -> AuthSession:
        data = await self._post("signUp", {"email": email, "password": password, "returnSecureToken": True})
        return self._session(data)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        data = await self._post(
            "signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        return self._session(data)

    async def sign_out(self, uid: str) -> None:
        from firebase_admin import auth

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, auth.revoke_refresh_tokens, uid)
        except auth.UserNotFoundError as e:
            raise StoreError(ErrorKind.AUTH_USER_NOT_FOUND, f"No user {uid}", cause=e) from e

    async def verify_token(self, token: str) -> AuthenticatedUser:
        from firebase_admin import auth

        loop = asyncio.get_running_loop()
        try:
            claims = await loop.run_in_executor(
                None, lambda: auth.verify_id_token(token, check_revoked=True)
            )
        except auth.UserDisabledError as e:
            raise StoreError(ErrorKind.AUTH_USER_DISABLED, "User disabled", cause=e) from e
        except (auth.RevokedIdTokenError, auth.ExpiredIdTokenError, auth.InvalidIdTokenError) as e:
            raise StoreError(ErrorKind.UNAUTHENTICATED, f"Invalid ID token: {e}", cause=e) from e
        return AuthenticatedUser(uid=claims["uid"], email=claims.get("email"))

    async def close(self) -> None:
        await self._client.aclose()


class LocalAuthProvider(AuthProvider):
    """
    Accounts kept in the document store with bcrypt hashes; sessions are
    signed JWTs.

    ``authEmails/{email}`` maps an address to its uid and
    ``authAccounts/{uid}`` holds the credentials. Tokens carry the account's
    ``tokenVersion``; signing out bumps it so earlier tokens stop verifying.
    """

    def __init__(self, store: DocumentStore, settings: Settings):
        self.store = store
        self.settings = settings

    @staticmethod
    def _email_key(email: str) -> str:
        return email.strip().lower()

    def _session(self, uid: str, email: str, token_version: int) -> AuthSession:
        token = create_access_token(
            uid, self.settings, additional_claims={"email": email, "ver": token_version}
        )
        return AuthSession(
            uid=uid,
            email=email,
            id_token=token,
            expires_in=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        )

    async def sign_up(self, email: str, password: str) -> AuthSession:
        email_key = self._email_key(email)
        uid = self.store.new_id()
        password_hash = get_password_hash(password)

        async def _create(transaction: Transaction) -> None:
            existing = await transaction.get(join_path("authEmails", email_key))
            if existing.exists:
                raise StoreError(ErrorKind.AUTH_EMAIL_ALREADY_IN_USE, f"Email already registered: {email_key}")
            transaction.set(join_path("authEmails", email_key), {"uid": uid})
            transaction.set(join_path("authAccounts", uid), {
                "email": email_key,
                "passwordHash": password_hash,
                "disabled": False,
                "tokenVersion": 0,
                "createdAt": SERVER_TIMESTAMP,
            })

        await self.store.run_transaction(_create)
        logger.info(f"Local account created: {uid}")
        return self._session(uid, email_key, 0)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        email_key = self._email_key(email)
        mapping = await self.store.get(join_path("authEmails", email_key))
        if not mapping.exists:
            raise StoreError(ErrorKind.AUTH_USER_NOT_FOUND, f"No account for {email_key}")

        uid = mapping.data["uid"]
        account = await self.store.get(join_path("authAccounts", uid))
        if not account.exists:
            raise StoreError(ErrorKind.AUTH_USER_NOT_FOUND, f"No account for {email_key}")
        if account.data.get("disabled"):
            raise StoreError(ErrorKind.AUTH_USER_DISABLED, f"Account disabled: {uid}")
        if not verify_password(password, account.data["passwordHash"]):
            raise StoreError(ErrorKind.AUTH_WRONG_PASSWORD, f"Wrong password for {uid}")
        return self._session(uid, email_key, account.data.get("tokenVersion", 0))

    async def sign_out(self, uid: str) -> None:
        async def _revoke(transaction: Transaction) -> None:
            path = join_path("authAccounts", uid)
            account = await transaction.get(path)
            if not account.exists:
                raise StoreError(ErrorKind.AUTH_USER_NOT_FOUND, f"No user {uid}")
            transaction.update(path, {"tokenVersion": Increment(1)})

        await self.store.run_transaction(_revoke)

    async def verify_token(self, token: str) -> AuthenticatedUser:
        payload = decode_token(token, self.settings)
        if payload is None or payload.get("type") != "access" or not payload.get("sub"):
            raise StoreError(ErrorKind.UNAUTHENTICATED, "Invalid or expired token")

        account = await self.store.get(join_path("authAccounts", payload["sub"]))
        if not account.exists:
            raise StoreError(ErrorKind.UNAUTHENTICATED, "Token subject no longer exists")
        if account.data.get("disabled"):
            raise StoreError(ErrorKind.AUTH_USER_DISABLED, "User disabled")
        if payload.get("ver", 0) != account.data.get("tokenVersion", 0):
            raise StoreError(ErrorKind.UNAUTHENTICATED, "Token has been revoked")
        return AuthenticatedUser(uid=payload["sub"], email=payload.get("email"))
