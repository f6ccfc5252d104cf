"""
Test Buddy - Firebase Service
Single entry point for auth, profiles, test history and folders.

Every public method runs through the retry executor with the service's
default policy; ``retry_options`` overrides individual fields per call.
"""
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from testbuddy.core.errors import ErrorKind, StoreError, ValidationError
from testbuddy.core.plans import DEFAULT_PLAN, UserPlan
from testbuddy.schemas.folder import Folder, FolderCreate, FolderUpdate
from testbuddy.schemas.test_history import TestHistory, TestHistoryPage, UserAnswer
from testbuddy.schemas.user import AuthenticatedUser, AuthSession, UserProfile, UserProfileUpdate
from testbuddy.services.auth import AuthProvider
from testbuddy.services.batch import BatchOperation, BatchOperations, BatchOperationType, BatchResult
from testbuddy.services.query_optimizer import (
    FOLDER_TTL,
    TEST_LIST_TTL,
    QueryOptimizer,
    QueryOptions,
    cache_key_prefix,
)
from testbuddy.services.results import score_answers
from testbuddy.services.retry import RetryExecutor, RetryPolicy
from testbuddy.services.validation import (
    sanitize_for_firestore,
    sanitize_string,
    validate_email,
    validate_folder,
    validate_password,
    validate_score,
    validate_test_history,
    validate_user_id,
)
from testbuddy.store.base import (
    SERVER_TIMESTAMP,
    DocumentStore,
    FilterOperator,
    OrderBy,
    QueryFilter,
    QuerySpec,
    SortDirection,
    Transaction,
    Write,
    WriteKind,
    join_path,
)

logger = logging.getLogger(__name__)

# Facade default: shorter ceiling and deadline than the executor's own
DEFAULT_RETRY_POLICY = RetryPolicy(
    max_attempts=3,
    initial_delay=1.0,
    max_delay=10.0,
    backoff_factor=2.0,
    jitter=True,
    timeout=30.0,
)

TEST_HISTORY_COLLECTION = "testHistory"
FOLDERS_COLLECTION = "folders"
USERS_COLLECTION = "users"


def user_path(user_id: str) -> str:
    return join_path(USERS_COLLECTION, user_id)


def user_test_path(user_id: str, test_id: str) -> str:
    return join_path(USERS_COLLECTION, user_id, "tests", test_id)


def test_history_path(test_id: str) -> str:
    return join_path(TEST_HISTORY_COLLECTION, test_id)


def folder_path(folder_id: str) -> str:
    return join_path(FOLDERS_COLLECTION, folder_id)


class FirebaseService:
    """
    Facade over the document store.

    Test histories are denormalised: every test is written to
    ``testHistory/{id}`` and ``users/{uid}/tests/{id}`` in the same
    transaction, so both copies always agree.
    """

    def __init__(
        self,
        store: DocumentStore,
        auth: AuthProvider,
        retry: RetryExecutor,
        query_optimizer: QueryOptimizer,
        batch: BatchOperations,
        default_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    ):
        self.store = store
        self.auth = auth
        self.retry = retry
        self.query_optimizer = query_optimizer
        self.batch = batch
        self.default_policy = default_policy

    def _policy(self, retry_options: Optional[Dict[str, Any]]) -> RetryPolicy:
        return self.default_policy.merge(retry_options) if retry_options else self.default_policy

    async def _run(self, operation, label: str, retry_options: Optional[Dict[str, Any]] = None):
        return await self.retry.execute(operation, self._policy(retry_options), label)

    def _invalidate_tests(self, user_id: str) -> None:
        self.query_optimizer.invalidate_cache(cache_key_prefix(USERS_COLLECTION, "tests", user_id))

    def _invalidate_folders(self, user_id: str) -> None:
        self.query_optimizer.invalidate_cache(cache_key_prefix(FOLDERS_COLLECTION, None, user_id))

    # ========================================
    # Authentication
    # ========================================

    async def sign_up(
        self,
        email: str,
        password: str,
        display_name: str,
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> AuthSession:
        """
        Create an account and its profile document.

        Raises:
            ValidationError: malformed email, short password or empty name
            StoreError: ``auth/email-already-in-use`` and other auth failures
        """
        email = validate_email(email)
        validate_password(password)
        display_name = sanitize_string(display_name, max_length=100)
        if not display_name:
            display_name = email.split("@")[0]

        session = await self._run(lambda: self.auth.sign_up(email, password), "Sign up", retry_options)
        await self.create_user_profile(session.uid, session.email, display_name, retry_options=retry_options)
        logger.info(f"User signed up: {session.uid}")
        return session

    async def sign_in(
        self,
        email: str,
        password: str,
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> AuthSession:
        email = validate_email(email)
        if not password:
            raise ValidationError("Password is required", field="password")
        return await self._run(lambda: self.auth.sign_in(email, password), "Sign in", retry_options)

    async def sign_out(self, user_id: str, retry_options: Optional[Dict[str, Any]] = None) -> None:
        user_id = validate_user_id(user_id)
        await self._run(lambda: self.auth.sign_out(user_id), "Sign out", retry_options)
        self._invalidate_tests(user_id)
        self._invalidate_folders(user_id)

    async def verify_token(self, token: str) -> AuthenticatedUser:
        if not token:
            raise StoreError(ErrorKind.UNAUTHENTICATED, "Missing token")
        return await self._run(lambda: self.auth.verify_token(token), "Verify token")

    # ========================================
    # User profiles
    # ========================================

    async def get_user_profile(
        self,
        user_id: str,
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> Optional[UserProfile]:
        user_id = validate_user_id(user_id)
        snapshot = await self._run(lambda: self.store.get(user_path(user_id)), "Get user profile", retry_options)
        if not snapshot.exists:
            return None
        return UserProfile.from_document({"uid": user_id, **snapshot.data})

    async def create_user_profile(
        self,
        user_id: str,
        email: str,
        display_name: str,
        plan: UserPlan = DEFAULT_PLAN,
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> UserProfile:
        user_id = validate_user_id(user_id)
        data = sanitize_for_firestore({
            "uid": user_id,
            "email": email,
            "displayName": display_name,
            "plan": UserPlan(plan).value,
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        })
        write = Write(WriteKind.SET, user_path(user_id), data)
        await self._run(lambda: self.store.commit_batch([write]), "Create user profile", retry_options)
        return await self.get_user_profile(user_id, retry_options)

    async def update_user_profile(
        self,
        user_id: str,
        updates: UserProfileUpdate,
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> UserProfile:
        user_id = validate_user_id(user_id)
        data = updates.model_dump(by_alias=True, exclude_unset=True)
        if data.get("displayName") is None:
            data.pop("displayName", None)
        else:
            data["displayName"] = sanitize_string(data["displayName"], max_length=100)
        data["updatedAt"] = SERVER_TIMESTAMP

        write = Write(WriteKind.UPDATE, user_path(user_id), data)
        await self._run(lambda: self.store.commit_batch([write]), "Update user profile", retry_options)
        return await self.get_user_profile(user_id, retry_options)

    async def update_user_plan(
        self,
        user_id: str,
        plan: UserPlan,
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> UserProfile:
        user_id = validate_user_id(user_id)
        write = Write(
            WriteKind.UPDATE,
            user_path(user_id),
            {"plan": UserPlan(plan).value, "updatedAt": SERVER_TIMESTAMP},
        )
        await self._run(lambda: self.store.commit_batch([write]), "Update user plan", retry_options)
        logger.info(f"Plan changed for user {user_id}: {UserPlan(plan).value}")
        return await self.get_user_profile(user_id, retry_options)

    # ========================================
    # Test history
    # ========================================

    async def save_test_history(
        self,
        test: TestHistory,
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Validate and store a test in both locations under one id.

        Args:
            test: The test to save; ``id`` is generated when absent
            retry_options: Per-call retry overrides

        Returns:
            The test id

        Raises:
            ValidationError: if the payload is incomplete or malformed
        """
        data = sanitize_for_firestore(test.to_document(exclude={"id"}))
        validate_test_history(data)

        user_id = data["userId"]
        test_id = test.id or self.store.new_id()
        if data.get("createdAt") is None:
            data["createdAt"] = SERVER_TIMESTAMP
        data["updatedAt"] = SERVER_TIMESTAMP

        async def _save(transaction: Transaction) -> None:
            transaction.set(test_history_path(test_id), data)
            transaction.set(user_test_path(user_id, test_id), data)

        await self._run(lambda: self.store.run_transaction(_save), "Save test history", retry_options)
        self._invalidate_tests(user_id)
        logger.info(f"Test history saved: {test_id} (user {user_id})")
        return test_id

    async def get_test_history(
        self,
        user_id: str,
        test_id: str,
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> Optional[TestHistory]:
        user_id = validate_user_id(user_id)
        snapshot = await self._run(
            lambda: self.store.get(user_test_path(user_id, test_id)), "Get test history", retry_options
        )
        if not snapshot.exists:
            return None
        return TestHistory.from_document(snapshot.to_dict())

    async def get_user_test_history(
        self,
        user_id: str,
        page_size: int = 20,
        cursor: Optional[str] = None,
        filters: Sequence[QueryFilter] = (),
        order_by_field: str = "createdAt",
        order_direction: str = "desc",
        use_cache: bool = True,
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> TestHistoryPage:
        """
        One page of a user's tests.

        ``has_more`` is exact: the page is read with one extra document.
        ``cursor`` of the returned page feeds the next call.
        """
        user_id = validate_user_id(user_id)
        if page_size < 1:
            raise ValidationError("page_size must be at least 1", field="page_size")
        try:
            direction = SortDirection(order_direction)
        except ValueError:
            raise ValidationError(
                f"order_direction must be 'asc' or 'desc', got {order_direction!r}", field="order_direction"
            ) from None

        options = QueryOptions(
            collection=USERS_COLLECTION,
            subcollection="tests",
            user_id=user_id,
            filters=tuple(filters),
            order_by=OrderBy(order_by_field, direction),
            limit=page_size + 1,
            start_after=cursor,
            use_cache=use_cache,
            cache_ttl=TEST_LIST_TTL,
        )
        result = await self._run(
            lambda: self.query_optimizer.execute_query(options), "Get user test history", retry_options
        )

        docs = result.data[:page_size]
        has_more = len(result.data) > page_size
        return TestHistoryPage(
            tests=[TestHistory.from_document(doc) for doc in docs],
            has_more=has_more,
            cursor=docs[-1]["id"] if has_more and docs else None,
        )

    async def complete_test_history(
        self,
        user_id: str,
        test_id: str,
        answers: Sequence[UserAnswer],
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> TestHistory:
        """Score submitted answers and record them on both copies of the test."""
        user_id = validate_user_id(user_id)

        async def _complete(transaction: Transaction) -> None:
            snapshot = await transaction.get(user_test_path(user_id, test_id))
            if not snapshot.exists:
                raise StoreError(ErrorKind.NOT_FOUND, f"Test {test_id} not found")
            test = TestHistory.from_document(snapshot.to_dict())
            marked, summary = score_answers(test.questions, answers)
            validate_score(summary.score)
            updates = {
                "answers": [answer.model_dump(by_alias=True) for answer in marked],
                "score": summary.score,
                "completedAt": SERVER_TIMESTAMP,
                "updatedAt": SERVER_TIMESTAMP,
            }
            transaction.update(test_history_path(test_id), updates)
            transaction.update(user_test_path(user_id, test_id), updates)

        await self._run(lambda: self.store.run_transaction(_complete), "Complete test", retry_options)
        self._invalidate_tests(user_id)
        return await self.get_test_history(user_id, test_id, retry_options)

    async def move_test_to_folder(
        self,
        user_id: str,
        test_id: str,
        folder_id: Optional[str],
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Move a test into a folder, or back to unorganized with ``None``."""
        user_id = validate_user_id(user_id)

        async def _move(transaction: Transaction) -> None:
            if folder_id:
                folder = await transaction.get(folder_path(folder_id))
                self._check_folder_owner(folder, user_id, folder_id)
            snapshot = await transaction.get(user_test_path(user_id, test_id))
            if not snapshot.exists:
                raise StoreError(ErrorKind.NOT_FOUND, f"Test {test_id} not found")
            updates = {"folderId": folder_id, "updatedAt": SERVER_TIMESTAMP}
            transaction.update(test_history_path(test_id), updates)
            transaction.update(user_test_path(user_id, test_id), updates)

        await self._run(lambda: self.store.run_transaction(_move), "Move test to folder", retry_options)
        self._invalidate_tests(user_id)

    async def delete_test_history(
        self,
        user_id: str,
        test_id: str,
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Delete both copies of a test atomically."""
        user_id = validate_user_id(user_id)

        async def _delete(transaction: Transaction) -> None:
            snapshot = await transaction.get(user_test_path(user_id, test_id))
            if not snapshot.exists:
                raise StoreError(ErrorKind.NOT_FOUND, f"Test {test_id} not found")
            transaction.delete(test_history_path(test_id))
            transaction.delete(user_test_path(user_id, test_id))

        await self._run(lambda: self.store.run_transaction(_delete), "Delete test history", retry_options)
        self._invalidate_tests(user_id)
        logger.info(f"Test history deleted: {test_id} (user {user_id})")

    # ========================================
    # Folders
    # ========================================

    @staticmethod
    def _check_folder_owner(snapshot, user_id: str, folder_id: str) -> None:
        if not snapshot.exists:
            raise StoreError(ErrorKind.NOT_FOUND, f"Folder {folder_id} not found")
        if snapshot.data.get("userId") != user_id:
            raise StoreError(ErrorKind.PERMISSION_DENIED, f"Folder {folder_id} belongs to another user")

    async def _get_owned_folder(self, user_id: str, folder_id: str, retry_options) -> Folder:
        snapshot = await self._run(lambda: self.store.get(folder_path(folder_id)), "Get folder", retry_options)
        self._check_folder_owner(snapshot, user_id, folder_id)
        return Folder.from_document(snapshot.to_dict())

    async def create_folder(
        self,
        user_id: str,
        folder: FolderCreate,
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> Folder:
        user_id = validate_user_id(user_id)
        data = sanitize_for_firestore({
            **folder.to_document(),
            "userId": user_id,
            "name": sanitize_string(folder.name),
        })
        if data.get("description"):
            data["description"] = sanitize_string(data["description"])
        validate_folder(data)
        data["createdAt"] = SERVER_TIMESTAMP
        data["updatedAt"] = SERVER_TIMESTAMP

        folder_id = self.store.new_id()
        write = Write(WriteKind.SET, folder_path(folder_id), data)
        await self._run(lambda: self.store.commit_batch([write]), "Create folder", retry_options)
        self._invalidate_folders(user_id)
        return await self._get_owned_folder(user_id, folder_id, retry_options)

    async def get_user_folders(
        self,
        user_id: str,
        use_cache: bool = True,
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> List[Folder]:
        user_id = validate_user_id(user_id)
        options = QueryOptions(
            collection=FOLDERS_COLLECTION,
            user_id=user_id,
            filters=(QueryFilter("userId", FilterOperator.EQ, user_id),),
            order_by=OrderBy("name", SortDirection.ASC),
            use_cache=use_cache,
            cache_ttl=FOLDER_TTL,
        )
        result = await self._run(
            lambda: self.query_optimizer.execute_query(options), "Get user folders", retry_options
        )
        return [Folder.from_document(doc) for doc in result.data]

    async def update_folder(
        self,
        user_id: str,
        folder_id: str,
        updates: FolderUpdate,
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> Folder:
        user_id = validate_user_id(user_id)
        current = await self._get_owned_folder(user_id, folder_id, retry_options)

        data = updates.model_dump(by_alias=True, exclude_unset=True)
        if data.get("name") is None:
            data.pop("name", None)
        else:
            data["name"] = sanitize_string(data["name"])
        validate_folder({
            "userId": user_id,
            "name": data.get("name", current.name),
            "description": data.get("description", current.description),
        })
        if not data:
            return current
        data["updatedAt"] = SERVER_TIMESTAMP

        write = Write(WriteKind.UPDATE, folder_path(folder_id), data)
        await self._run(lambda: self.store.commit_batch([write]), "Update folder", retry_options)
        self._invalidate_folders(user_id)
        return await self._get_owned_folder(user_id, folder_id, retry_options)

    async def delete_folder(
        self,
        user_id: str,
        folder_id: str,
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Delete a folder after moving its tests to unorganized.

        Tests are reassigned in both locations through batch writes; the
        folder is only deleted once every reassignment succeeded.

        Returns:
            Number of tests reassigned
        """
        user_id = validate_user_id(user_id)
        await self._get_owned_folder(user_id, folder_id, retry_options)

        in_folder = QueryFilter("folderId", FilterOperator.EQ, folder_id)
        global_spec = QuerySpec(
            collection=TEST_HISTORY_COLLECTION,
            filters=(QueryFilter("userId", FilterOperator.EQ, user_id), in_folder),
        )
        user_spec = QuerySpec(collection=join_path(USERS_COLLECTION, user_id, "tests"), filters=(in_folder,))
        global_docs = await self._run(lambda: self.store.query(global_spec), "Find folder tests", retry_options)
        user_docs = await self._run(lambda: self.store.query(user_spec), "Find folder tests", retry_options)

        updates = {"folderId": None, "updatedAt": SERVER_TIMESTAMP}
        operations = [
            BatchOperation(BatchOperationType.UPDATE, TEST_HISTORY_COLLECTION, doc.id, dict(updates))
            for doc in global_docs
        ] + [
            BatchOperation(
                BatchOperationType.UPDATE, join_path(USERS_COLLECTION, user_id, "tests"), doc.id, dict(updates)
            )
            for doc in user_docs
        ]

        if operations:
            result = await self.batch.execute_batch(operations, self._policy(retry_options))
            if not result.success:
                self._invalidate_tests(user_id)
                first = result.errors[0].error
                raise StoreError(
                    first.kind,
                    f"Could not reassign {result.error_count} tests from folder {folder_id}: {first.message}",
                    cause=first,
                )

        write = Write(WriteKind.DELETE, folder_path(folder_id))
        await self._run(lambda: self.store.commit_batch([write]), "Delete folder", retry_options)
        self._invalidate_folders(user_id)
        self._invalidate_tests(user_id)
        logger.info(f"Folder deleted: {folder_id} ({len(user_docs)} tests moved to unorganized)")
        return len(user_docs)

    # ========================================
    # Utilities
    # ========================================

    async def batch_write(
        self,
        operations: Sequence[BatchOperation],
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> BatchResult:
        return await self.batch.execute_batch(operations, self._policy(retry_options))

    async def document_exists(self, path: str, retry_options: Optional[Dict[str, Any]] = None) -> bool:
        snapshot = await self._run(lambda: self.store.get(path), "Document exists", retry_options)
        return snapshot.exists

    async def get_collection_size(
        self,
        collection: str,
        filters: Sequence[QueryFilter] = (),
        retry_options: Optional[Dict[str, Any]] = None,
    ) -> int:
        spec = QuerySpec(collection=collection, filters=tuple(filters))
        snapshots = await self._run(lambda: self.store.query(spec), "Get collection size", retry_options)
        return len(snapshots)

    async def health_check(self) -> Dict[str, Any]:
        """Round-trip the store once, without retrying."""
        start = time.monotonic()
        try:
            await self.retry.execute(
                self.store.ping,
                self.default_policy.merge(max_attempts=1, timeout=5.0),
                "Health check",
            )
        except StoreError as e:
            logger.warning(f"Health check failed: {e.kind.value}: {e.message}")
            return {
                "status": "unhealthy",
                "backend": self.store.name,
                "error": e.to_dict(),
            }
        return {
            "status": "healthy",
            "backend": self.store.name,
            "latency_ms": round((time.monotonic() - start) * 1000, 2),
        }
