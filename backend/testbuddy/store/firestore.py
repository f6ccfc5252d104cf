"""
Test Buddy - Firestore Document Store
Cloud Firestore adapter built on firebase-admin and google-cloud-firestore.
"""
import logging
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator, List, Sequence, TypeVar

import firebase_admin
from firebase_admin import credentials, firestore_async
from google.api_core import exceptions as gexc
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from testbuddy.core.errors import ErrorKind, StoreError
from testbuddy.store.base import (
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    DocumentStore,
    Increment,
    QuerySpec,
    SortDirection,
    Transaction,
    Write,
    WriteKind,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Most specific classes first: AlreadyExists and Aborted both derive from Conflict
_EXCEPTION_KINDS = (
    (gexc.PermissionDenied, ErrorKind.PERMISSION_DENIED),
    (gexc.Unauthenticated, ErrorKind.UNAUTHENTICATED),
    (gexc.NotFound, ErrorKind.NOT_FOUND),
    (gexc.AlreadyExists, ErrorKind.ALREADY_EXISTS),
    (gexc.Aborted, ErrorKind.ABORTED),
    (gexc.ResourceExhausted, ErrorKind.RESOURCE_EXHAUSTED),
    (gexc.TooManyRequests, ErrorKind.RESOURCE_EXHAUSTED),
    (gexc.FailedPrecondition, ErrorKind.FAILED_PRECONDITION),
    (gexc.OutOfRange, ErrorKind.OUT_OF_RANGE),
    (gexc.MethodNotImplemented, ErrorKind.UNIMPLEMENTED),
    (gexc.ServiceUnavailable, ErrorKind.UNAVAILABLE),
    (gexc.DataLoss, ErrorKind.DATA_LOSS),
    (gexc.InternalServerError, ErrorKind.INTERNAL),
    (gexc.DeadlineExceeded, ErrorKind.TIMEOUT),
    (gexc.RetryError, ErrorKind.UNAVAILABLE),
    (gexc.Unknown, ErrorKind.UNKNOWN),
)

# Python SDK spells the array operators with underscores
_OPERATORS = {
    "array-contains": "array_contains",
    "array-contains-any": "array_contains_any",
}


def translate_exception(error: BaseException, operation: str) -> StoreError:
    """Classify a Firestore SDK exception."""
    if isinstance(error, StoreError):
        return error
    for exc_type, kind in _EXCEPTION_KINDS:
        if isinstance(error, exc_type):
            return StoreError(kind, f"{operation}: {error}", cause=error)
    if isinstance(error, gexc.GoogleAPICallError):
        return StoreError(ErrorKind.UNKNOWN, f"{operation}: {error}", cause=error)
    return StoreError.from_exception(error, context={"operation": operation})


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except StoreError:
        raise
    except (gexc.GoogleAPICallError, gexc.RetryError, ConnectionError, TimeoutError) as e:
        raise translate_exception(e, operation) from e


def to_firestore_value(value: Any) -> Any:
    """Swap store sentinels for their Firestore equivalents."""
    if value is SERVER_TIMESTAMP:
        return firestore.SERVER_TIMESTAMP
    if isinstance(value, Increment):
        return firestore.Increment(value.amount)
    if isinstance(value, dict):
        return {k: to_firestore_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_firestore_value(v) for v in value]
    return value


def _to_snapshot(snapshot) -> DocumentSnapshot:
    return DocumentSnapshot(
        id=snapshot.id,
        path=snapshot.reference.path,
        data=snapshot.to_dict() if snapshot.exists else None,
    )


class _FirestoreTransaction(Transaction):

    def __init__(self, client, transaction):
        super().__init__()
        self._client = client
        self._transaction = transaction

    async def _read(self, path: str) -> DocumentSnapshot:
        snapshot = await self._client.document(path).get(transaction=self._transaction)
        return _to_snapshot(snapshot)

    def flush(self) -> None:
        """Stage buffered writes on the SDK transaction."""
        for write in self.writes:
            ref = self._client.document(write.path)
            if write.kind == WriteKind.SET:
                self._transaction.set(ref, to_firestore_value(write.data or {}), merge=write.merge)
            elif write.kind == WriteKind.UPDATE:
                self._transaction.update(ref, to_firestore_value(write.data or {}))
            else:
                self._transaction.delete(ref)


class FirestoreStore(DocumentStore):
    """Document store backed by Cloud Firestore."""

    name = "firestore"

    def __init__(self, client):
        self.client = client

    @classmethod
    def from_settings(cls, settings) -> "FirestoreStore":
        """
        Initialize the Firebase app once and return a store bound to it.

        Falls back to application default credentials when no service
        account file is configured.
        """
        if not firebase_admin._apps:
            options = {"projectId": settings.FIREBASE_PROJECT_ID} if settings.FIREBASE_PROJECT_ID else None
            if settings.FIREBASE_CREDENTIALS_FILE:
                cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_FILE)
            else:
                cred = credentials.ApplicationDefault()
            firebase_admin.initialize_app(cred, options)
            logger.info(f"Firebase app initialized for project {settings.FIREBASE_PROJECT_ID or '<default>'}")
        return cls(firestore_async.client())

    async def get(self, path: str) -> DocumentSnapshot:
        with _translate_errors(f"get {path}"):
            snapshot = await self.client.document(path).get()
            return _to_snapshot(snapshot)

    async def query(self, spec: QuerySpec) -> List[DocumentSnapshot]:
        with _translate_errors(f"query {spec.collection}"):
            collection = self.client.collection(spec.collection)
            query = collection
            for query_filter in spec.filters:
                op = _OPERATORS.get(query_filter.operator.value, query_filter.operator.value)
                query = query.where(filter=FieldFilter(query_filter.field, op, query_filter.value))

            if spec.order_by is not None:
                direction = (
                    firestore.Query.DESCENDING
                    if spec.order_by.direction == SortDirection.DESC
                    else firestore.Query.ASCENDING
                )
                query = query.order_by(spec.order_by.field, direction=direction)

            if spec.start_after:
                cursor = await collection.document(spec.start_after).get()
                if not cursor.exists:
                    raise StoreError(
                        ErrorKind.NOT_FOUND,
                        f"Cursor document {spec.start_after} not found in {spec.collection}",
                    )
                query = query.start_after(cursor)

            if spec.limit is not None:
                query = query.limit(spec.limit)

            snapshots = await query.get()
            return [_to_snapshot(snapshot) for snapshot in snapshots]

    async def commit_batch(self, writes: Sequence[Write]) -> None:
        self.check_batch_size(writes)
        with _translate_errors("commit batch"):
            batch = self.client.batch()
            for write in writes:
                ref = self.client.document(write.path)
                if write.kind == WriteKind.SET:
                    batch.set(ref, to_firestore_value(write.data or {}), merge=write.merge)
                elif write.kind == WriteKind.UPDATE:
                    batch.update(ref, to_firestore_value(write.data or {}))
                else:
                    batch.delete(ref)
            await batch.commit()

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        client = self.client

        @firestore.async_transactional
        async def _run(sdk_transaction):
            # The SDK may call this more than once on contention
            transaction = _FirestoreTransaction(client, sdk_transaction)
            result = await fn(transaction)
            transaction.flush()
            return result

        with _translate_errors("transaction"):
            return await _run(client.transaction())

    async def ping(self) -> None:
        await self.get("health/check")

    async def close(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            close()

