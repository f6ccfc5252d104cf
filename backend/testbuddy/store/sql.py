"""
Test Buddy - SQL Document Store
Firestore-compatible document store on top of async SQLAlchemy.

Used for local development and tests. Documents are stored as JSON rows
keyed by path; filtering and ordering happen in Python with Firestore's
semantics (documents missing a filtered or ordered field are excluded).
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from testbuddy.core.database import create_session_maker, init_db
from testbuddy.core.errors import ErrorKind, StoreError
from testbuddy.models.document import StoredDocument
from testbuddy.store.base import (
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    DocumentStore,
    FilterOperator,
    Increment,
    QueryFilter,
    QuerySpec,
    SortDirection,
    Transaction,
    Write,
    WriteKind,
    split_path,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()
_DATETIME_TAG = "__datetime__"


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Map SQLAlchemy failures onto the error taxonomy."""
    try:
        yield
    except StoreError:
        raise
    except IntegrityError as e:
        raise StoreError(ErrorKind.ALREADY_EXISTS, f"{operation}: {e.orig}", cause=e) from e
    except OperationalError as e:
        raise StoreError(ErrorKind.UNAVAILABLE, f"{operation}: {e.orig}", cause=e) from e
    except DBAPIError as e:
        raise StoreError(ErrorKind.INTERNAL, f"{operation}: {e.orig}", cause=e) from e
    except SQLAlchemyError as e:
        raise StoreError(ErrorKind.UNKNOWN, f"{operation}: {e}", cause=e) from e


def encode_value(value: Any) -> Any:
    """Make a document value JSON-safe (datetimes are tagged)."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return {_DATETIME_TAG: value.isoformat()}
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def decode_value(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {_DATETIME_TAG}:
            return datetime.fromisoformat(value[_DATETIME_TAG])
        return {k: decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


def resolve_sentinels(data: Dict[str, Any], existing: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Replace server timestamps and increments with concrete values."""
    resolved = {}
    for key, value in data.items():
        if value is SERVER_TIMESTAMP:
            resolved[key] = now
        elif isinstance(value, Increment):
            current = existing.get(key)
            base = current if isinstance(current, (int, float)) and not isinstance(current, bool) else 0
            resolved[key] = base + value.amount
        elif isinstance(value, dict):
            nested = existing.get(key)
            resolved[key] = resolve_sentinels(value, nested if isinstance(nested, dict) else {}, now)
        else:
            resolved[key] = value
    return resolved


def get_field(data: Dict[str, Any], field_path: str) -> Any:
    """Read a possibly dotted field path, returning ``_MISSING`` if absent."""
    current: Any = data
    for part in field_path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _set_field(data: Dict[str, Any], field_path: str, value: Any) -> None:
    parts = field_path.split(".")
    current = data
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[parts[-1]] = value


def matches_filter(data: Dict[str, Any], query_filter: QueryFilter) -> bool:
    value = get_field(data, query_filter.field)
    if value is _MISSING:
        return False

    op = query_filter.operator
    target = query_filter.value
    try:
        if op == FilterOperator.EQ:
            return value == target
        if op == FilterOperator.NE:
            return value != target
        if op == FilterOperator.LT:
            return value is not None and value < target
        if op == FilterOperator.LTE:
            return value is not None and value <= target
        if op == FilterOperator.GT:
            return value is not None and value > target
        if op == FilterOperator.GTE:
            return value is not None and value >= target
        if op == FilterOperator.ARRAY_CONTAINS:
            return isinstance(value, list) and target in value
        if op == FilterOperator.ARRAY_CONTAINS_ANY:
            return isinstance(value, list) and any(item in value for item in target)
        if op == FilterOperator.IN:
            return value in target
        if op == FilterOperator.NOT_IN:
            return value not in target
    except TypeError:
        # Firestore never matches across incomparable types
        return False
    raise StoreError(ErrorKind.VALIDATION, f"Unsupported operator: {op}")


def _sort_key(value: Any) -> tuple:
    # None sorts first, as in Firestore's type ordering
    if value is None:
        return (0,)
    if isinstance(value, bool):
        return (1, value)
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, datetime):
        return (3, value)
    if isinstance(value, str):
        return (4, value)
    return (5, str(value))


class _SqlTransaction(Transaction):

    def __init__(self, store: "SqlDocumentStore", session: AsyncSession):
        super().__init__()
        self._store = store
        self._session = session

    async def _read(self, path: str) -> DocumentSnapshot:
        return await self._store._read(self._session, path)


class SqlDocumentStore(DocumentStore):
    """Document store persisted in a single ``documents`` table."""

    name = "sql"

    def __init__(self, engine: AsyncEngine, session_maker: Optional[async_sessionmaker] = None):
        self.engine = engine
        self.session_maker = session_maker or create_session_maker(engine)

    async def initialize(self) -> None:
        """Create the documents table if needed."""
        with _translate_errors("initialize"):
            await init_db(self.engine)

    async def close(self) -> None:
        await self.engine.dispose()

    async def _read(self, session: AsyncSession, path: str) -> DocumentSnapshot:
        _, doc_id = split_path(path)
        row = await session.get(StoredDocument, path)
        data = decode_value(row.data) if row is not None else None
        return DocumentSnapshot(id=doc_id, path=path, data=data)

    async def get(self, path: str) -> DocumentSnapshot:
        with _translate_errors(f"get {path}"):
            async with self.session_maker() as session:
                return await self._read(session, path)

    async def ping(self) -> None:
        with _translate_errors("ping"):
            async with self.session_maker() as session:
                await session.execute(select(func.count()).select_from(StoredDocument))

    async def query(self, spec: QuerySpec) -> List[DocumentSnapshot]:
        with _translate_errors(f"query {spec.collection}"):
            async with self.session_maker() as session:
                result = await session.execute(
                    select(StoredDocument).where(StoredDocument.collection_path == spec.collection)
                )
                rows = result.scalars().all()

                cursor_key = None
                if spec.start_after:
                    cursor = await session.get(StoredDocument, f"{spec.collection}/{spec.start_after}")
                    if cursor is None:
                        raise StoreError(
                            ErrorKind.NOT_FOUND,
                            f"Cursor document {spec.start_after} not found in {spec.collection}",
                        )
                    cursor_key = self._order_key(cursor.doc_id, decode_value(cursor.data), spec)

        snapshots = [
            DocumentSnapshot(id=row.doc_id, path=row.path, data=decode_value(row.data))
            for row in rows
        ]
        snapshots = [
            snap for snap in snapshots
            if all(matches_filter(snap.data, f) for f in spec.filters)
        ]

        descending = spec.order_by is not None and spec.order_by.direction == SortDirection.DESC
        if spec.order_by is not None:
            snapshots = [
                snap for snap in snapshots
                if get_field(snap.data, spec.order_by.field) is not _MISSING
            ]
        snapshots.sort(key=lambda snap: self._order_key(snap.id, snap.data, spec), reverse=descending)

        if cursor_key is not None:
            if descending:
                snapshots = [s for s in snapshots if self._order_key(s.id, s.data, spec) < cursor_key]
            else:
                snapshots = [s for s in snapshots if self._order_key(s.id, s.data, spec) > cursor_key]

        if spec.limit is not None:
            snapshots = snapshots[:spec.limit]
        return snapshots

    @staticmethod
    def _order_key(doc_id: str, data: Dict[str, Any], spec: QuerySpec) -> tuple:
        if spec.order_by is None:
            return ((), doc_id)
        value = get_field(data, spec.order_by.field)
        return (_sort_key(None if value is _MISSING else value), doc_id)

    async def commit_batch(self, writes: Sequence[Write]) -> None:
        self.check_batch_size(writes)
        with _translate_errors("commit batch"):
            async with self.session_maker() as session:
                async with session.begin():
                    await self._apply_writes(session, writes)

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        with _translate_errors("transaction"):
            async with self.session_maker() as session:
                async with session.begin():
                    transaction = _SqlTransaction(self, session)
                    result = await fn(transaction)
                    await self._apply_writes(session, transaction.writes)
            return result

    async def _apply_writes(self, session: AsyncSession, writes: Sequence[Write]) -> None:
        now = datetime.now(timezone.utc)
        for write in writes:
            collection_path, doc_id = split_path(write.path)
            row = await session.get(StoredDocument, write.path)
            existing = decode_value(row.data) if row is not None else {}

            if write.kind == WriteKind.DELETE:
                if row is not None:
                    await session.delete(row)
                    await session.flush()
                continue

            if write.kind == WriteKind.UPDATE:
                if row is None:
                    raise StoreError(ErrorKind.NOT_FOUND, f"No document to update: {write.path}")
                data = dict(existing)
                for field_path, value in (write.data or {}).items():
                    current = get_field(existing, field_path)
                    context = {field_path: None if current is _MISSING else current}
                    resolved = resolve_sentinels({field_path: value}, context, now)[field_path]
                    _set_field(data, field_path, resolved)
            elif write.merge and row is not None:
                data = dict(existing)
                data.update(resolve_sentinels(write.data or {}, existing, now))
            else:
                data = resolve_sentinels(write.data or {}, {}, now)

            if row is None:
                session.add(StoredDocument(
                    path=write.path,
                    collection_path=collection_path,
                    doc_id=doc_id,
                    data=encode_value(data),
                ))
            else:
                row.data = encode_value(data)
            await session.flush()
