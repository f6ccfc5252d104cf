"""
Test Buddy - Document Store Interface
Backend-agnostic access to a Firestore-shaped document database.

Documents are addressed by slash-separated paths
(``users/{uid}/tests/{testId}``); a collection path has an odd number of
segments, a document path an even number.
"""
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from testbuddy.core.errors import ErrorKind, StoreError

T = TypeVar("T")

# Hard limits imposed by Firestore
MAX_BATCH_SIZE = 500
MAX_TRANSACTION_OPERATIONS = 500


class _ServerTimestamp:
    """Placeholder replaced by the commit time of the write."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


class _Unset:
    """Marks a field that was never provided; stripped before writing."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


@dataclass(frozen=True)
class Increment:
    """Atomically add ``amount`` to a numeric field (missing counts as 0)."""
    amount: float


class FilterOperator(str, Enum):
    """Comparison operators supported in query filters."""
    EQ = "=="
    NE = "!="
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="
    ARRAY_CONTAINS = "array-contains"
    ARRAY_CONTAINS_ANY = "array-contains-any"
    IN = "in"
    NOT_IN = "not-in"


@dataclass(frozen=True)
class QueryFilter:
    """A ``field operator value`` predicate."""
    field: str
    operator: FilterOperator
    value: Any

    @classmethod
    def of(cls, field: str, operator: "FilterOperator | str", value: Any) -> "QueryFilter":
        return cls(field, FilterOperator(operator), value)


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class OrderBy:
    field: str
    direction: SortDirection = SortDirection.ASC


@dataclass
class QuerySpec:
    """
    A read against one collection.

    ``start_after`` is the id of the last document of the previous page.
    """
    collection: str
    filters: Sequence[QueryFilter] = ()
    order_by: Optional[OrderBy] = None
    limit: Optional[int] = None
    start_after: Optional[str] = None


@dataclass
class DocumentSnapshot:
    """The state of one document at read time."""
    id: str
    path: str
    data: Optional[Dict[str, Any]] = None

    @property
    def exists(self) -> bool:
        return self.data is not None

    def to_dict(self) -> Dict[str, Any]:
        """Document data with its id, the shape services hand out."""
        return {"id": self.id, **(self.data or {})}


class WriteKind(str, Enum):
    SET = "set"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class Write:
    """A single document mutation."""
    kind: WriteKind
    path: str
    data: Optional[Dict[str, Any]] = None
    merge: bool = False


def join_path(*segments: str) -> str:
    """Join path segments, rejecting empty ones."""
    parts = []
    for segment in segments:
        for part in str(segment).split("/"):
            if not part:
                raise StoreError(ErrorKind.VALIDATION, f"Invalid path segment in {segments!r}")
            parts.append(part)
    return "/".join(parts)


def split_path(path: str) -> Tuple[str, str]:
    """Split a document path into (collection path, document id)."""
    parts = path.split("/")
    if len(parts) < 2 or len(parts) % 2 != 0:
        raise StoreError(ErrorKind.VALIDATION, f"Not a document path: {path}")
    return "/".join(parts[:-1]), parts[-1]


class Transaction(ABC):
    """
    Read-then-write unit of work.

    Reads go to the store immediately; writes are buffered and applied
    atomically when the transaction commits. Reading after a write is
    rejected, matching Firestore.
    """

    def __init__(self):
        self.writes: List[Write] = []
        self.read_count = 0

    async def get(self, path: str) -> DocumentSnapshot:
        if self.writes:
            raise StoreError(
                ErrorKind.FAILED_PRECONDITION,
                "Transactions require all reads to be executed before all writes",
            )
        self._check_capacity()
        self.read_count += 1
        return await self._read(path)

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        self._check_capacity()
        self.writes.append(Write(WriteKind.SET, path, data, merge))

    def update(self, path: str, data: Dict[str, Any]) -> None:
        self._check_capacity()
        self.writes.append(Write(WriteKind.UPDATE, path, data))

    def delete(self, path: str) -> None:
        self._check_capacity()
        self.writes.append(Write(WriteKind.DELETE, path))

    def _check_capacity(self) -> None:
        if self.read_count + len(self.writes) >= MAX_TRANSACTION_OPERATIONS:
            raise StoreError(
                ErrorKind.VALIDATION,
                f"Transaction cannot exceed {MAX_TRANSACTION_OPERATIONS} operations",
            )

    @abstractmethod
    async def _read(self, path: str) -> DocumentSnapshot:
        ...


class DocumentStore(ABC):
    """
    Contract every backing store implements.

    Implementations raise ``StoreError`` only; SDK exceptions never leak
    past this boundary.
    """

    name: str = "store"

    @abstractmethod
    async def get(self, path: str) -> DocumentSnapshot:
        """Read one document. Missing documents yield ``exists == False``."""

    @abstractmethod
    async def query(self, spec: QuerySpec) -> List[DocumentSnapshot]:
        """Run a filtered, ordered, paginated read against one collection."""

    @abstractmethod
    async def commit_batch(self, writes: Sequence[Write]) -> None:
        """Apply up to ``MAX_BATCH_SIZE`` writes atomically."""

    @abstractmethod
    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        """
        Run ``fn`` inside a transaction and commit its buffered writes.

        If ``fn`` raises, nothing is written.
        """

    def new_id(self) -> str:
        """Generate a document id (20 chars, like Firestore auto-ids)."""
        return uuid.uuid4().hex[:20]

    async def ping(self) -> None:
        """Cheap round trip used by health checks."""
        await self.get("health/check")

    async def close(self) -> None:
        pass

    @staticmethod
    def check_batch_size(writes: Sequence[Write]) -> None:
        if len(writes) > MAX_BATCH_SIZE:
            raise StoreError(
                ErrorKind.VALIDATION,
                f"Batch cannot exceed {MAX_BATCH_SIZE} operations (got {len(writes)})",
            )
