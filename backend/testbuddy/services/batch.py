"""
Test Buddy - Batch Operations
Chunked batch writes and transactional multi-document operations
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from testbuddy.core.errors import ErrorKind, StoreError, ValidationError
from testbuddy.services.retry import RetryExecutor, RetryPolicy
from testbuddy.store.base import (
    MAX_BATCH_SIZE,
    MAX_TRANSACTION_OPERATIONS,
    DocumentStore,
    FilterOperator,
    Increment,
    QueryFilter,
    QuerySpec,
    Transaction,
    Write,
    WriteKind,
    join_path,
)

logger = logging.getLogger(__name__)


class BatchOperationType(str, Enum):
    SET = "set"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class BatchOperation:
    type: BatchOperationType
    collection: str
    doc_id: str
    data: Optional[Dict[str, Any]] = None
    merge: bool = False

    @property
    def path(self) -> str:
        return join_path(self.collection, self.doc_id)

    def to_write(self) -> Write:
        return Write(WriteKind(self.type.value), self.path, self.data, self.merge)


@dataclass
class BatchError:
    """One failed operation, with its position in the submitted list."""
    index: int
    operation: BatchOperation
    error: StoreError


@dataclass
class BatchResult:
    success: bool
    processed_count: int
    error_count: int
    errors: List[BatchError] = field(default_factory=list)
    execution_time: float = 0.0


class TransactionOperationType(str, Enum):
    READ = "read"
    WRITE = "write"


@dataclass
class TransactionOperation:
    type: TransactionOperationType
    collection: str
    doc_id: str
    data: Optional[Dict[str, Any]] = None
    operation: Optional[BatchOperationType] = None

    @property
    def path(self) -> str:
        return join_path(self.collection, self.doc_id)


@dataclass
class TransactionRead:
    id: str
    exists: bool
    data: Optional[Dict[str, Any]]


@dataclass
class Counter:
    collection: str
    doc_id: str
    field: str
    amount: float = 1


def chunk_operations(operations: Sequence[Any], size: int = MAX_BATCH_SIZE) -> List[Sequence[Any]]:
    return [operations[i:i + size] for i in range(0, len(operations), size)]


def validate_operations(operations: Sequence[BatchOperation]) -> None:
    """Reject malformed operations before any write is attempted."""
    for index, operation in enumerate(operations):
        try:
            op_type = BatchOperationType(operation.type)
        except ValueError:
            raise ValidationError(
                f"Invalid operation type at index {index}: {operation.type}", field="type"
            ) from None
        if not operation.collection or not operation.doc_id:
            raise ValidationError(f"Missing collection or doc_id at index {index}")
        if op_type in (BatchOperationType.SET, BatchOperationType.UPDATE) and not operation.data:
            raise ValidationError(
                f"Missing data for {op_type.value} operation at index {index}", field="data"
            )


class BatchOperations:
    """
    Multi-document writes on top of a document store.

    ``execute_batch`` commits in chunks of at most 500 writes; a failed chunk
    is reported per operation and the remaining chunks still run.
    Transactional helpers are all-or-nothing and raise on failure.
    """

    def __init__(self, store: DocumentStore, retry: RetryExecutor):
        self.store = store
        self.retry = retry

    async def execute_batch(
        self,
        operations: Sequence[BatchOperation],
        policy: Optional[RetryPolicy] = None,
    ) -> BatchResult:
        """
        Commit operations in atomic chunks.

        Args:
            operations: Writes to apply, in order
            policy: Retry policy applied to each chunk commit

        Returns:
            BatchResult; ``success`` is False if any chunk failed

        Raises:
            ValidationError: if any operation is malformed (nothing is written)
        """
        start = time.monotonic()
        validate_operations(operations)
        if not operations:
            return BatchResult(success=True, processed_count=0, error_count=0)

        chunks = chunk_operations(operations)
        errors: List[BatchError] = []
        processed = 0
        logger.info(f"Executing {len(operations)} operations in {len(chunks)} batch(es)")

        for chunk_index, chunk in enumerate(chunks):
            offset = chunk_index * MAX_BATCH_SIZE
            writes = [op.to_write() for op in chunk]
            try:
                await self.retry.execute(
                    lambda writes=writes: self.store.commit_batch(writes),
                    policy,
                    f"Commit batch {chunk_index + 1}/{len(chunks)}",
                )
                processed += len(chunk)
                logger.debug(f"Batch {chunk_index + 1}/{len(chunks)} committed ({len(chunk)} operations)")
            except StoreError as error:
                logger.error(f"Batch {chunk_index + 1}/{len(chunks)} failed: {error.message}")
                errors.extend(
                    BatchError(index=offset + i, operation=op, error=error)
                    for i, op in enumerate(chunk)
                )

        logger.info(f"Batch execution completed: {processed} processed, {len(errors)} errors")
        return BatchResult(
            success=not errors,
            processed_count=processed,
            error_count=len(errors),
            errors=errors,
            execution_time=time.monotonic() - start,
        )

    async def execute_transaction(
        self,
        operations: Sequence[TransactionOperation],
        policy: Optional[RetryPolicy] = None,
    ) -> List[TransactionRead]:
        """
        Run reads then writes in one transaction.

        Returns:
            The read results, in submission order

        Raises:
            ValidationError: more than 500 operations or a write without a kind
            StoreError: the transaction failed and nothing was committed
        """
        if len(operations) > MAX_TRANSACTION_OPERATIONS:
            raise ValidationError(f"Transaction cannot exceed {MAX_TRANSACTION_OPERATIONS} operations")

        reads = [op for op in operations if op.type == TransactionOperationType.READ]
        writes = [op for op in operations if op.type == TransactionOperationType.WRITE]
        for op in writes:
            if op.operation is None:
                raise ValidationError(f"Missing write operation for {op.path}", field="operation")

        async def _body(transaction: Transaction) -> List[TransactionRead]:
            results = []
            for op in reads:
                snapshot = await transaction.get(op.path)
                results.append(TransactionRead(id=op.doc_id, exists=snapshot.exists, data=snapshot.data))

            for op in writes:
                if op.operation == BatchOperationType.SET:
                    transaction.set(op.path, op.data or {})
                elif op.operation == BatchOperationType.UPDATE:
                    transaction.update(op.path, op.data or {})
                else:
                    transaction.delete(op.path)
            return results

        return await self.retry.execute(
            lambda: self.store.run_transaction(_body), policy, "Execute transaction"
        )

    async def move_documents(
        self,
        source_collection: str,
        target_collection: str,
        document_ids: Sequence[str],
        transform: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> BatchResult:
        """
        Move documents between collections atomically, keeping their ids.

        Raises:
            StoreError: ``not-found`` if any source document is missing; the
                move is all-or-nothing
        """
        start = time.monotonic()
        if 3 * len(document_ids) > MAX_TRANSACTION_OPERATIONS:
            raise ValidationError(f"Transaction cannot exceed {MAX_TRANSACTION_OPERATIONS} operations")

        async def _body(transaction: Transaction) -> None:
            sources = []
            for doc_id in document_ids:
                snapshot = await transaction.get(join_path(source_collection, doc_id))
                if not snapshot.exists:
                    raise StoreError(
                        ErrorKind.NOT_FOUND,
                        f"Source document {source_collection}/{doc_id} does not exist",
                    )
                sources.append(snapshot)

            for snapshot in sources:
                data = transform(dict(snapshot.data)) if transform else snapshot.data
                transaction.set(join_path(target_collection, snapshot.id), data)
                transaction.delete(snapshot.path)

        await self.retry.execute(lambda: self.store.run_transaction(_body), policy, "Move documents")
        logger.info(f"Moved {len(document_ids)} documents from {source_collection} to {target_collection}")
        return BatchResult(
            success=True,
            processed_count=len(document_ids),
            error_count=0,
            execution_time=time.monotonic() - start,
        )

    async def bulk_create(
        self,
        collection: str,
        documents: Sequence[Mapping[str, Any]],
        policy: Optional[RetryPolicy] = None,
    ) -> BatchResult:
        """Create documents; an ``id`` key picks the id, otherwise one is generated."""
        operations = []
        for document in documents:
            data = dict(document)
            doc_id = data.pop("id", None) or self.store.new_id()
            operations.append(BatchOperation(BatchOperationType.SET, collection, doc_id, data))
        return await self.execute_batch(operations, policy)

    async def bulk_update(
        self,
        collection: str,
        updates: Mapping[str, Dict[str, Any]],
        policy: Optional[RetryPolicy] = None,
    ) -> BatchResult:
        operations = [
            BatchOperation(BatchOperationType.UPDATE, collection, doc_id, data)
            for doc_id, data in updates.items()
        ]
        return await self.execute_batch(operations, policy)

    async def bulk_delete(
        self,
        collection: str,
        document_ids: Sequence[str],
        policy: Optional[RetryPolicy] = None,
    ) -> BatchResult:
        operations = [
            BatchOperation(BatchOperationType.DELETE, collection, doc_id)
            for doc_id in document_ids
        ]
        return await self.execute_batch(operations, policy)

    async def batch_upsert(
        self,
        collection: str,
        documents: Mapping[str, Dict[str, Any]],
        policy: Optional[RetryPolicy] = None,
    ) -> BatchResult:
        operations = [
            BatchOperation(BatchOperationType.SET, collection, doc_id, data, merge=True)
            for doc_id, data in documents.items()
        ]
        return await self.execute_batch(operations, policy)

    async def increment_counters(
        self,
        counters: Sequence[Counter],
        policy: Optional[RetryPolicy] = None,
    ) -> BatchResult:
        """Apply atomic increments; target documents must exist."""
        operations = [
            BatchOperation(
                BatchOperationType.UPDATE,
                counter.collection,
                counter.doc_id,
                {counter.field: Increment(counter.amount)},
            )
            for counter in counters
        ]
        return await self.execute_batch(operations, policy)

    async def cleanup_old_documents(
        self,
        collection: str,
        timestamp_field: str,
        older_than_days: int,
        max_delete_count: int = 1000,
        policy: Optional[RetryPolicy] = None,
    ) -> BatchResult:
        """Delete up to ``max_delete_count`` documents older than the cutoff."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
        spec = QuerySpec(
            collection=collection,
            filters=(QueryFilter(timestamp_field, FilterOperator.LT, cutoff),),
            limit=max_delete_count,
        )
        snapshots = await self.retry.execute(
            lambda: self.store.query(spec), policy, f"Find documents older than {older_than_days} days"
        )
        logger.info(f"Cleanup of {collection}: {len(snapshots)} documents older than {older_than_days} days")
        return await self.bulk_delete(collection, [snapshot.id for snapshot in snapshots], policy)
