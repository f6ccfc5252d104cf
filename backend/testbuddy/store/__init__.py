"""
Test Buddy - Document Stores
"""
import logging

from testbuddy.core.config import Settings
from testbuddy.core.database import create_engine
from testbuddy.store.base import (
    MAX_BATCH_SIZE,
    MAX_TRANSACTION_OPERATIONS,
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    DocumentStore,
    FilterOperator,
    Increment,
    OrderBy,
    QueryFilter,
    QuerySpec,
    SortDirection,
    Transaction,
    Write,
    WriteKind,
    join_path,
    split_path,
)
from testbuddy.store.sql import SqlDocumentStore

logger = logging.getLogger(__name__)


async def create_store(settings: Settings) -> DocumentStore:
    """Build the configured backing store, ready for use."""
    if settings.STORE_BACKEND == "firestore":
        # Imported lazily so the SQL backend never loads the Google SDKs
        from testbuddy.store.firestore import FirestoreStore

        store = FirestoreStore.from_settings(settings)
    else:
        store = SqlDocumentStore(create_engine(settings.DATABASE_URL, echo=settings.DEBUG))
        await store.initialize()
    logger.info(f"Document store ready: {store.name}")
    return store


__all__ = [
    "MAX_BATCH_SIZE",
    "MAX_TRANSACTION_OPERATIONS",
    "SERVER_TIMESTAMP",
    "DocumentSnapshot",
    "DocumentStore",
    "FilterOperator",
    "Increment",
    "OrderBy",
    "QueryFilter",
    "QuerySpec",
    "SortDirection",
    "SqlDocumentStore",
    "Transaction",
    "Write",
    "WriteKind",
    "create_store",
    "join_path",
    "split_path",
]
