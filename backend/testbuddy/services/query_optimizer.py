"""
Test Buddy - Query Optimizer
TTL-bounded cache in front of collection reads, with query statistics
"""
import asyncio
import json
import logging
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from testbuddy.core.config import Settings
from testbuddy.store.base import (
    DocumentStore,
    FilterOperator,
    OrderBy,
    QueryFilter,
    QuerySpec,
    SortDirection,
    join_path,
)

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 5 * 60
MAX_CACHE_SIZE = 100
SLOW_QUERY_THRESHOLD = 2.0
MAX_SLOW_QUERIES = 20
CLEANUP_INTERVAL = 10 * 60

# Per-category TTLs (seconds)
TEST_LIST_TTL = 2 * 60
FOLDER_TTL = 10 * 60
METRICS_TTL = 5 * 60


@dataclass
class QueryOptions:
    """
    Describes one cached read.

    With both ``subcollection`` and ``user_id`` the read targets
    ``{collection}/{user_id}/{subcollection}``; otherwise ``collection``
    itself, with ``user_id`` only scoping the cache key.
    """
    collection: str
    subcollection: Optional[str] = None
    user_id: Optional[str] = None
    filters: Sequence[QueryFilter] = ()
    order_by: Optional[OrderBy] = None
    limit: Optional[int] = None
    start_after: Optional[str] = None
    use_cache: bool = True
    cache_ttl: Optional[float] = None

    @property
    def collection_path(self) -> str:
        if self.subcollection and self.user_id:
            return join_path(self.collection, self.user_id, self.subcollection)
        return self.collection

    def to_query_spec(self) -> QuerySpec:
        return QuerySpec(
            collection=self.collection_path,
            filters=tuple(self.filters),
            order_by=self.order_by,
            limit=self.limit,
            start_after=self.start_after,
        )


@dataclass
class QueryResult:
    data: List[Dict[str, Any]]
    has_more: bool
    last_doc_id: Optional[str]
    from_cache: bool
    query_time: float
    total_docs: int


@dataclass
class SlowQuery:
    query: str
    time: float
    timestamp: float


@dataclass
class QueryStats:
    total_queries: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    coalesced_requests: int = 0
    average_query_time: float = 0.0
    slow_queries: List[SlowQuery] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class _CacheEntry:
    key: str
    result: QueryResult
    inserted_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now <= self.inserted_at + self.ttl


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def cache_key_prefix(collection: str, subcollection: Optional[str] = None, user_id: Optional[str] = None) -> str:
    """Leading part of every cache key for a collection and owner."""
    return "|".join([collection, subcollection or "", user_id or ""]) + "|"


def generate_query_key(options: QueryOptions) -> str:
    """Canonical cache key; filter order does not matter."""
    filters = sorted(
        ([f.field, f.operator.value, f.value] for f in options.filters),
        key=lambda item: (item[0], item[1], json.dumps(item[2], default=_json_default, sort_keys=True)),
    )
    order_by = (
        {"field": options.order_by.field, "direction": options.order_by.direction.value}
        if options.order_by else {}
    )
    return cache_key_prefix(options.collection, options.subcollection, options.user_id) + "|".join([
        json.dumps(filters, default=_json_default, sort_keys=True),
        json.dumps(order_by, sort_keys=True),
        str(options.limit) if options.limit is not None else "",
        options.start_after or "",
    ])


class QueryOptimizer:
    """
    Caches query results per canonical key.

    The cache is an insertion-ordered map bounded by ``max_size``; when full
    the oldest inserted entry is dropped. Expired entries are removed when
    looked up or by the periodic sweep.
    """

    def __init__(
        self,
        store: DocumentStore,
        max_size: int = MAX_CACHE_SIZE,
        default_ttl: float = DEFAULT_CACHE_TTL,
        slow_query_threshold: float = SLOW_QUERY_THRESHOLD,
        coalesce_requests: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.slow_query_threshold = slow_query_threshold
        self.coalesce_requests = coalesce_requests
        self._clock = clock
        self._cache: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._in_flight: Dict[str, asyncio.Future] = {}
        self._cleanup_task: Optional[asyncio.Task] = None
        self.stats = QueryStats()

    @classmethod
    def from_settings(cls, store: DocumentStore, settings: Settings) -> "QueryOptimizer":
        return cls(
            store,
            max_size=settings.QUERY_CACHE_MAX_SIZE,
            default_ttl=settings.QUERY_CACHE_DEFAULT_TTL,
            slow_query_threshold=settings.QUERY_SLOW_THRESHOLD,
            coalesce_requests=settings.QUERY_COALESCE_REQUESTS,
        )

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    async def execute_query(self, options: QueryOptions) -> QueryResult:
        """
        Return the result for ``options``, from cache when a live entry exists.

        Args:
            options: What to read and how to cache it

        Returns:
            QueryResult with ``from_cache`` telling where it came from
        """
        start = self._clock()
        key = generate_query_key(options)

        if options.use_cache:
            cached = self._get_cached(key)
            if cached is not None:
                self.stats.cache_hits += 1
                return replace(cached, from_cache=True, query_time=self._clock() - start)
            self.stats.cache_misses += 1

            if self.coalesce_requests:
                pending = self._in_flight.get(key)
                if pending is not None:
                    self.stats.coalesced_requests += 1
                    return await asyncio.shield(pending)

                future = asyncio.ensure_future(self._fetch(key, options, start))
                self._in_flight[key] = future
                future.add_done_callback(lambda _: self._in_flight.pop(key, None))
                return await asyncio.shield(future)

        return await self._fetch(key, options, start)

    async def _fetch(self, key: str, options: QueryOptions, start: float) -> QueryResult:
        try:
            snapshots = await self.store.query(options.to_query_spec())
        except Exception as e:
            logger.error(f"Query execution failed for {key}: {e}")
            raise

        data = [snapshot.to_dict() for snapshot in snapshots]
        result = QueryResult(
            data=data,
            has_more=bool(options.limit) and len(data) == options.limit,
            last_doc_id=snapshots[-1].id if snapshots else None,
            from_cache=False,
            query_time=self._clock() - start,
            total_docs=len(data),
        )

        if options.use_cache:
            self._put(key, result, options.cache_ttl or self.default_ttl)
        self._record(key, result.query_time)
        return result

    def _get_cached(self, key: str) -> Optional[QueryResult]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        if not entry.is_valid(self._clock()):
            del self._cache[key]
            return None
        return entry.result

    def _put(self, key: str, result: QueryResult, ttl: float) -> None:
        if key in self._cache:
            del self._cache[key]
        while len(self._cache) >= self.max_size:
            self._cache.popitem(last=False)
        self._cache[key] = _CacheEntry(key=key, result=result, inserted_at=self._clock(), ttl=ttl)

    def _record(self, key: str, query_time: float) -> None:
        stats = self.stats
        stats.total_queries += 1
        stats.average_query_time = (
            stats.average_query_time * (stats.total_queries - 1) + query_time
        ) / stats.total_queries

        if query_time > self.slow_query_threshold:
            stats.slow_queries.append(SlowQuery(query=key, time=query_time, timestamp=time.time()))
            del stats.slow_queries[:-MAX_SLOW_QUERIES]
            logger.warning(f"Slow query detected: {key} took {query_time:.3f}s")

    def invalidate_cache(self, pattern: str) -> int:
        """Drop every entry whose key contains ``pattern``."""
        keys = [key for key in self._cache if pattern in key]
        for key in keys:
            del self._cache[key]
        logger.debug(f"Invalidated {len(keys)} cache entries matching pattern: {pattern}")
        return len(keys)

    def clear_cache(self) -> None:
        self._cache.clear()

    def cleanup_cache(self) -> int:
        """Remove expired entries; returns how many were dropped."""
        now = self._clock()
        expired = [key for key, entry in self._cache.items() if not entry.is_valid(now)]
        for key in expired:
            del self._cache[key]
        if expired:
            logger.debug(f"Cache cleanup removed {len(expired)} expired entries")
        return len(expired)

    def start_cleanup_task(self, interval: float = CLEANUP_INTERVAL) -> None:
        """Sweep expired entries every ``interval`` seconds on the running loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return

        async def _sweep():
            while True:
                await asyncio.sleep(interval)
                self.cleanup_cache()

        self._cleanup_task = asyncio.create_task(_sweep())

    async def stop_cleanup_task(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def get_stats(self) -> QueryStats:
        return replace(self.stats, slow_queries=list(self.stats.slow_queries))

    def reset_stats(self) -> None:
        self.stats = QueryStats()

    # Query helpers

    async def get_user_test_history(
        self,
        user_id: str,
        folder_id: Optional[str] = None,
        limit: int = 20,
        start_after: Optional[str] = None,
        use_cache: bool = True,
    ) -> QueryResult:
        filters = [QueryFilter(field="folderId", operator=FilterOperator.EQ, value=folder_id)] if folder_id else []
        return await self.execute_query(QueryOptions(
            collection="users",
            subcollection="tests",
            user_id=user_id,
            filters=filters,
            order_by=OrderBy("createdAt", SortDirection.DESC),
            limit=limit,
            start_after=start_after,
            use_cache=use_cache,
            cache_ttl=TEST_LIST_TTL,
        ))

    async def get_user_folders(self, user_id: str, use_cache: bool = True) -> QueryResult:
        return await self.execute_query(QueryOptions(
            collection="folders",
            user_id=user_id,
            filters=[QueryFilter(field="userId", operator=FilterOperator.EQ, value=user_id)],
            order_by=OrderBy("name", SortDirection.ASC),
            use_cache=use_cache,
            cache_ttl=FOLDER_TTL,
        ))

    async def get_user_metrics(
        self,
        user_id: str,
        folder_id: Optional[str] = None,
        time_range: Optional[Tuple[datetime, datetime]] = None,
        limit: int = 500,
    ) -> QueryResult:
        """Results and tests read in parallel, merged and de-duplicated by id."""
        filters = []
        if folder_id:
            filters.append(QueryFilter(field="folderId", operator=FilterOperator.EQ, value=folder_id))
        if time_range:
            start, end = time_range
            filters.append(QueryFilter(field="createdAt", operator=FilterOperator.GTE, value=start))
            filters.append(QueryFilter(field="createdAt", operator=FilterOperator.LTE, value=end))

        def _options(subcollection: str) -> QueryOptions:
            return QueryOptions(
                collection="users",
                subcollection=subcollection,
                user_id=user_id,
                filters=filters,
                order_by=OrderBy("createdAt", SortDirection.DESC),
                limit=limit,
                cache_ttl=METRICS_TTL,
            )

        results, tests = await asyncio.gather(
            self.execute_query(_options("results")),
            self.execute_query(_options("tests")),
        )

        seen = set()
        merged = []
        for item in results.data + tests.data:
            if item["id"] in seen:
                continue
            seen.add(item["id"])
            merged.append(item)

        return QueryResult(
            data=merged,
            has_more=results.has_more or tests.has_more,
            last_doc_id=None,
            from_cache=results.from_cache and tests.from_cache,
            query_time=max(results.query_time, tests.query_time),
            total_docs=len(merged),
        )

    async def batch_query(self, queries: Sequence[QueryOptions]) -> List[QueryResult]:
        start = self._clock()
        results = await asyncio.gather(*(self.execute_query(options) for options in queries))
        logger.debug(f"Batch query of {len(queries)} completed in {self._clock() - start:.3f}s")
        return list(results)

    async def preload_user_data(self, user_id: str) -> None:
        """Warm the cache with the reads a dashboard makes first."""
        logger.info(f"Preloading data for user {user_id}")
        await asyncio.gather(
            self.get_user_folders(user_id),
            self.get_user_test_history(user_id, limit=50),
            self.get_user_metrics(user_id, limit=100),
        )
