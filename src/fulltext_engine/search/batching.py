"""Chunked batch writes and batch gets with unprocessed-request retry.

Batch primitives of the store accept a bounded number of requests and may
apply only part of them, handing the rest back as unprocessed. Both helpers
here pre-chunk their input to the store ceiling and keep re-issuing exactly
the unprocessed remainder of a chunk until it is fully applied.

By default the retry loop is unbounded and immediate: under sustained
throttling a call never returns. ``RetryPolicy`` can cap the number of
re-issues (raising ``RetryBudgetExhaustedError``) and insert a capped
exponential backoff between them. Every store call is an await point, so
cancelling the surrounding task stops the loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, TypeVar

from fulltext_engine.config import MAX_BATCH_GET_KEYS, MAX_BATCH_WRITE_ITEMS
from fulltext_engine.errors import RetryBudgetExhaustedError
from fulltext_engine.observability.metrics import INDEX_WRITES, STORE_CALLS, STORE_UNPROCESSED_RETRIES
from fulltext_engine.search.models import TableWrite
from fulltext_engine.store.protocol import Item, Key, KeysAndAttributes, KeyValueStore, WriteRequest


if TYPE_CHECKING:
    from fulltext_engine.config import IndexSettings
    from fulltext_engine.search.schema import TableSchema


logger = logging.getLogger(__name__)

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start : start + size]


def group_by_table(writes: Sequence[TableWrite]) -> dict[str, list[WriteRequest]]:
    """Build batch-write request items, keeping per-table request order."""
    request_items: dict[str, list[WriteRequest]] = {}
    for write in writes:
        request_items.setdefault(write.table_name, []).append(write.request)
    return request_items


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently unprocessed requests are re-issued.

    ``max_attempts=None`` retries forever; ``backoff_ms=0`` retries immediately.
    """

    max_attempts: int | None = None
    backoff_ms: int = 0
    backoff_max_ms: int = 5000

    @classmethod
    def from_settings(cls, settings: IndexSettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_retry_attempts,
            backoff_ms=settings.retry_backoff_ms,
            backoff_max_ms=settings.retry_backoff_max_ms,
        )

    def delay_seconds(self, attempt: int) -> float:
        if self.backoff_ms <= 0:
            return 0.0
        delay_ms = min(self.backoff_ms * (2 ** (attempt - 1)), self.backoff_max_ms)
        return delay_ms / 1000

    async def before_retry(self, operation: str, attempt: int, unprocessed: int) -> None:
        """Enforce the budget for retry number ``attempt`` and wait out the backoff."""
        if self.max_attempts is not None and attempt > self.max_attempts:
            raise RetryBudgetExhaustedError(operation, attempt, unprocessed)
        STORE_UNPROCESSED_RETRIES.labels(operation=operation).inc()
        logger.debug("Re-issuing %d unprocessed requests (%s attempt %d)", unprocessed, operation, attempt)
        delay = self.delay_seconds(attempt)
        if delay:
            await asyncio.sleep(delay)


def _count_requests(request_items: dict[str, list[WriteRequest]]) -> int:
    return sum(len(requests) for requests in request_items.values())


async def batch_write_with_retry(
    store: KeyValueStore,
    request_items: dict[str, list[WriteRequest]],
    retry_policy: RetryPolicy | None = None,
) -> int:
    """Issue one batch write and re-issue unprocessed items until none remain.

    Returns the number of batch-write calls made.
    """
    policy = retry_policy or RetryPolicy()
    pending = {table: requests for table, requests in request_items.items() if requests}
    calls = 0
    while pending:
        if calls:
            await policy.before_retry("batch_write_item", calls, _count_requests(pending))
        STORE_CALLS.labels(operation="batch_write_item").inc()
        result = await store.batch_write_item(pending)
        calls += 1
        pending = {table: list(requests) for table, requests in result.unprocessed_items.items() if requests}
    return calls


class BatchedWriter:
    """Applies a flat write plan in store-sized chunks.

    Chunks are applied in order; there is no atomicity across chunks, so a
    failure part way leaves earlier chunks applied and later ones not.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        batch_size: int = MAX_BATCH_WRITE_ITEMS,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        if not 1 <= batch_size <= MAX_BATCH_WRITE_ITEMS:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_WRITE_ITEMS}")
        self.store = store
        self.batch_size = batch_size
        self.retry_policy = retry_policy or RetryPolicy()

    async def write_all(self, writes: Sequence[TableWrite]) -> int:
        """Write every request; returns the number of batch-write calls issued."""
        calls = 0
        for index, chunk in enumerate(chunked(writes, self.batch_size)):
            try:
                calls += await batch_write_with_retry(self.store, group_by_table(chunk), self.retry_policy)
            except Exception:
                logger.warning(
                    "Batch write failed at chunk %d; %d of %d writes were already applied",
                    index,
                    index * self.batch_size,
                    len(writes),
                )
                raise
            for write in chunk:
                INDEX_WRITES.labels(table=write.table_name, kind=write.kind).inc()
        return calls


class BatchReader:
    """Batch-get helper returning results aligned with the requested keys."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        batch_size: int = MAX_BATCH_GET_KEYS,
        retry_policy: RetryPolicy | None = None,
        on_call: Callable[[int], None] | None = None,
    ) -> None:
        if not 1 <= batch_size <= MAX_BATCH_GET_KEYS:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_GET_KEYS}")
        self.store = store
        self.batch_size = batch_size
        self.retry_policy = retry_policy or RetryPolicy()
        self.on_call = on_call

    async def batch_get(
        self,
        table_name: str,
        schema: TableSchema,
        keys: Sequence[Key],
        *,
        attributes: Sequence[str] | None = None,
    ) -> list[Item | None]:
        """Fetch ``keys`` from one table; missing items map to ``None``.

        ``attributes`` limits the returned attributes; key attributes are
        always projected so responses can be matched back to requests.
        """
        projection = None
        if attributes is not None:
            projection = tuple(dict.fromkeys([*schema.key_attributes, *attributes]))

        results: list[Item | None] = []
        for chunk in chunked(keys, self.batch_size):
            # The store rejects duplicate keys within one request.
            unique: dict[tuple[str, ...], Key] = {}
            for key in chunk:
                key_tuple = schema.key_of(key)
                if key_tuple is None:
                    raise ValueError(f"Malformed key for table '{table_name}': {key!r}")
                unique.setdefault(key_tuple, key)

            found = await self._fetch_chunk(table_name, schema, list(unique.values()), projection)
            results.extend(found.get(schema.key_of(key)) for key in chunk)
        return results

    async def _fetch_chunk(
        self,
        table_name: str,
        schema: TableSchema,
        keys: list[Key],
        projection: tuple[str, ...] | None,
    ) -> dict[tuple[str, ...], Item]:
        found: dict[tuple[str, ...], Item] = {}
        pending: dict[str, KeysAndAttributes] = {table_name: KeysAndAttributes(keys=keys, projection=projection)}
        calls = 0
        while pending:
            if calls:
                remaining = sum(len(entry.keys) for entry in pending.values())
                await self.retry_policy.before_retry("batch_get_item", calls, remaining)
            if self.on_call is not None:
                self.on_call(sum(len(entry.keys) for entry in pending.values()))
            STORE_CALLS.labels(operation="batch_get_item").inc()
            result = await self.store.batch_get_item(pending)
            calls += 1

            for item in result.responses.get(table_name, []):
                key_tuple = schema.key_of(item)
                if key_tuple is not None:
                    found[key_tuple] = item

            pending = {table: entry for table, entry in result.unprocessed_keys.items() if entry.keys}
        return found
