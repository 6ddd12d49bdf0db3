"""In-process key-value store implementing the batch primitives.

Used by tests and local tooling. It enforces the same per-call ceilings as
the hosted store and can be told to leave part of a batch unprocessed on
chosen calls, so retry paths can be exercised deterministically.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
import copy
import logging

from fulltext_engine.config import MAX_BATCH_GET_KEYS, MAX_BATCH_WRITE_ITEMS, TableNames
from fulltext_engine.errors import StoreError
from fulltext_engine.search.schema import TableSchema
from fulltext_engine.store.protocol import (
    BatchGetResult,
    BatchWriteResult,
    Item,
    Key,
    KeyCondition,
    KeysAndAttributes,
    QueryResult,
    WriteRequest,
)


logger = logging.getLogger(__name__)

KeyTuple = tuple[str, ...]


def _project(item: Item, projection: Sequence[str] | None) -> Item:
    if projection is None:
        return copy.deepcopy(item)
    return {name: copy.deepcopy(item[name]) for name in projection if name in item}


class InMemoryKeyValueStore:
    """Dictionary-backed store keyed by each table's primary key.

    ``throttled_calls`` maps an operation name (``batch_get_item`` or
    ``batch_write_item``) to the 1-based call numbers on which only the first
    half of the request is applied; the rest comes back unprocessed.
    ``max_page_size`` caps query pages even without an explicit limit.
    """

    def __init__(
        self,
        schemas: Mapping[str, TableSchema] | None = None,
        *,
        throttled_calls: Mapping[str, Iterable[int]] | None = None,
        max_page_size: int | None = None,
    ) -> None:
        self.schemas: dict[str, TableSchema] = dict(schemas or TableNames().schemas())
        self.tables: dict[str, dict[KeyTuple, Item]] = {name: {} for name in self.schemas}
        self.throttled_calls = {operation: set(calls) for operation, calls in (throttled_calls or {}).items()}
        self.max_page_size = max_page_size
        self.call_counts: dict[str, int] = {
            "get_item": 0,
            "batch_get_item": 0,
            "batch_write_item": 0,
            "query": 0,
        }
        self.request_sizes: dict[str, list[int]] = {"batch_get_item": [], "batch_write_item": []}

    # Helpers

    def _schema(self, table_name: str) -> TableSchema:
        try:
            return self.schemas[table_name]
        except KeyError:
            raise StoreError(f"Unknown table '{table_name}'") from None

    def _key_tuple(self, schema: TableSchema, key: Mapping[str, object]) -> KeyTuple:
        key_tuple = schema.key_of(dict(key))
        if key_tuple is None:
            raise StoreError(f"Key for table '{schema.table_name}' is missing {schema.key_attributes}: {key!r}")
        return key_tuple

    def _throttled(self, operation: str) -> bool:
        self.call_counts[operation] += 1
        return self.call_counts[operation] in self.throttled_calls.get(operation, ())

    def items(self, table_name: str) -> list[Item]:
        """Snapshot of every item in a table, ordered by key."""
        self._schema(table_name)
        table = self.tables[table_name]
        return [copy.deepcopy(table[key]) for key in sorted(table)]

    # KeyValueStore

    async def get_item(self, table_name: str, key: Key) -> Item | None:
        schema = self._schema(table_name)
        self.call_counts["get_item"] += 1
        item = self.tables[table_name].get(self._key_tuple(schema, key))
        return copy.deepcopy(item) if item is not None else None

    async def batch_get_item(self, request_items: Mapping[str, KeysAndAttributes]) -> BatchGetResult:
        requested = [(table_name, key) for table_name, entry in request_items.items() for key in entry.keys]
        if len(requested) > MAX_BATCH_GET_KEYS:
            raise StoreError(f"batch_get_item accepts at most {MAX_BATCH_GET_KEYS} keys, got {len(requested)}")
        self.request_sizes["batch_get_item"].append(len(requested))

        seen: set[tuple[str, KeyTuple]] = set()
        for table_name, key in requested:
            marker = (table_name, self._key_tuple(self._schema(table_name), key))
            if marker in seen:
                raise StoreError(f"Duplicate key in batch_get_item for table '{table_name}': {key!r}")
            seen.add(marker)

        processed_count = len(requested) // 2 if self._throttled("batch_get_item") else len(requested)
        result = BatchGetResult()
        for index, (table_name, key) in enumerate(requested):
            entry = request_items[table_name]
            if index >= processed_count:
                pending = result.unprocessed_keys.setdefault(
                    table_name, KeysAndAttributes(keys=[], projection=entry.projection)
                )
                pending.keys.append(dict(key))
                continue
            item = self.tables[table_name].get(self._key_tuple(self.schemas[table_name], key))
            if item is not None:
                result.responses.setdefault(table_name, []).append(_project(item, entry.projection))
        return result

    async def batch_write_item(self, request_items: Mapping[str, Sequence[WriteRequest]]) -> BatchWriteResult:
        requested = [(table_name, request) for table_name, requests in request_items.items() for request in requests]
        if len(requested) > MAX_BATCH_WRITE_ITEMS:
            raise StoreError(
                f"batch_write_item accepts at most {MAX_BATCH_WRITE_ITEMS} requests, got {len(requested)}"
            )
        self.request_sizes["batch_write_item"].append(len(requested))

        processed_count = len(requested) // 2 if self._throttled("batch_write_item") else len(requested)
        result = BatchWriteResult()
        for index, (table_name, request) in enumerate(requested):
            schema = self._schema(table_name)
            if index >= processed_count:
                result.unprocessed_items.setdefault(table_name, []).append(request)
                continue
            table = self.tables[table_name]
            if request.put_item is not None:
                table[self._key_tuple(schema, request.put_item)] = copy.deepcopy(request.put_item)
            elif request.delete_key is not None:
                table.pop(self._key_tuple(schema, request.delete_key), None)
        if result.unprocessed_items:
            logger.debug("Throttled batch_write_item: %d of %d applied", processed_count, len(requested))
        return result

    async def query(
        self,
        table_name: str,
        condition: KeyCondition,
        *,
        exclusive_start_key: Key | None = None,
        limit: int | None = None,
    ) -> QueryResult:
        schema = self._schema(table_name)
        if condition.attribute != schema.partition_key:
            raise StoreError(f"Query on '{table_name}' must use partition key '{schema.partition_key}'")
        self.call_counts["query"] += 1

        matching = sorted(
            ((key, item) for key, item in self.tables[table_name].items() if key[0] == condition.value),
            key=lambda pair: pair[0],
        )
        if exclusive_start_key is not None:
            start = self._key_tuple(schema, exclusive_start_key)
            matching = [(key, item) for key, item in matching if key > start]

        page_size = limit
        if self.max_page_size is not None:
            page_size = self.max_page_size if page_size is None else min(page_size, self.max_page_size)

        page = matching if page_size is None else matching[:page_size]
        last_key: Key | None = None
        if len(page) < len(matching) and page:
            last_key = {attribute: page[-1][1][attribute] for attribute in schema.key_attributes}
        return QueryResult(items=[copy.deepcopy(item) for _, item in page], last_evaluated_key=last_key)
