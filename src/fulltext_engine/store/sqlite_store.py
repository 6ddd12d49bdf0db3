"""SQLite-backed key-value store for single-node deployments and local tooling.

All logical tables live in one ``items`` table clustered on
``(table_name, pk, sk)``; item bodies are stored as orjson-encoded JSON.
Blocking SQLite work runs in a worker thread via ``asyncio.to_thread`` and
one connection is shared under a lock.

SQLite applies a batch in a single transaction, so batch calls never come
back with unprocessed items.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from decimal import Decimal
import logging
from pathlib import Path
import sqlite3
import threading
from typing import Any

import orjson

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

_CREATE_ITEMS = """
CREATE TABLE IF NOT EXISTS items (
    table_name TEXT NOT NULL,
    pk TEXT NOT NULL,
    sk TEXT NOT NULL,
    body BLOB NOT NULL,
    PRIMARY KEY (table_name, pk, sk)
) WITHOUT ROWID
"""

# Tables without a sort key store an empty sort value.
_NO_SORT_KEY = ""


def apply_store_pragmas(
    conn: sqlite3.Connection,
    *,
    cache_size_kb: int = -65536,
    mmap_size_bytes: int = 134217728,
    temp_store: str = "MEMORY",
    busy_timeout_ms: int | None = 30000,
) -> None:
    """Apply WAL and cache PRAGMAs for a mixed read/write connection."""
    if busy_timeout_ms is not None:
        conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute(f"PRAGMA cache_size = {cache_size_kb}")
    conn.execute(f"PRAGMA mmap_size = {mmap_size_bytes}")
    conn.execute(f"PRAGMA temp_store = {temp_store}")


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    raise TypeError(f"Type is not JSON serializable: {type(value).__name__}")


def _encode(item: Item) -> bytes:
    return orjson.dumps(item, default=_json_default)


def _decode(body: bytes | str) -> Item:
    return orjson.loads(body)


class SqliteKeyValueStore:
    """Key-value store persisted in a single SQLite database file."""

    def __init__(
        self,
        db_path: Path | str,
        schemas: Mapping[str, TableSchema] | None = None,
    ) -> None:
        self.db_path = db_path
        self.schemas: dict[str, TableSchema] = dict(schemas or TableNames().schemas())
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        apply_store_pragmas(self._conn)
        self._conn.execute(_CREATE_ITEMS)
        self._conn.commit()
        logger.debug("Opened SQLite store at %s", db_path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _schema(self, table_name: str) -> TableSchema:
        try:
            return self.schemas[table_name]
        except KeyError:
            raise StoreError(f"Unknown table '{table_name}'") from None

    def _row_key(self, table_name: str, key: Mapping[str, Any]) -> tuple[str, str, str]:
        schema = self._schema(table_name)
        key_tuple = schema.key_of(dict(key))
        if key_tuple is None:
            raise StoreError(f"Key for table '{table_name}' is missing {schema.key_attributes}: {key!r}")
        sort_value = key_tuple[1] if len(key_tuple) > 1 else _NO_SORT_KEY
        return table_name, key_tuple[0], sort_value

    def _select(self, row_key: tuple[str, str, str]) -> Item | None:
        row = self._conn.execute(
            "SELECT body FROM items WHERE table_name = ? AND pk = ? AND sk = ?",
            row_key,
        ).fetchone()
        return _decode(row[0]) if row else None

    # Blocking implementations

    def _get_item_sync(self, table_name: str, key: Key) -> Item | None:
        row_key = self._row_key(table_name, key)
        with self._lock:
            return self._select(row_key)

    def _batch_get_sync(self, request_items: Mapping[str, KeysAndAttributes]) -> BatchGetResult:
        total = sum(len(entry.keys) for entry in request_items.values())
        if total > MAX_BATCH_GET_KEYS:
            raise StoreError(f"batch_get_item accepts at most {MAX_BATCH_GET_KEYS} keys, got {total}")

        result = BatchGetResult()
        with self._lock:
            for table_name, entry in request_items.items():
                for key in entry.keys:
                    item = self._select(self._row_key(table_name, key))
                    if item is None:
                        continue
                    if entry.projection is not None:
                        item = {name: item[name] for name in entry.projection if name in item}
                    result.responses.setdefault(table_name, []).append(item)
        return result

    def _batch_write_sync(self, request_items: Mapping[str, Sequence[WriteRequest]]) -> BatchWriteResult:
        total = sum(len(requests) for requests in request_items.values())
        if total > MAX_BATCH_WRITE_ITEMS:
            raise StoreError(f"batch_write_item accepts at most {MAX_BATCH_WRITE_ITEMS} requests, got {total}")

        with self._lock:
            try:
                for table_name, requests in request_items.items():
                    for request in requests:
                        if request.put_item is not None:
                            self._conn.execute(
                                "INSERT OR REPLACE INTO items (table_name, pk, sk, body) VALUES (?, ?, ?, ?)",
                                (*self._row_key(table_name, request.put_item), _encode(request.put_item)),
                            )
                        elif request.delete_key is not None:
                            self._conn.execute(
                                "DELETE FROM items WHERE table_name = ? AND pk = ? AND sk = ?",
                                self._row_key(table_name, request.delete_key),
                            )
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        return BatchWriteResult()

    def _query_sync(
        self,
        table_name: str,
        condition: KeyCondition,
        exclusive_start_key: Key | None,
        limit: int | None,
    ) -> QueryResult:
        schema = self._schema(table_name)
        if condition.attribute != schema.partition_key:
            raise StoreError(f"Query on '{table_name}' must use partition key '{schema.partition_key}'")

        sql = "SELECT body FROM items WHERE table_name = ? AND pk = ?"
        params: list[Any] = [table_name, condition.value]
        if exclusive_start_key is not None:
            sql += " AND sk > ?"
            params.append(self._row_key(table_name, exclusive_start_key)[2])
        sql += " ORDER BY sk"
        if limit is not None:
            # One extra row tells whether another page exists.
            sql += " LIMIT ?"
            params.append(limit + 1)

        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()

        items = [_decode(row[0]) for row in rows]
        last_key: Key | None = None
        if limit is not None and len(items) > limit:
            items = items[:limit]
            if items:
                last_key = {attribute: items[-1][attribute] for attribute in schema.key_attributes}
        return QueryResult(items=items, last_evaluated_key=last_key)

    # KeyValueStore

    async def get_item(self, table_name: str, key: Key) -> Item | None:
        return await asyncio.to_thread(self._get_item_sync, table_name, key)

    async def batch_get_item(self, request_items: Mapping[str, KeysAndAttributes]) -> BatchGetResult:
        return await asyncio.to_thread(self._batch_get_sync, request_items)

    async def batch_write_item(self, request_items: Mapping[str, Sequence[WriteRequest]]) -> BatchWriteResult:
        return await asyncio.to_thread(self._batch_write_sync, request_items)

    async def query(
        self,
        table_name: str,
        condition: KeyCondition,
        *,
        exclusive_start_key: Key | None = None,
        limit: int | None = None,
    ) -> QueryResult:
        return await asyncio.to_thread(self._query_sync, table_name, condition, exclusive_start_key, limit)
