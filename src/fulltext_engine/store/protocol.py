"""Key-value store interface consumed by the fulltext engine.

The shapes follow the batch primitives of partitioned key-value stores such
as DynamoDB: batch calls may come back with part of the request
unprocessed, and it is the caller's job to re-issue exactly that part.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


Item = dict[str, Any]
Key = dict[str, Any]


@dataclass(frozen=True)
class WriteRequest:
    """Either a put of a full item or a delete by key."""

    put_item: Item | None = None
    delete_key: Key | None = None

    def __post_init__(self) -> None:
        if (self.put_item is None) == (self.delete_key is None):
            raise ValueError("WriteRequest needs exactly one of put_item or delete_key")

    @classmethod
    def put(cls, item: Item) -> WriteRequest:
        return cls(put_item=dict(item))

    @classmethod
    def delete(cls, key: Key) -> WriteRequest:
        return cls(delete_key=dict(key))

    @property
    def is_put(self) -> bool:
        return self.put_item is not None


@dataclass(frozen=True)
class KeysAndAttributes:
    """Keys to read from one table in a batch get, with an optional projection."""

    keys: list[Key]
    projection: tuple[str, ...] | None = None


@dataclass(frozen=True)
class KeyCondition:
    """Equality condition on a table's partition key."""

    attribute: str
    value: str


@dataclass
class BatchGetResult:
    responses: dict[str, list[Item]] = field(default_factory=dict)
    unprocessed_keys: dict[str, KeysAndAttributes] = field(default_factory=dict)


@dataclass
class BatchWriteResult:
    unprocessed_items: dict[str, list[WriteRequest]] = field(default_factory=dict)


@dataclass
class QueryResult:
    items: list[Item] = field(default_factory=list)
    last_evaluated_key: Key | None = None


@runtime_checkable
class KeyValueStore(Protocol):
    """Primitive operations of the backing store."""

    async def get_item(self, table_name: str, key: Key) -> Item | None:  # pragma: no cover - Protocol only
        """Return the item stored under ``key`` or ``None``."""

    async def batch_get_item(
        self, request_items: Mapping[str, KeysAndAttributes]
    ) -> BatchGetResult:  # pragma: no cover - Protocol only
        """Read many keys across tables; some keys may come back unprocessed."""

    async def batch_write_item(
        self, request_items: Mapping[str, Sequence[WriteRequest]]
    ) -> BatchWriteResult:  # pragma: no cover - Protocol only
        """Apply puts/deletes across tables; some requests may come back unprocessed."""

    async def query(  # pragma: no cover - Protocol only
        self,
        table_name: str,
        condition: KeyCondition,
        *,
        exclusive_start_key: Key | None = None,
        limit: int | None = None,
    ) -> QueryResult:
        """Return items of one partition in sort-key order, one page at a time."""
