"""Document-frequency bookkeeping for lossy tokens.

Document frequency (df) is the number of documents holding a live lossy
posting for a token in a field. The counter is maintained with a plain
read-modify-write: read the row, add the delta, then put the new value or
delete the row once it drops to zero. There is no conditional write, so two
concurrent index operations touching the same token can lose an update;
the last writer's computed value wins.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
import logging
from typing import Any

from fulltext_engine.observability.metrics import STORE_CALLS
from fulltext_engine.search.models import TableWrite, TokenStats, whole_number
from fulltext_engine.search.schema import encode_token_key, fulltext_token_stats_schema
from fulltext_engine.store.protocol import Item, KeyValueStore, WriteRequest


logger = logging.getLogger(__name__)

_DF_ATTRIBUTE = fulltext_token_stats_schema.value_attribute or "df"


def read_document_frequency(item: Mapping[str, Any] | None) -> int | None:
    """Return the stored df, or ``None`` when the row is absent or malformed."""
    if item is None:
        return None
    return whole_number(item.get(_DF_ATTRIBUTE))


def token_stats_from_item(item: Mapping[str, Any] | None) -> TokenStats | None:
    document_frequency = read_document_frequency(item)
    if document_frequency is None:
        return None
    return TokenStats(document_frequency=document_frequency)


def resolve_token_stats_write(
    table_name: str,
    index_field: str,
    token: str,
    current_df: int,
    delta: int,
) -> TableWrite | None:
    """Turn a current df and a delta into a put, a delete, or nothing."""
    if delta == 0:
        return None

    key = fulltext_token_stats_schema.build_key(encode_token_key(index_field, token))
    next_df = current_df + delta
    if next_df <= 0:
        return TableWrite(table_name, WriteRequest.delete(key))
    return TableWrite(table_name, WriteRequest.put({**key, _DF_ATTRIBUTE: next_df}))


class DocumentFrequencyUpdater:
    """Reads TokenStats rows and computes the write for a df delta."""

    def __init__(
        self,
        store: KeyValueStore,
        table_name: str = fulltext_token_stats_schema.table_name,
        *,
        on_read: Callable[[], None] | None = None,
    ) -> None:
        self.store = store
        self.table_name = table_name
        self.on_read = on_read

    async def load(self, token: str, index_field: str) -> Item | None:
        if self.on_read is not None:
            self.on_read()
        STORE_CALLS.labels(operation="get_item").inc()
        return await self.store.get_item(
            self.table_name,
            fulltext_token_stats_schema.build_key(encode_token_key(index_field, token)),
        )

    async def build_write(self, token: str, index_field: str, delta: int) -> TableWrite | None:
        """Read the counter and return the write applying ``delta``; ``None`` for a zero delta."""
        if delta == 0:
            return None
        current = read_document_frequency(await self.load(token, index_field)) or 0
        return resolve_token_stats_write(self.table_name, index_field, token, current, delta)

    async def build_writes(self, index_field: str, deltas: Mapping[str, int]) -> list[TableWrite]:
        """Resolve many deltas concurrently, one read per token, in the order given."""
        if not deltas:
            return []
        resolved = await asyncio.gather(
            *(self.build_write(token, index_field, delta) for token, delta in deltas.items())
        )
        writes = [write for write in resolved if write is not None]
        logger.debug("Resolved %d token stats writes for field %s", len(writes), index_field)
        return writes
