"""Key-value backed fulltext index: document writes plus token-scoped lookups.

``FullTextBackend`` owns the full index lifecycle for one store:

* ``write_document`` diffs a record's field against the mirrored text from
  the previous run and applies only the token-level changes.
* Lossy postings are read one page at a time (``query_lossy_postings_page``)
  or exhaustively (``load_lossy_postings``).
* Exact positions, doc-token membership and token stats are point or batch
  lookups.
* Single-token mutations bypass the diff for targeted corrections.

Nothing here is atomic across tables. A failed store call propagates to
the caller with whatever chunks were already written left in place;
re-running ``write_document`` with the same content converges the postings
but may re-apply document-frequency deltas.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
import logging
from typing import Any

from fulltext_engine.config import MAX_BATCH_GET_KEYS, MAX_BATCH_WRITE_ITEMS, IndexSettings, TableNames
from fulltext_engine.observability.context import bind_index_context, trace_context
from fulltext_engine.observability.metrics import INDEX_OPERATION_LATENCY, STORE_CALLS, track_latency
from fulltext_engine.observability.tracing import create_span
from fulltext_engine.search.batching import (
    BatchedWriter,
    BatchReader,
    RetryPolicy,
    batch_write_with_retry,
    group_by_table,
)
from fulltext_engine.search.diff import TokenDiff, compute_token_diff, resolve_index_text
from fulltext_engine.search.docid import normalize_doc_id
from fulltext_engine.search.models import (
    DocId,
    DocTokenKey,
    DocumentRecord,
    LossyPostingsPage,
    TableWrite,
    TokenStats,
    whole_number,
)
from fulltext_engine.search.planner import WritePlanner
from fulltext_engine.search.schema import (
    decode_doc_key,
    doc_token_positions_schema,
    doc_tokens_schema,
    encode_doc_key,
    encode_doc_mirror_key,
    encode_doc_token_sort_key,
    encode_token_key,
    fulltext_doc_mirror_schema,
    lossy_postings_schema,
)
from fulltext_engine.search.stats import DocumentFrequencyUpdater, token_stats_from_item
from fulltext_engine.search.tokenize import DefaultTokenizer, Tokenizer
from fulltext_engine.search.trace import SearchTrace
from fulltext_engine.store.protocol import Item, KeyCondition, KeyValueStore


logger = logging.getLogger(__name__)

_POSITIONS = doc_token_positions_schema.value_attribute or "positions"
_CONTENT = fulltext_doc_mirror_schema.value_attribute or "content"


def parse_positions(raw: Any) -> list[int] | None:
    """Keep the whole-number entries of a stored position list; empty or malformed means absent."""
    if not isinstance(raw, (list, tuple)):
        return None
    positions = [position for position in map(whole_number, raw) if position is not None]
    return positions or None


class FullTextBackend:
    """Read/write fulltext index over a ``KeyValueStore``."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        tables: TableNames | None = None,
        tokenizer: Tokenizer | None = None,
        batch_write_limit: int = MAX_BATCH_WRITE_ITEMS,
        batch_get_limit: int = MAX_BATCH_GET_KEYS,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.store = store
        self.tables = tables or TableNames()
        self.tokenizer = tokenizer or DefaultTokenizer()
        self.retry_policy = retry_policy or RetryPolicy()
        self.planner = WritePlanner(self.tables)
        self.writer = BatchedWriter(store, batch_size=batch_write_limit, retry_policy=self.retry_policy)
        self.reader = BatchReader(
            store,
            batch_size=batch_get_limit,
            retry_policy=self.retry_policy,
            on_call=self._record_batch_get,
        )
        self.stats = DocumentFrequencyUpdater(store, self.tables.token_stats)
        self._active_trace: SearchTrace | None = None

    @classmethod
    def from_settings(
        cls,
        store: KeyValueStore,
        settings: IndexSettings,
        *,
        tokenizer: Tokenizer | None = None,
    ) -> FullTextBackend:
        return cls(
            store,
            tables=settings.table_names(),
            tokenizer=tokenizer,
            batch_write_limit=settings.batch_write_limit,
            batch_get_limit=settings.batch_get_limit,
            retry_policy=RetryPolicy.from_settings(settings),
        )

    # ------------------------------------------------------------------
    # Trace instrumentation
    # ------------------------------------------------------------------

    def set_active_trace(self, trace: SearchTrace | None) -> None:
        """Attach (or clear with ``None``) a trace that records store call counts."""
        self._active_trace = trace

    def _record_query(self) -> None:
        if self._active_trace is not None:
            self._active_trace.store_query_calls += 1
            self._active_trace.postings_pages += 1

    def _record_batch_get(self, key_count: int) -> None:
        if self._active_trace is not None:
            self._active_trace.store_batch_get_calls += 1
            self._active_trace.batch_get_keys += key_count

    def _record_item_read(self) -> None:
        if self._active_trace is not None:
            self._active_trace.store_item_read_calls += 1

    async def _get_item(self, table_name: str, key: dict[str, Any]) -> Item | None:
        STORE_CALLS.labels(operation="get_item").inc()
        return await self.store.get_item(table_name, key)

    # ------------------------------------------------------------------
    # Document indexing
    # ------------------------------------------------------------------

    async def load_mirror_content(self, doc_id: DocId, index_field: str) -> str | None:
        """Return the normalized text indexed last time for this document field."""
        item = await self._get_item(
            self.tables.mirror,
            fulltext_doc_mirror_schema.build_key(encode_doc_mirror_key(index_field, doc_id)),
        )
        raw = item.get(_CONTENT) if item else None
        return raw if isinstance(raw, str) else None

    async def plan_document(
        self, doc_id: DocId, index_field: str, text: str | None
    ) -> tuple[TokenDiff, list[TableWrite]]:
        """Diff ``text`` against the mirror and build the write plan without applying it."""
        previous = await self.load_mirror_content(doc_id, index_field)
        diff = compute_token_diff(previous, text, self.tokenizer)
        stats_writes = await self.stats.build_writes(index_field, diff.lossy_deltas)
        if diff.is_empty:
            unchanged = previous is None if text is None else previous == diff.normalized
            if unchanged:
                return diff, []
        return diff, self.planner.plan(doc_id, index_field, diff, stats_writes, delete_mirror=text is None)

    async def write_document(self, document: DocumentRecord, primary_field: str, index_field: str) -> TokenDiff:
        """Index ``document[index_field]`` under the id in ``document[primary_field]``.

        A missing or ``None`` field value indexes as empty text, which removes
        every posting the document had for that field. Returns the applied diff.
        """
        doc_id = normalize_doc_id(document.get(primary_field), primary_field)
        text = resolve_index_text(document, index_field)
        return await self._apply(doc_id, index_field, text, operation="write_document")

    async def remove_document(self, doc_id: Any, index_field: str) -> TokenDiff:
        """Drop every posting of a document field and delete its mirror row."""
        doc_id = normalize_doc_id(doc_id, "doc_id")
        return await self._apply(doc_id, index_field, None, operation="remove_document")

    async def _apply(self, doc_id: DocId, index_field: str, text: str | None, *, operation: str) -> TokenDiff:
        context_token = bind_index_context(doc_id=doc_id, index_field=index_field)
        attributes = {"fulltext.doc_id": doc_id, "fulltext.index_field": index_field}
        try:
            with create_span(f"fulltext.{operation}", attributes=attributes) as span, track_latency(
                INDEX_OPERATION_LATENCY, operation=operation
            ):
                diff, plan = await self.plan_document(doc_id, index_field, text)
                span.set_attribute("fulltext.writes", len(plan))
                if not plan:
                    logger.debug("Document %s field %s unchanged; nothing to write", doc_id, index_field)
                    return diff
                calls = await self.writer.write_all(plan)
                span.set_attribute("fulltext.batch_calls", calls)
                logger.info(
                    "Indexed document %s field %s: %d writes in %d batch calls",
                    doc_id,
                    index_field,
                    len(plan),
                    calls,
                    extra=diff.summary(),
                )
                return diff
        finally:
            trace_context.reset(context_token)

    # ------------------------------------------------------------------
    # Lossy postings
    # ------------------------------------------------------------------

    async def add_lossy_posting(self, token: str, index_field: str, doc_id: DocId) -> None:
        """Put one lossy posting plus its DocTokenEntry and bump the token's df."""
        writes = [
            self.planner.lossy_posting(doc_id, index_field, token),
            self.planner.doc_token(doc_id, index_field, token),
        ]
        stat_write = await self.stats.build_write(token, index_field, 1)
        if stat_write is not None:
            writes.append(stat_write)
        await batch_write_with_retry(self.store, group_by_table(writes), self.retry_policy)

    async def remove_lossy_posting(self, token: str, index_field: str, doc_id: DocId) -> None:
        """Delete one lossy posting plus its DocTokenEntry and lower the token's df."""
        writes = [
            self.planner.lossy_posting(doc_id, index_field, token, delete=True),
            self.planner.doc_token(doc_id, index_field, token, delete=True),
        ]
        stat_write = await self.stats.build_write(token, index_field, -1)
        if stat_write is not None:
            writes.append(stat_write)
        await batch_write_with_retry(self.store, group_by_table(writes), self.retry_policy)

    async def query_lossy_postings_page(
        self,
        token: str,
        index_field: str,
        *,
        exclusive_start_doc_id: DocId | None = None,
        limit: int | None = None,
    ) -> LossyPostingsPage:
        """Return one page of doc ids for a token, with a cursor when more remain."""
        partition = encode_token_key(index_field, token)
        start_key = None
        if exclusive_start_doc_id is not None:
            start_key = lossy_postings_schema.build_key(partition, encode_doc_key(exclusive_start_doc_id))

        self._record_query()
        STORE_CALLS.labels(operation="query").inc()
        result = await self.store.query(
            self.tables.lossy,
            KeyCondition(lossy_postings_schema.partition_key, partition),
            exclusive_start_key=start_key,
            limit=limit,
        )

        sort_key = lossy_postings_schema.sort_key
        doc_ids = [doc_id for doc_id in (decode_doc_key(item.get(sort_key)) for item in result.items) if doc_id]
        last_evaluated = decode_doc_key(result.last_evaluated_key.get(sort_key)) if result.last_evaluated_key else None
        return LossyPostingsPage(doc_ids=doc_ids, last_evaluated_doc_id=last_evaluated)

    async def iter_lossy_postings(
        self,
        token: str,
        index_field: str,
        *,
        page_size: int | None = None,
    ) -> AsyncIterator[DocId]:
        """Yield doc ids page by page; stop iterating to stop fetching."""
        cursor: DocId | None = None
        while True:
            page = await self.query_lossy_postings_page(
                token, index_field, exclusive_start_doc_id=cursor, limit=page_size
            )
            for doc_id in page.doc_ids:
                yield doc_id
            if page.last_evaluated_doc_id is None:
                return
            cursor = page.last_evaluated_doc_id

    async def load_lossy_postings(self, token: str, index_field: str) -> list[DocId]:
        """Exhaust every page of lossy postings for a token."""
        return [doc_id async for doc_id in self.iter_lossy_postings(token, index_field)]

    # ------------------------------------------------------------------
    # Exact positions
    # ------------------------------------------------------------------

    async def add_exact_positions(self, token: str, index_field: str, doc_id: DocId, positions: Sequence[int]) -> None:
        writes = self.planner.exact_positions_writes(doc_id, index_field, token, list(positions))
        await batch_write_with_retry(self.store, group_by_table(writes), self.retry_policy)

    async def remove_exact_positions(self, token: str, index_field: str, doc_id: DocId) -> None:
        writes = self.planner.exact_positions_writes(doc_id, index_field, token, None)
        await batch_write_with_retry(self.store, group_by_table(writes), self.retry_policy)

    async def load_exact_positions(self, token: str, index_field: str, doc_id: DocId) -> list[int] | None:
        self._record_item_read()
        item = await self._get_item(
            self.tables.doc_token_positions,
            doc_token_positions_schema.build_key(encode_doc_key(doc_id), encode_doc_token_sort_key(index_field, token)),
        )
        return parse_positions(item.get(_POSITIONS)) if item else None

    async def batch_load_exact_positions(self, keys: Sequence[DocTokenKey]) -> list[list[int] | None]:
        """Positions for each key, aligned with ``keys``; missing entries are ``None``."""
        items = await self.reader.batch_get(
            self.tables.doc_token_positions,
            doc_token_positions_schema,
            [self._doc_token_key(doc_token_positions_schema, key) for key in keys],
            attributes=[_POSITIONS],
        )
        return [parse_positions(item.get(_POSITIONS)) if item else None for item in items]

    # ------------------------------------------------------------------
    # Doc-token membership
    # ------------------------------------------------------------------

    async def has_doc_token(self, doc_id: DocId, index_field: str, token: str) -> bool:
        self._record_item_read()
        item = await self._get_item(
            self.tables.doc_tokens,
            doc_tokens_schema.build_key(encode_doc_key(doc_id), encode_doc_token_sort_key(index_field, token)),
        )
        return item is not None

    async def batch_has_doc_tokens(self, keys: Sequence[DocTokenKey]) -> list[bool]:
        """Membership for each key, aligned with ``keys``."""
        items = await self.reader.batch_get(
            self.tables.doc_tokens,
            doc_tokens_schema,
            [self._doc_token_key(doc_tokens_schema, key) for key in keys],
        )
        return [item is not None for item in items]

    @staticmethod
    def _doc_token_key(schema: Any, key: DocTokenKey) -> dict[str, Any]:
        return schema.build_key(encode_doc_key(key.doc_id), encode_doc_token_sort_key(key.index_field, key.token))

    # ------------------------------------------------------------------
    # Token stats
    # ------------------------------------------------------------------

    async def load_token_stats(self, token: str, index_field: str) -> TokenStats | None:
        self._record_item_read()
        return token_stats_from_item(await self.stats.load(token, index_field))
