"""Expand a token diff into an ordered list of table-scoped writes.

Plan order for one document field:

1. removed lossy tokens: delete LossyPosting and DocTokenEntry
2. added lossy tokens: put LossyPosting and DocTokenEntry
3. removed exact tokens: delete ExactPosting, DocTokenEntry, DocTokenPositions
4. TokenStats puts/deletes resolved from the lossy df deltas
5. added and updated exact tokens: put ExactPosting, DocTokenPositions, DocTokenEntry
6. DocumentMirror upsert with the new normalized text (or delete on removal)

Lossy trigrams and exact words share the DocTokens key space, so a
DocTokenEntry is written at most once per plan and only deleted when the
token survives in neither the new lossy set nor the new exact positions.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from fulltext_engine.config import TableNames
from fulltext_engine.search.diff import TokenDiff
from fulltext_engine.search.models import DocId, TableWrite
from fulltext_engine.search.schema import (
    doc_token_positions_schema,
    doc_tokens_schema,
    encode_doc_key,
    encode_doc_mirror_key,
    encode_doc_token_sort_key,
    encode_token_doc_sort_key,
    encode_token_key,
    exact_postings_schema,
    fulltext_doc_mirror_schema,
    lossy_postings_schema,
)
from fulltext_engine.store.protocol import WriteRequest


_POSITIONS = exact_postings_schema.value_attribute or "positions"
_CONTENT = fulltext_doc_mirror_schema.value_attribute or "content"


class WritePlanner:
    """Builds write requests against a concrete set of table names."""

    def __init__(self, tables: TableNames | None = None) -> None:
        self.tables = tables or TableNames()

    # Single-row builders

    def lossy_posting(self, doc_id: DocId, index_field: str, token: str, *, delete: bool = False) -> TableWrite:
        key = lossy_postings_schema.build_key(encode_token_key(index_field, token), encode_token_doc_sort_key(doc_id))
        return TableWrite(self.tables.lossy, WriteRequest.delete(key) if delete else WriteRequest.put(key))

    def exact_posting(
        self,
        doc_id: DocId,
        index_field: str,
        token: str,
        positions: Sequence[int] | None = None,
    ) -> TableWrite:
        """Put ``positions`` for the posting, or delete it when ``positions`` is None."""
        key = exact_postings_schema.build_key(encode_token_key(index_field, token), encode_token_doc_sort_key(doc_id))
        if positions is None:
            return TableWrite(self.tables.exact, WriteRequest.delete(key))
        return TableWrite(self.tables.exact, WriteRequest.put({**key, _POSITIONS: list(positions)}))

    def doc_token(self, doc_id: DocId, index_field: str, token: str, *, delete: bool = False) -> TableWrite:
        key = doc_tokens_schema.build_key(encode_doc_key(doc_id), encode_doc_token_sort_key(index_field, token))
        return TableWrite(self.tables.doc_tokens, WriteRequest.delete(key) if delete else WriteRequest.put(key))

    def doc_token_positions(
        self,
        doc_id: DocId,
        index_field: str,
        token: str,
        positions: Sequence[int] | None = None,
    ) -> TableWrite:
        key = doc_token_positions_schema.build_key(
            encode_doc_key(doc_id), encode_doc_token_sort_key(index_field, token)
        )
        if positions is None:
            return TableWrite(self.tables.doc_token_positions, WriteRequest.delete(key))
        return TableWrite(self.tables.doc_token_positions, WriteRequest.put({**key, _POSITIONS: list(positions)}))

    def mirror(self, doc_id: DocId, index_field: str, content: str | None) -> TableWrite:
        """Upsert the mirrored text; ``None`` deletes the mirror row."""
        key = fulltext_doc_mirror_schema.build_key(encode_doc_mirror_key(index_field, doc_id))
        if content is None:
            return TableWrite(self.tables.mirror, WriteRequest.delete(key))
        return TableWrite(self.tables.mirror, WriteRequest.put({**key, _CONTENT: content}))

    # Composite plans

    def exact_positions_writes(
        self,
        doc_id: DocId,
        index_field: str,
        token: str,
        positions: Sequence[int] | None,
    ) -> list[TableWrite]:
        """ExactPosting, DocTokenEntry and DocTokenPositions for one token, put or deleted together."""
        delete = positions is None
        return [
            self.exact_posting(doc_id, index_field, token, positions),
            self.doc_token(doc_id, index_field, token, delete=delete),
            self.doc_token_positions(doc_id, index_field, token, positions),
        ]

    def plan(
        self,
        doc_id: DocId,
        index_field: str,
        diff: TokenDiff,
        token_stats_writes: Iterable[TableWrite] = (),
        *,
        delete_mirror: bool = False,
    ) -> list[TableWrite]:
        """Return the full write plan for one document field."""
        writes: list[TableWrite] = []
        written_doc_tokens: set[str] = set()

        def still_present(token: str) -> bool:
            return token in diff.next_lossy or token in diff.next_positions

        def put_doc_token(token: str) -> None:
            if token not in written_doc_tokens:
                written_doc_tokens.add(token)
                writes.append(self.doc_token(doc_id, index_field, token))

        def delete_doc_token(token: str) -> None:
            if token not in written_doc_tokens and not still_present(token):
                written_doc_tokens.add(token)
                writes.append(self.doc_token(doc_id, index_field, token, delete=True))

        for token in sorted(diff.removed_lossy):
            writes.append(self.lossy_posting(doc_id, index_field, token, delete=True))
            delete_doc_token(token)

        for token in sorted(diff.added_lossy):
            writes.append(self.lossy_posting(doc_id, index_field, token))
            put_doc_token(token)

        for token in sorted(diff.removed_exact):
            writes.append(self.exact_posting(doc_id, index_field, token))
            delete_doc_token(token)
            writes.append(self.doc_token_positions(doc_id, index_field, token))

        writes.extend(token_stats_writes)

        for token in sorted(diff.added_exact | diff.updated_exact):
            positions = diff.next_positions[token]
            writes.append(self.exact_posting(doc_id, index_field, token, positions))
            writes.append(self.doc_token_positions(doc_id, index_field, token, positions))
            put_doc_token(token)

        writes.append(self.mirror(doc_id, index_field, None if delete_mirror else diff.normalized))
        return writes
