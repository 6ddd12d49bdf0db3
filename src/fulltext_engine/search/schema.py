"""
Table schemas and key encoders for the fulltext tables.

Every table uses a string partition key ``pk`` and, where present, a string
sort key ``sk``. Keys are built from short prefixes so one physical key
space can hold several logical entities:

- ``f#{indexField}#t#{token}``: token-scoped partition (postings, stats)
- ``d#{docId}``: document-scoped partition (doc tokens, positions)
- ``d#{docId}#f#{indexField}``: document mirror key

Layout per table:

- LossyPostings:     PK f#{field}#t#{token}  SK d#{docId}
- ExactPostings:     PK f#{field}#t#{token}  SK d#{docId}   positions
- DocTokens:         PK d#{docId}            SK f#{field}#t#{token}
- DocTokenPositions: PK d#{docId}            SK f#{field}#t#{token}   positions
- FullTextDocMirror: PK d#{docId}#f#{field}                      content
- FullTextTokenStats: PK f#{field}#t#{token}                     df
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fulltext_engine.search.models import DocId


FIELD_PREFIX = "f#"
TOKEN_PREFIX = "t#"
DOC_PREFIX = "d#"
POSITION_PREFIX = "p#"


@dataclass(frozen=True)
class TableSchema:
    """Key layout of one logical table."""

    table_name: str
    partition_key: str = "pk"
    sort_key: str | None = None
    value_attribute: str | None = None

    @property
    def key_attributes(self) -> tuple[str, ...]:
        if self.sort_key is None:
            return (self.partition_key,)
        return (self.partition_key, self.sort_key)

    def build_key(self, partition_value: str, sort_value: str | None = None) -> dict[str, Any]:
        """Return the primary key map for this table."""
        key: dict[str, Any] = {self.partition_key: partition_value}
        if self.sort_key is not None:
            if sort_value is None:
                msg = f"Table '{self.table_name}' requires a sort key value"
                raise ValueError(msg)
            key[self.sort_key] = sort_value
        return key

    def key_of(self, item: dict[str, Any]) -> tuple[str, ...] | None:
        """Extract the key tuple from a stored item; ``None`` if it is malformed."""
        values = []
        for attribute in self.key_attributes:
            value = item.get(attribute)
            if not isinstance(value, str):
                return None
            values.append(value)
        return tuple(values)


lossy_postings_schema = TableSchema(table_name="LossyPostings", sort_key="sk")
exact_postings_schema = TableSchema(table_name="ExactPostings", sort_key="sk", value_attribute="positions")
doc_tokens_schema = TableSchema(table_name="DocTokens", sort_key="sk")
doc_token_positions_schema = TableSchema(table_name="DocTokenPositions", sort_key="sk", value_attribute="positions")
fulltext_doc_mirror_schema = TableSchema(table_name="FullTextDocMirror", value_attribute="content")
fulltext_token_stats_schema = TableSchema(table_name="FullTextTokenStats", value_attribute="df")


def encode_token_key(index_field: str, token: str) -> str:
    return f"{FIELD_PREFIX}{index_field}#{TOKEN_PREFIX}{token}"


def encode_doc_key(doc_id: DocId | int) -> str:
    return f"{DOC_PREFIX}{doc_id}"


def encode_doc_mirror_key(index_field: str, doc_id: DocId | int) -> str:
    return f"{encode_doc_key(doc_id)}#{FIELD_PREFIX}{index_field}"


def encode_token_doc_sort_key(doc_id: DocId | int) -> str:
    """Sort key for token-to-document tables (postings)."""
    return encode_doc_key(doc_id)


def encode_doc_token_sort_key(index_field: str, token: str) -> str:
    """Sort key for document-to-token tables (doc tokens, positions)."""
    return encode_token_key(index_field, token)


def encode_doc_token_position_sort_key(index_field: str, token: str, position: int) -> str:
    return f"{encode_token_key(index_field, token)}#{POSITION_PREFIX}{position}"


def decode_doc_key(value: Any) -> DocId | None:
    """Return the doc id encoded in ``value``, or ``None`` for anything else."""
    if not isinstance(value, str) or not value.startswith(DOC_PREFIX):
        return None
    return value[len(DOC_PREFIX) :]
