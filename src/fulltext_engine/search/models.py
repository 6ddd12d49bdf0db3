"""Search data models."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
import math
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from fulltext_engine.store.protocol import WriteRequest


DocId = str
DocumentRecord = Mapping[str, Any]

TOKEN_STATS_VERSION = 1


def whole_number(value: Any) -> int | None:
    """Return ``value`` as an int when it is a finite whole number, else ``None``."""
    # bool is an int subclass but never a valid stored number
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) and value.is_integer() else None
    if isinstance(value, Decimal):
        return int(value) if value.is_finite() and value == value.to_integral_value() else None
    return None


@dataclass(frozen=True)
class DocTokenKey:
    """Addresses one token of one indexed field of one document."""

    doc_id: DocId
    index_field: str
    token: str


@dataclass(frozen=True)
class TokenStats:
    """Per-token statistics a ranker can consume."""

    document_frequency: int
    version: int = TOKEN_STATS_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {"df": self.document_frequency, "version": self.version}


@dataclass(frozen=True)
class LossyPostingsPage:
    """One page of lossy postings; ``last_evaluated_doc_id`` is set when more pages exist."""

    doc_ids: list[DocId] = field(default_factory=list)
    last_evaluated_doc_id: DocId | None = None

    @property
    def has_more(self) -> bool:
        return self.last_evaluated_doc_id is not None


@dataclass(frozen=True)
class TableWrite:
    """A put or delete bound to the table it targets."""

    table_name: str
    request: WriteRequest

    @property
    def kind(self) -> str:
        return "put" if self.request.is_put else "delete"
