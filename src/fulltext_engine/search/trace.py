"""Per-search call counters recorded by the query layer."""

from __future__ import annotations

from dataclasses import dataclass, field
import time


@dataclass
class SearchTrace:
    """Mutable counters a caller attaches to a backend for one search.

    Recording is a pure side channel: counters never influence results.
    The backend bumps the ``store_*`` counters, ``postings_pages`` and
    ``batch_get_keys``; ``batch_get_calls`` and ``candidates_verified`` are
    left to the query layer.
    """

    start_time_ms: float = field(default_factory=lambda: time.time() * 1000)
    token_count: int | None = None
    query_hash: str | None = None
    primary_token_hash: str | None = None
    postings_pages: int = 0
    candidates_verified: int = 0
    batch_get_calls: int = 0
    batch_get_keys: int = 0
    store_query_calls: int = 0
    store_batch_get_calls: int = 0
    store_item_read_calls: int = 0

    def elapsed_ms(self) -> float:
        return time.time() * 1000 - self.start_time_ms

    def to_dict(self) -> dict[str, float | int | str | None]:
        return {
            "token_count": self.token_count,
            "query_hash": self.query_hash,
            "primary_token_hash": self.primary_token_hash,
            "postings_pages": self.postings_pages,
            "candidates_verified": self.candidates_verified,
            "batch_get_calls": self.batch_get_calls,
            "batch_get_keys": self.batch_get_keys,
            "store_query_calls": self.store_query_calls,
            "store_batch_get_calls": self.store_batch_get_calls,
            "store_item_read_calls": self.store_item_read_calls,
            "elapsed_ms": round(self.elapsed_ms(), 3),
        }


def create_search_trace() -> SearchTrace:
    """Return a trace with all counters at zero."""
    return SearchTrace()
