"""Incremental fulltext indexing over a partitioned key-value store."""

from fulltext_engine.errors import FullTextError, MissingPrimaryFieldError, RetryBudgetExhaustedError, StoreError
from fulltext_engine.search.backend import FullTextBackend
from fulltext_engine.search.batching import RetryPolicy
from fulltext_engine.search.tokenize import DefaultTokenizer


__version__ = "0.1.0"

__all__ = [
    "DefaultTokenizer",
    "FullTextBackend",
    "FullTextError",
    "MissingPrimaryFieldError",
    "RetryBudgetExhaustedError",
    "RetryPolicy",
    "StoreError",
]
