"""Document id helpers."""

from __future__ import annotations

from typing import Any

from fulltext_engine.errors import MissingPrimaryFieldError
from fulltext_engine.search.models import DocId


def compare_doc_id(left: DocId, right: DocId) -> int:
    """Three-way comparison matching the store's sort-key order."""
    if left == right:
        return 0
    return -1 if left < right else 1


def normalize_doc_id(value: Any, primary_field: str) -> DocId:
    """Coerce a primary field value to a doc id, rejecting missing values."""
    if value is None or value == "":
        raise MissingPrimaryFieldError(primary_field)
    return str(value)
