"""Token-level diff between the last indexed text of a field and its new text.

Lossy tokens are compared as plain sets since lossy matching is
existence-only. Exact tokens carry ordered positions: a token whose
position list changed in length or in any offset is reported as updated.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from fulltext_engine.search.tokenize import DefaultTokenizer, Tokenizer


PositionMap = dict[str, list[int]]


@dataclass(frozen=True)
class TokenDiff:
    """The five token sets that drive a write plan, plus the new state."""

    normalized: str
    added_lossy: frozenset[str] = frozenset()
    removed_lossy: frozenset[str] = frozenset()
    added_exact: frozenset[str] = frozenset()
    removed_exact: frozenset[str] = frozenset()
    updated_exact: frozenset[str] = frozenset()
    next_lossy: frozenset[str] = frozenset()
    next_positions: Mapping[str, list[int]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (
            self.added_lossy or self.removed_lossy or self.added_exact or self.removed_exact or self.updated_exact
        )

    @property
    def lossy_deltas(self) -> dict[str, int]:
        """Document-frequency delta per lossy token touched by this diff."""
        deltas = {token: -1 for token in self.removed_lossy}
        deltas.update({token: 1 for token in self.added_lossy})
        return deltas

    def summary(self) -> dict[str, int]:
        return {
            "added_lossy": len(self.added_lossy),
            "removed_lossy": len(self.removed_lossy),
            "added_exact": len(self.added_exact),
            "removed_exact": len(self.removed_exact),
            "updated_exact": len(self.updated_exact),
        }


def build_position_map(tokens: Iterable[str]) -> PositionMap:
    """Map each token to the ordered offsets at which it occurs."""
    positions: PositionMap = {}
    for index, token in enumerate(tokens):
        positions.setdefault(token, []).append(index)
    return positions


def positions_equal(left: list[int], right: list[int]) -> bool:
    if len(left) != len(right):
        return False
    return all(a == b for a, b in zip(left, right))


def resolve_index_text(document: Mapping[str, Any], index_field: str) -> str:
    """Return the field value as text; missing or ``None`` values index as empty."""
    value = document.get(index_field)
    if value is None:
        return ""
    return str(value)


def compute_token_diff(
    previous_text: str | None,
    next_text: str | None,
    tokenizer: Tokenizer | None = None,
) -> TokenDiff:
    """Diff previously mirrored text against newly supplied text.

    ``previous_text`` is the normalized content from the document mirror;
    ``None`` or ``""`` means nothing was indexed before.
    """
    tokenizer = tokenizer or DefaultTokenizer()
    next_exact = tokenizer.exact(next_text or "")
    next_lossy = set(tokenizer.lossy(next_text or "").tokens)

    if previous_text:
        previous_tokens = tokenizer.exact(previous_text).tokens
        previous_lossy = set(tokenizer.lossy(previous_text).tokens)
    else:
        previous_tokens = []
        previous_lossy = set()

    previous_positions = build_position_map(previous_tokens)
    next_positions = build_position_map(next_exact.tokens)

    added_exact: set[str] = set()
    updated_exact: set[str] = set()
    for token, positions in next_positions.items():
        previous = previous_positions.get(token)
        if previous is None:
            added_exact.add(token)
        elif not positions_equal(previous, positions):
            updated_exact.add(token)

    return TokenDiff(
        normalized=next_exact.normalized,
        added_lossy=frozenset(next_lossy - previous_lossy),
        removed_lossy=frozenset(previous_lossy - next_lossy),
        added_exact=frozenset(added_exact),
        removed_exact=frozenset(token for token in previous_positions if token not in next_positions),
        updated_exact=frozenset(updated_exact),
        next_lossy=frozenset(next_lossy),
        next_positions=next_positions,
    )
