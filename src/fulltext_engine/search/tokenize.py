"""Default tokenizer for exact and lossy (typo tolerant) indexing.

Two token streams are derived from the same normalized text:

* exact tokens: the normalized words in order; a word's index in the list
  is its position.
* lossy tokens: every three-character window of words with at least three
  characters, plus a prefix marker (the first four characters followed by
  ``*``) per word, deduplicated in first-seen order.

The engine only depends on the ``Tokenizer`` protocol, so callers can swap
in their own analyzers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Protocol
import unicodedata


_NON_ALPHANUMERIC = re.compile(r"[\W_]+", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")

TRIGRAM_WIDTH = 3
PREFIX_MARKER_LENGTH = 4
PREFIX_MARKER = "*"


@dataclass(frozen=True)
class TokenizationResult:
    """Normalized input string and the tokens derived from it."""

    normalized: str
    tokens: list[str] = field(default_factory=list)


class Tokenizer(Protocol):
    """Protocol implemented by tokenizers plugged into the engine."""

    def exact(self, text: str) -> TokenizationResult:  # pragma: no cover - interface definition
        ...

    def lossy(self, text: str) -> TokenizationResult:  # pragma: no cover - interface definition
        ...


def normalize_text(text: str) -> str:
    """Strip diacritics, lowercase and collapse everything but letters/digits to single spaces."""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return _NON_ALPHANUMERIC.sub(" ", stripped.lower()).strip()


def _split_words(normalized: str) -> list[str]:
    return _WHITESPACE.split(normalized) if normalized else []


def tokenize(text: str) -> TokenizationResult:
    """Normalize text and split it into word tokens."""
    normalized = normalize_text(text)
    return TokenizationResult(normalized=normalized, tokens=_split_words(normalized))


def tokenize_lossy_trigrams(text: str) -> TokenizationResult:
    """Normalize text and emit trigrams plus prefix markers for recall-heavy matching."""
    normalized = normalize_text(text)
    grams: dict[str, None] = {}

    for word in _split_words(normalized):
        for start in range(len(word) - TRIGRAM_WIDTH + 1):
            grams.setdefault(word[start : start + TRIGRAM_WIDTH])
        grams.setdefault(word[:PREFIX_MARKER_LENGTH] + PREFIX_MARKER)

    return TokenizationResult(normalized=normalized, tokens=list(grams))


class DefaultTokenizer:
    """Tokenizer backed by the module-level functions."""

    def exact(self, text: str) -> TokenizationResult:
        return tokenize(text)

    def lossy(self, text: str) -> TokenizationResult:
        return tokenize_lossy_trigrams(text)
