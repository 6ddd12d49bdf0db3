"""Exceptions raised by the fulltext engine."""

from __future__ import annotations


class FullTextError(RuntimeError):
    """Base class for fulltext engine failures."""


class MissingPrimaryFieldError(FullTextError, ValueError):
    """Raised when a record has no usable value in its primary field."""

    def __init__(self, primary_field: str) -> None:
        super().__init__(f'Document is missing a non-empty primary field "{primary_field}".')
        self.primary_field = primary_field


class RetryBudgetExhaustedError(FullTextError):
    """Raised when the store keeps returning unprocessed requests past the retry budget."""

    def __init__(self, operation: str, attempts: int, unprocessed: int) -> None:
        super().__init__(
            f"{operation} gave up after {attempts} attempts with {unprocessed} requests still unprocessed"
        )
        self.operation = operation
        self.attempts = attempts
        self.unprocessed = unprocessed


class StoreError(FullTextError):
    """Raised by the bundled store clients for requests the store would reject."""
