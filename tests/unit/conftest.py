"""Conftest for unit tests - marks every test as a unit test and provides store fixtures."""

import pytest

from fulltext_engine.search.backend import FullTextBackend
from fulltext_engine.store.memory import InMemoryKeyValueStore


def pytest_collection_modifyitems(config, items):
    """Automatically mark all tests in the unit directory as unit tests."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def store():
    """Empty in-memory store with the default table layout."""
    return InMemoryKeyValueStore()


@pytest.fixture
def backend(store):
    return FullTextBackend(store)


@pytest.fixture
def make_backend():
    """Factory building a backend over a fresh in-memory store with custom store/backend options."""

    def _make(*, throttled_calls=None, max_page_size=None, **backend_kwargs):
        memory_store = InMemoryKeyValueStore(throttled_calls=throttled_calls, max_page_size=max_page_size)
        return FullTextBackend(memory_store, **backend_kwargs), memory_store

    return _make
