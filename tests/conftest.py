"""Shared test fixtures and configuration."""

import os
from pathlib import Path
import sys

import pytest


SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))


from fulltext_engine.config import get_settings
from fulltext_engine.observability.context import trace_context


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Drop FULLTEXT_* overrides from the developer shell and reset cached settings."""
    for key in list(os.environ):
        if key.upper().startswith("FULLTEXT_"):
            monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_trace_context():
    """Keep doc/field bindings from leaking between tests."""
    token = trace_context.set(None)
    yield
    trace_context.reset(token)
