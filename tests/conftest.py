"""
Shared pytest fixtures and configuration for readlater-sync tests.
"""

from typing import Callable

import pytest

from core.models import Article, SyncStatus
from storage.repository import ArticleRepository
from storage.sqlite import SQLiteArticleStore

# 2023-11-14T22:13:20Z, a fixed "now" for deterministic time math.
NOW_MS = 1_700_000_000_000
DAY_MS = 24 * 60 * 60 * 1000


# ============================================================================
# Fixtures: Article
# ============================================================================

@pytest.fixture
def make_article() -> Callable[..., Article]:
    """Factory for valid articles; keyword overrides win over the defaults."""

    def _make(url: str = "https://example.com/post", **overrides) -> Article:
        fields = {
            "url": url,
            "title": "Example Post",
            "domain": "example.com",
            "timestamp": NOW_MS - DAY_MS * 30,
            "sync_status": SyncStatus.SYNCED,
        }
        fields.update(overrides)
        return Article(**fields)

    return _make


# ============================================================================
# Fixtures: Storage
# ============================================================================

@pytest.fixture
def db_path(tmp_path):
    """Temporary SQLite database path."""
    return tmp_path / "readlater.db"


@pytest.fixture
def store(db_path) -> SQLiteArticleStore:
    return SQLiteArticleStore(db_path)


@pytest.fixture
def repository(store: SQLiteArticleStore) -> ArticleRepository:
    """Repository pinned to NOW_MS so recency and edit stamps are predictable."""
    return ArticleRepository(store, now_ms_fn=lambda: NOW_MS)


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "contract: remote row and storage contract tests")
    config.addinivalue_line("markers", "integration: end-to-end integration tests")
    config.addinivalue_line("markers", "unit: unit tests")
