"""Integration tests for cursor pagination and filters over the SQLite store."""

from __future__ import annotations

import pytest

from core.models import ArticleFilters, PaginationCursor, SortOrder, SyncStatus
from storage.repository import ArticleRepository
from storage.sqlite import SQLiteArticleStore


def _seed(store: SQLiteArticleStore, make_article) -> list:
    """Seven articles with three timestamp collisions."""
    specs = [
        ("https://a.example/1", 5_000),
        ("https://a.example/2", 5_000),
        ("https://a.example/3", 5_000),
        ("https://b.example/1", 4_000),
        ("https://b.example/2", 4_000),
        ("https://c.example/1", 3_000),
        ("https://c.example/2", 1_000),
    ]
    articles = [make_article(url, timestamp=timestamp) for url, timestamp in specs]
    store.put_articles(articles)
    return articles


def _walk(repository: ArticleRepository, limit: int, sort_order: SortOrder, filters=None) -> list[str]:
    urls: list[str] = []
    cursor = None
    for _ in range(50):
        page = repository.get_paginated(filters=filters, limit=limit, cursor=cursor, sort_order=sort_order)
        urls.extend(article.url for article in page.items)
        if not page.has_more:
            assert page.next_cursor is None
            return urls
        assert page.next_cursor == PaginationCursor(
            timestamp=page.items[-1].timestamp,
            url=page.items[-1].url,
        )
        cursor = page.next_cursor
    raise AssertionError("pagination did not terminate")


@pytest.mark.integration
@pytest.mark.parametrize("limit", [1, 2, 3, 7, 10])
def test_desc_pages_cover_everything_once(store, repository, make_article, limit):
    """Newest-first paging never duplicates or skips rows on timestamp ties."""
    articles = _seed(store, make_article)

    urls = _walk(repository, limit, SortOrder.DESC)

    expected = [a.url for a in sorted(articles, key=lambda a: (-a.timestamp, a.url))]
    assert urls == expected
    assert len(set(urls)) == len(articles)


@pytest.mark.integration
@pytest.mark.parametrize("limit", [1, 2, 4])
def test_asc_pages_mirror_desc_order(store, repository, make_article, limit):
    """Oldest-first paging walks the exact reverse of the newest-first order."""
    _seed(store, make_article)

    desc = _walk(repository, 100, SortOrder.DESC)
    asc = _walk(repository, limit, SortOrder.ASC)

    assert asc == list(reversed(desc))


@pytest.mark.integration
def test_first_page_flags(store, repository, make_article):
    _seed(store, make_article)

    page = repository.get_paginated(limit=3)
    assert [a.url for a in page.items] == [
        "https://a.example/1",
        "https://a.example/2",
        "https://a.example/3",
    ]
    assert page.has_more is True
    assert page.next_cursor == PaginationCursor(timestamp=5_000, url="https://a.example/3")

    last = repository.get_paginated(limit=10)
    assert last.has_more is False
    assert last.next_cursor is None


@pytest.mark.integration
def test_empty_store_returns_empty_page(repository):
    page = repository.get_paginated()
    assert page.items == []
    assert page.has_more is False
    assert page.next_cursor is None


@pytest.mark.integration
def test_limit_must_be_positive(repository):
    with pytest.raises(ValueError, match="limit"):
        repository.get_paginated(limit=0)


@pytest.mark.integration
def test_filters_combine_with_and(store, repository, make_article):
    """Boolean, domain, tag and status filters narrow the page and the count alike."""
    store.put_articles(
        [
            make_article("https://a.example/1", domain="a.example", favorite=True, tags=["python"]),
            make_article("https://a.example/2", domain="a.example", archived=True, tags=["rust"]),
            make_article("https://b.example/1", domain="b.example", favorite=True, tags=["go", "python"]),
            make_article(
                "https://b.example/2",
                domain="b.example",
                sync_status=SyncStatus.PENDING,
                deleted_at=10 ** 12 * 2,
            ),
        ]
    )

    def urls(filters: ArticleFilters) -> list[str]:
        return sorted(a.url for a in repository.get_paginated(filters=filters, limit=50).items)

    assert urls(ArticleFilters(favorite=True)) == ["https://a.example/1", "https://b.example/1"]
    assert urls(ArticleFilters(archived=True)) == ["https://a.example/2"]
    assert urls(ArticleFilters(domain="b.example", favorite=True)) == ["https://b.example/1"]
    assert urls(ArticleFilters(tags=["python", "rust"])) == [
        "https://a.example/1",
        "https://a.example/2",
        "https://b.example/1",
    ]
    assert urls(ArticleFilters(sync_status=SyncStatus.PENDING)) == ["https://b.example/2"]
    assert urls(ArticleFilters(deleted=True)) == ["https://b.example/2"]
    assert len(urls(ArticleFilters(deleted=False))) == 3

    assert repository.get_count(ArticleFilters(favorite=True)) == 2
    assert repository.get_count() == 4


@pytest.mark.integration
def test_filters_with_same_tags_share_cache_key():
    assert ArticleFilters(tags=["b", "a", "b"]).cache_key() == ArticleFilters(tags=["a", "b"]).cache_key()
    assert ArticleFilters(favorite=True).cache_key() != ArticleFilters(favorite=False).cache_key()


@pytest.mark.integration
def test_get_articles_by_domain_is_newest_first(store, repository, make_article):
    store.put_articles(
        [
            make_article("https://a.example/old", domain="a.example", timestamp=1_000),
            make_article("https://a.example/new", domain="a.example", timestamp=2_000),
            make_article("https://b.example/x", domain="b.example", timestamp=3_000),
        ]
    )

    assert [a.url for a in repository.get_articles_by_domain("a.example")] == [
        "https://a.example/new",
        "https://a.example/old",
    ]
