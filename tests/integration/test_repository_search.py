"""Integration tests for relevance-ranked search."""

from __future__ import annotations

import pytest

from core.models import PaginationCursor
from storage.repository import relevance_score

NOW_MS = 1_700_000_000_000
DAY_MS = 24 * 60 * 60 * 1000
OLD = NOW_MS - 30 * DAY_MS


@pytest.fixture
def seeded(store, make_article):
    store.put_articles(
        [
            make_article("https://x.example/guide", title="JavaScript Complete Guide", timestamp=OLD),
            make_article("https://x.example/complete", title="Complete", tags=["javascript"], timestamp=OLD - 1),
            make_article(
                "https://x.example/cooking",
                title="Cooking",
                description="A complete meal",
                timestamp=OLD - 2,
            ),
            make_article("https://x.example/garden", title="Gardening", timestamp=OLD - 3),
        ]
    )


@pytest.mark.integration
def test_search_ranks_by_score(repository, seeded):
    """Exact title beats prefix, prefix beats substring; zero scores are excluded."""
    page = repository.search_paginated("javascript complete")

    # complete: 10 (title exact) + 2 (tag); guide: 5 (prefix) + 3 (substring); cooking: 1
    assert [a.url for a in page.items] == [
        "https://x.example/complete",
        "https://x.example/guide",
        "https://x.example/cooking",
    ]
    assert page.total_count == 3
    assert page.has_more is False


@pytest.mark.integration
def test_search_cursor_walks_ranked_list(repository, seeded):
    first = repository.search_paginated("javascript complete", limit=1)
    assert [a.url for a in first.items] == ["https://x.example/complete"]
    assert first.has_more is True
    assert first.next_cursor == PaginationCursor(timestamp=OLD - 1, url="https://x.example/complete")

    second = repository.search_paginated("javascript complete", limit=1, cursor=first.next_cursor)
    assert [a.url for a in second.items] == ["https://x.example/guide"]

    third = repository.search_paginated("javascript complete", limit=1, cursor=second.next_cursor)
    assert [a.url for a in third.items] == ["https://x.example/cooking"]
    assert third.has_more is False
    assert third.next_cursor is None


@pytest.mark.integration
def test_single_character_terms_are_ignored(repository, seeded):
    page = repository.search_paginated("a   ")
    assert page.items == []
    assert page.has_more is False


@pytest.mark.integration
def test_equal_scores_keep_newest_first(store, repository, make_article):
    store.put_articles(
        [
            make_article("https://x.example/older", title="Python notes", timestamp=OLD - 10),
            make_article("https://x.example/newer", title="Python notes", timestamp=OLD),
        ]
    )

    page = repository.search_paginated("python")

    assert [a.url for a in page.items] == ["https://x.example/newer", "https://x.example/older"]


@pytest.mark.unit
def test_recency_bonus_only_for_matches(make_article):
    recent = make_article(title="Python tips", timestamp=NOW_MS - DAY_MS)
    old = make_article(title="Python tips", timestamp=NOW_MS - 8 * DAY_MS)

    assert relevance_score(recent, ["python"], NOW_MS) == 5.5
    assert relevance_score(old, ["python"], NOW_MS) == 5.0
    assert relevance_score(recent, ["rust"], NOW_MS) == 0.0


@pytest.mark.unit
def test_domain_and_tag_points(make_article):
    article = make_article(title="Notes", domain="realpython.com", tags=["Python3"])

    # tag substring +2, domain substring +1
    assert relevance_score(article, ["python"], NOW_MS) == 3.0
