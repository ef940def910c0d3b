"""Integration tests for repository mutations, queued operations and the count cache."""

from __future__ import annotations

import json

import pytest

from core.errors import ArticleNotFound
from core.models import (
    ArticleFilters,
    CreateOperation,
    DeleteOperation,
    SyncStatus,
    UpdateOperation,
)
from storage.repository import ArticleRepository

NOW_MS = 1_700_000_000_000
DAY_MS = 24 * 60 * 60 * 1000


def _parse_json_lines(captured: str) -> list[dict[str, object]]:
    """Decode structured log lines emitted to stdout."""
    lines = [line for line in captured.splitlines() if line.strip()]
    return [json.loads(line) for line in lines]


class MutableClock:
    """Manually advanced clock for TTL and retention tests."""

    def __init__(self, value: float) -> None:
        self.value = value

    def __call__(self) -> float:
        return self.value


@pytest.mark.integration
def test_save_new_article_queues_create(repository, make_article):
    saved = repository.save(make_article(sync_status=SyncStatus.SYNCED))

    assert saved.sync_status == SyncStatus.PENDING
    assert repository.get_by_url(saved.url).sync_status == SyncStatus.PENDING

    operations = repository.get_pending_sync_operations()
    assert len(operations) == 1
    assert isinstance(operations[0], CreateOperation)
    assert operations[0].article.url == saved.url
    assert operations[0].timestamp == NOW_MS
    assert repository.get_pending_articles_count() == 1


@pytest.mark.integration
def test_save_known_article_queues_update_with_changed_fields(repository, make_article):
    repository.save(make_article())
    repository.clear_sync_queue()

    repository.save(make_article(title="Renamed", favorite=True))

    [operation] = repository.get_pending_sync_operations()
    assert isinstance(operation, UpdateOperation)
    assert operation.changed_fields == ["favorite", "title"]
    assert operation.article.title == "Renamed"


@pytest.mark.integration
def test_update_merges_and_stamps_edited_at(repository, make_article):
    original = repository.save(make_article(tags=["a"]))
    repository.clear_sync_queue()

    updated = repository.update(original.url, tags=["a", "b"], notes="read later")

    assert updated.tags == ["a", "b"]
    assert updated.notes == "read later"
    assert updated.edited_at == NOW_MS
    assert updated.timestamp == original.timestamp
    assert repository.get_by_url(original.url) == updated

    [operation] = repository.get_pending_sync_operations()
    assert isinstance(operation, UpdateOperation)
    assert operation.changed_fields == ["notes", "tags"]


@pytest.mark.integration
def test_update_missing_article_raises(repository):
    with pytest.raises(ArticleNotFound) as excinfo:
        repository.update("https://missing.example/", title="x")

    assert excinfo.value.url == "https://missing.example/"
    assert str(excinfo.value) == "Article not found: https://missing.example/"
    assert repository.get_sync_queue_count() == 0


@pytest.mark.integration
def test_update_rejects_identity_fields(repository, make_article):
    article = repository.save(make_article())

    with pytest.raises(ValueError, match="url"):
        repository.update(article.url, url="https://other.example/")


@pytest.mark.integration
def test_delete_queues_delete_operation(repository, make_article):
    article = repository.save(make_article())
    repository.clear_sync_queue()

    repository.delete(article.url)

    assert repository.get_by_url(article.url) is None
    [operation] = repository.get_pending_sync_operations()
    assert isinstance(operation, DeleteOperation)
    assert operation.article_url == article.url


@pytest.mark.integration
def test_delete_local_only_queues_nothing(repository, make_article):
    article = repository.save(make_article())
    repository.clear_sync_queue()

    repository.delete_local_only(article.url)

    assert repository.get_by_url(article.url) is None
    assert repository.get_sync_queue_count() == 0


@pytest.mark.integration
def test_count_cache_expires_and_is_cleared_by_mutations(store, make_article):
    clock = MutableClock(100.0)
    repository = ArticleRepository(store, count_cache_ttl_seconds=30, clock_fn=clock, now_ms_fn=lambda: NOW_MS)
    repository.save(make_article("https://example.com/1"))
    assert repository.get_count() == 1

    # A write that bypasses the repository is invisible until the entry expires.
    store.put_article(make_article("https://example.com/2"))
    clock.value = 129.0
    assert repository.get_count() == 1
    clock.value = 131.0
    assert repository.get_count() == 2

    repository.save(make_article("https://example.com/3"))
    assert repository.get_count() == 3
    assert repository.get_count(ArticleFilters(sync_status=SyncStatus.PENDING)) == 2


@pytest.mark.integration
def test_soft_delete_and_restore(repository, make_article):
    article = repository.save(make_article())
    repository.clear_sync_queue()

    deleted = repository.soft_delete(article.url)
    assert deleted.deleted_at == NOW_MS
    assert deleted.is_deleted
    assert deleted.change_time == NOW_MS
    assert repository.get_count(ArticleFilters(deleted=False)) == 0

    restored = repository.restore(article.url)
    assert restored.deleted_at is None
    assert repository.get_count(ArticleFilters(deleted=False)) == 1

    operations = repository.get_pending_sync_operations()
    assert [op.type for op in operations] == ["update", "update"]
    assert all(op.changed_fields == ["deleted_at"] for op in operations)


@pytest.mark.integration
def test_soft_delete_missing_article_raises(repository):
    with pytest.raises(ArticleNotFound):
        repository.soft_delete("https://missing.example/")


@pytest.mark.integration
def test_purge_deleted_after_retention(store, make_article, capsys):
    now = MutableClock(NOW_MS)
    repository = ArticleRepository(store, now_ms_fn=lambda: int(now()))
    expired = repository.save(make_article("https://example.com/expired"))
    fresh = repository.save(make_article("https://example.com/fresh"))
    repository.soft_delete(expired.url)
    now.value = NOW_MS + 20 * DAY_MS
    repository.soft_delete(fresh.url)
    repository.clear_sync_queue()
    capsys.readouterr()

    now.value = NOW_MS + 31 * DAY_MS
    purged = repository.purge_deleted(older_than_days=30, run_id="run-purge")

    assert purged == 1
    assert repository.get_by_url(expired.url) is None
    assert repository.get_by_url(fresh.url) is not None
    [operation] = repository.get_pending_sync_operations()
    assert isinstance(operation, DeleteOperation)
    assert operation.article_url == expired.url

    events = _parse_json_lines(capsys.readouterr().out)
    assert events[-1]["event_type"] == "repository_purged_deleted"
    assert events[-1]["purged_count"] == 1
    assert events[-1]["run_id"] == "run-purge"


@pytest.mark.integration
def test_sync_side_writes_do_not_queue(repository, make_article):
    article = repository.save(make_article())
    repository.clear_sync_queue()

    repository.mark_as_synced(article.url)
    repository.mark_as_synced("https://missing.example/")
    repository.bulk_update([make_article("https://example.com/pulled")])

    assert repository.get_by_url(article.url).sync_status == SyncStatus.SYNCED
    assert repository.get_by_url("https://example.com/pulled") is not None
    assert repository.get_sync_queue_count() == 0
    assert repository.get_pending_articles_count() == 0


@pytest.mark.integration
def test_get_all_articles_includes_soft_deleted_newest_first(repository, make_article):
    repository.bulk_update(
        [
            make_article("https://example.com/old", timestamp=NOW_MS - 2 * DAY_MS),
            make_article("https://example.com/new", timestamp=NOW_MS - DAY_MS),
        ]
    )
    repository.soft_delete("https://example.com/new")

    articles = repository.get_all_articles()

    assert [a.url for a in articles] == ["https://example.com/new", "https://example.com/old"]
    assert articles[0].is_deleted


@pytest.mark.integration
def test_retry_count_survives_reload(repository, make_article):
    repository.save(make_article())
    [operation] = repository.get_pending_sync_operations()

    repository.increment_sync_retry_count(operation.id)
    repository.increment_sync_retry_count(operation.id)

    [reloaded] = repository.get_pending_sync_operations()
    assert reloaded.id == operation.id
    assert reloaded.retry_count == 2

    repository.remove_sync_operation(operation.id)
    assert repository.get_sync_queue_count() == 0


@pytest.mark.integration
def test_queue_order_is_insertion_order(store, make_article):
    ticks = iter(range(NOW_MS, NOW_MS + 10))
    repository = ArticleRepository(store, now_ms_fn=lambda: next(ticks))

    repository.save(make_article("https://example.com/1"))
    repository.save(make_article("https://example.com/2"))
    repository.delete("https://example.com/1")

    operations = repository.get_pending_sync_operations()
    assert [(op.type, op.article_url) for op in operations] == [
        ("create", "https://example.com/1"),
        ("create", "https://example.com/2"),
        ("delete", "https://example.com/1"),
    ]
