"""Article repository: pagination, search, CRUD with queued outgoing changes."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

from core.clock import now_ms
from core.config import SyncConfig
from core.errors import ArticleNotFound
from core.models import (
    Article,
    ArticleFilters,
    CreateOperation,
    DeleteOperation,
    PaginatedResult,
    PaginationCursor,
    SortOrder,
    SyncOperation,
    SyncStatus,
    UpdateOperation,
)
from core.structured_logging import emit_json_event
from storage.sqlite import SQLiteArticleStore

DAY_MS = int(timedelta(days=1).total_seconds() * 1000)

# Fields a caller may change through `update`; identity and sync bookkeeping are excluded.
MUTABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "featured_image",
        "domain",
        "tags",
        "notes",
        "archived",
        "favorite",
    }
)


@dataclass(slots=True)
class CountCacheEntry:
    """Memoized count for one filter set."""

    count: int
    expires_at: float


def _search_terms(query: str) -> list[str]:
    """Lowercase whitespace tokens longer than one character."""
    return [term for term in query.lower().split() if len(term) > 1]


def relevance_score(article: Article, terms: list[str], now: int) -> float:
    """
    Score one article against already-tokenized search terms.

    Per term: title exact +10, title prefix +5, title substring +3,
    description +1, any tag +2, domain +1. Articles that matched at least
    once and are younger than the recency window get a +0.5 bonus.
    """
    score = 0.0
    title = article.title.lower()
    description = (article.description or "").lower()
    domain = article.domain.lower()
    tags = [tag.lower() for tag in article.tags]

    for term in terms:
        if term in title:
            if title == term:
                score += 10
            elif title.startswith(term):
                score += 5
            else:
                score += 3
        if term in description:
            score += 1
        if any(term in tag for tag in tags):
            score += 2
        if term in domain:
            score += 1

    if score > 0:
        age_ms = now - article.timestamp
        if age_ms < SyncConfig.RECENCY_WINDOW_DAYS * DAY_MS:
            score += SyncConfig.RECENCY_BONUS
    return score


class ArticleRepository:
    """
    Query and mutate articles on top of SQLiteArticleStore.

    Every user-facing mutation writes the article and its SyncOperation in a
    single transaction, and clears the count cache.
    """

    def __init__(
        self,
        store: SQLiteArticleStore,
        count_cache_ttl_seconds: float = SyncConfig.COUNT_CACHE_TTL_SECONDS,
        clock_fn: Callable[[], float] | None = None,
        now_ms_fn: Callable[[], int] | None = None,
    ) -> None:
        """Initialize repository with optional test-time clock hooks."""
        self.store = store
        self.count_cache_ttl_seconds = count_cache_ttl_seconds
        self._clock = clock_fn or time.monotonic
        self._now_ms = now_ms_fn or now_ms
        self._count_cache: dict[str, CountCacheEntry] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_paginated(
        self,
        filters: ArticleFilters | None = None,
        limit: int = SyncConfig.DEFAULT_PAGE_SIZE,
        cursor: PaginationCursor | None = None,
        sort_order: SortOrder | str = SortOrder.DESC,
    ) -> PaginatedResult:
        """
        Return one page of filtered articles ordered by (timestamp, url).

        Fetches limit+1 rows to derive has_more. next_cursor points at the
        last returned row and is only set when more rows exist.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        rows = self.store.select_articles(
            filters=filters,
            limit=limit + 1,
            cursor=cursor,
            sort_order=SortOrder(sort_order),
        )
        has_more = len(rows) > limit
        items = rows[:limit]
        next_cursor = None
        if has_more and items:
            last = items[-1]
            next_cursor = PaginationCursor(timestamp=last.timestamp, url=last.url)
        return PaginatedResult(items=items, has_more=has_more, next_cursor=next_cursor)

    def search_paginated(
        self,
        query: str,
        limit: int = SyncConfig.DEFAULT_PAGE_SIZE,
        cursor: PaginationCursor | None = None,
    ) -> PaginatedResult:
        """Relevance-ranked search; ties keep store order (newest first)."""
        terms = _search_terms(query)
        if not terms:
            return PaginatedResult(items=[], has_more=False)

        now = self._now_ms()
        scored: list[tuple[float, Article]] = []
        for article in self.store.iter_articles():
            score = relevance_score(article, terms, now)
            if score > 0:
                scored.append((score, article))
        scored.sort(key=lambda item: item[0], reverse=True)

        start = 0
        if cursor is not None:
            # A cursor that no longer matches any article restarts from the top.
            for index, (_, article) in enumerate(scored):
                if article.timestamp == cursor.timestamp and article.url == cursor.url:
                    start = index + 1
                    break

        items = [article for _, article in scored[start : start + limit]]
        has_more = start + limit < len(scored)
        next_cursor = None
        if has_more and items:
            next_cursor = PaginationCursor(timestamp=items[-1].timestamp, url=items[-1].url)
        return PaginatedResult(
            items=items,
            has_more=has_more,
            next_cursor=next_cursor,
            total_count=len(scored),
        )

    def get_count(self, filters: ArticleFilters | None = None) -> int:
        """Count matching articles, memoized per filter set."""
        key = (filters or ArticleFilters()).cache_key()
        now = self._clock()
        cached = self._count_cache.get(key)
        if cached and cached.expires_at > now:
            return cached.count

        count = self.store.count_articles(filters)
        self._count_cache[key] = CountCacheEntry(
            count=count,
            expires_at=now + self.count_cache_ttl_seconds,
        )
        return count

    def ping(self) -> int:
        """Uncached trial read of the local store."""
        return self.store.ping()

    def get_by_url(self, url: str) -> Article | None:
        return self.store.get(url)

    def get_articles_by_domain(self, domain: str) -> list[Article]:
        """Articles for one domain, newest first."""
        return self.store.select_articles(filters=ArticleFilters(domain=domain))

    def get_all_articles(self) -> list[Article]:
        return list(self.store.iter_articles())

    # ------------------------------------------------------------------
    # Mutations (queue outgoing changes)
    # ------------------------------------------------------------------

    def save(self, article: Article) -> Article:
        """
        Store an article as pending and queue create (new URL) or update (known URL).

        edited_at is left as given; only `update` stamps it.
        """
        existing = self.store.get(article.url)
        to_save = article.model_copy(update={"sync_status": SyncStatus.PENDING})
        operation: SyncOperation
        if existing is None:
            operation = CreateOperation(
                article_url=to_save.url,
                article=to_save,
                timestamp=self._now_ms(),
            )
        else:
            operation = UpdateOperation(
                article_url=to_save.url,
                article=to_save,
                changed_fields=_changed_fields(existing, to_save),
                timestamp=self._now_ms(),
            )
        self.store.put_article(to_save, operation)
        self._invalidate_counts()
        return to_save

    def update(self, url: str, **changes: Any) -> Article:
        """
        Merge changes into the stored article, stamp edited_at and queue an update.

        Raises:
            ArticleNotFound: If no article is stored under url.
            ValueError: If a change names a field that cannot be edited.
        """
        existing = self.store.get(url)
        if existing is None:
            raise ArticleNotFound(url)

        unknown = set(changes) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot update fields: {', '.join(sorted(unknown))}")

        now = self._now_ms()
        merged = Article.model_validate(
            {
                **existing.model_dump(),
                **changes,
                "sync_status": SyncStatus.PENDING,
                "edited_at": max(now, existing.timestamp),
            }
        )
        self._write_update(merged, sorted(changes))
        return merged

    def delete(self, url: str) -> None:
        """Remove the article locally and queue a remote delete."""
        operation = DeleteOperation(article_url=url, timestamp=self._now_ms())
        self.store.delete_article(url, operation)
        self._invalidate_counts()

    def delete_local_only(self, url: str) -> None:
        """Remove the article without queueing anything."""
        self.store.delete_article(url)
        self._invalidate_counts()

    def soft_delete(self, url: str) -> Article:
        """Mark an article deleted (kept locally until purged) and queue an update."""
        existing = self.store.get(url)
        if existing is None:
            raise ArticleNotFound(url)
        now = max(self._now_ms(), existing.timestamp)
        marked = existing.model_copy(
            update={
                "deleted_at": now,
                "edited_at": now,
                "sync_status": SyncStatus.PENDING,
            }
        )
        self._write_update(marked, ["deleted_at"])
        return marked

    def restore(self, url: str) -> Article:
        """Clear the soft-delete marker and queue an update."""
        existing = self.store.get(url)
        if existing is None:
            raise ArticleNotFound(url)
        now = max(self._now_ms(), existing.timestamp)
        restored = existing.model_copy(
            update={
                "deleted_at": None,
                "edited_at": now,
                "sync_status": SyncStatus.PENDING,
            }
        )
        self._write_update(restored, ["deleted_at"])
        return restored

    def purge_deleted(
        self,
        older_than_days: int = SyncConfig.DELETED_RETENTION_DAYS,
        run_id: str | None = None,
    ) -> int:
        """
        Hard-delete soft-deleted articles past the retention window.

        Goes through `delete`, so each purge reaches the remote store as an
        explicit delete operation. Returns the number of purged articles.
        """
        cutoff = self._now_ms() - older_than_days * DAY_MS
        expired = self.store.list_deleted_before(cutoff)
        for article in expired:
            self.delete(article.url)
        if expired:
            emit_json_event(
                event_type="repository_purged_deleted",
                run_id=run_id,
                component="repository",
                purged_count=len(expired),
                older_than_days=older_than_days,
            )
        return len(expired)

    # ------------------------------------------------------------------
    # Sync-side writes (no queueing)
    # ------------------------------------------------------------------

    def mark_as_synced(self, url: str) -> None:
        """Flip sync_status to synced; a missing article is a no-op."""
        article = self.store.get(url)
        if article is None:
            return
        self.store.put_article(article.model_copy(update={"sync_status": SyncStatus.SYNCED}))
        self._invalidate_counts()

    def bulk_update(self, articles: list[Article]) -> None:
        """Upsert many articles in one transaction without queueing operations."""
        self.store.put_articles(articles)
        self._invalidate_counts()

    # ------------------------------------------------------------------
    # Sync queue
    # ------------------------------------------------------------------

    def get_pending_sync_operations(self) -> list[SyncOperation]:
        return self.store.list_operations()

    def remove_sync_operation(self, operation_id: str) -> None:
        self.store.remove_operation(operation_id)

    def increment_sync_retry_count(self, operation_id: str) -> None:
        self.store.increment_retry_count(operation_id)

    def clear_sync_queue(self) -> None:
        self.store.clear_operations()

    def get_sync_queue_count(self) -> int:
        return self.store.count_operations()

    def get_pending_articles_count(self) -> int:
        return self.store.count_pending_articles()

    # ------------------------------------------------------------------

    def _write_update(self, article: Article, changed_fields: list[str]) -> None:
        operation = UpdateOperation(
            article_url=article.url,
            article=article,
            changed_fields=changed_fields,
            timestamp=self._now_ms(),
        )
        self.store.put_article(article, operation)
        self._invalidate_counts()

    def _invalidate_counts(self) -> None:
        self._count_cache.clear()


def _changed_fields(before: Article, after: Article) -> list[str]:
    """Names of user-visible fields that differ between two versions."""
    changed = []
    for name in sorted(MUTABLE_FIELDS | {"edited_at", "deleted_at"}):
        if getattr(before, name) != getattr(after, name):
            changed.append(name)
    return changed
