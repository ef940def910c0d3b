"""SQLite persistence for articles and the outgoing sync queue."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from core.models import (
    Article,
    ArticleFilters,
    PaginationCursor,
    SortOrder,
    SyncOperation,
    SyncStatus,
    parse_operation,
)
from core.structured_logging import emit_json_event

ARTICLE_COLUMNS = (
    "url",
    "title",
    "description",
    "featured_image",
    "domain",
    "tags",
    "notes",
    "archived",
    "favorite",
    "timestamp",
    "edited_at",
    "deleted_at",
    "sync_status",
)


def _article_params(article: Article) -> tuple[Any, ...]:
    """Flatten an Article into column order for INSERT statements."""
    return (
        article.url,
        article.title,
        article.description,
        article.featured_image,
        article.domain,
        json.dumps(article.tags, ensure_ascii=True),
        article.notes,
        int(article.archived),
        int(article.favorite),
        article.timestamp,
        article.edited_at,
        article.deleted_at,
        article.sync_status.value,
    )


def _row_to_article(row: sqlite3.Row) -> Article:
    """Rebuild an Article from one `articles` row."""
    try:
        tags = json.loads(row["tags"] or "[]")
    except json.JSONDecodeError as exc:
        emit_json_event(
            event_type="storage_tags_json_error",
            run_id=None,
            level="warning",
            component="storage",
            url=row["url"],
            error_type=type(exc).__name__,
            error=str(exc),
        )
        tags = []
    return Article(
        url=row["url"],
        title=row["title"],
        description=row["description"],
        featured_image=row["featured_image"],
        domain=row["domain"],
        tags=tags if isinstance(tags, list) else [],
        notes=row["notes"],
        archived=bool(row["archived"]),
        favorite=bool(row["favorite"]),
        timestamp=row["timestamp"],
        edited_at=row["edited_at"],
        deleted_at=row["deleted_at"],
        sync_status=SyncStatus(row["sync_status"]),
    )


def _row_to_operation(row: sqlite3.Row) -> SyncOperation:
    """Parse a queue row; the retry_count column is authoritative over the payload."""
    operation = parse_operation(row["payload"])
    return operation.model_copy(update={"retry_count": int(row["retry_count"])})


def _filter_clauses(filters: ArticleFilters | None) -> tuple[list[str], list[Any]]:
    """Translate ArticleFilters into AND-ed WHERE fragments."""
    clauses: list[str] = []
    params: list[Any] = []
    if filters is None:
        return clauses, params

    if filters.archived is not None:
        clauses.append("archived = ?")
        params.append(int(filters.archived))
    if filters.favorite is not None:
        clauses.append("favorite = ?")
        params.append(int(filters.favorite))
    if filters.domain is not None:
        clauses.append("domain = ?")
        params.append(filters.domain)
    if filters.sync_status is not None:
        clauses.append("sync_status = ?")
        params.append(filters.sync_status.value)
    if filters.deleted is not None:
        clauses.append("deleted_at IS NOT NULL" if filters.deleted else "deleted_at IS NULL")
    if filters.tags:
        placeholders = ", ".join("?" for _ in filters.tags)
        clauses.append(
            f"EXISTS (SELECT 1 FROM json_each(articles.tags) WHERE json_each.value IN ({placeholders}))"
        )
        params.extend(filters.tags)
    return clauses, params


class SQLiteArticleStore:
    """Persist articles and queued outgoing operations to SQLite."""

    def __init__(self, db_path: str | Path, initialize: bool = True) -> None:
        """Initialize store and optionally apply the startup schema."""
        self.db_path = Path(db_path)
        if initialize:
            self.initialize_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        connection = sqlite3.connect(self.db_path)
        connection.row_factory = sqlite3.Row
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def initialize_schema(self) -> None:
        """Apply initial migration schema (idempotent)."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        migration_path = Path(__file__).resolve().parent / "migrations" / "0001_init.sql"
        sql = migration_path.read_text(encoding="utf-8")
        with self._connect() as connection:
            connection.executescript(sql)

    # ------------------------------------------------------------------
    # Articles
    # ------------------------------------------------------------------

    def ping(self) -> int:
        """Trial read used as a reachability probe; returns the article count."""
        with self._connect() as connection:
            row = connection.execute("SELECT COUNT(*) AS total FROM articles").fetchone()
        return int(row["total"])

    def get(self, url: str) -> Article | None:
        with self._connect() as connection:
            row = connection.execute("SELECT * FROM articles WHERE url = ?", (url,)).fetchone()
        return _row_to_article(row) if row else None

    def iter_articles(self) -> Iterator[Article]:
        """Yield every stored article, newest first."""
        with self._connect() as connection:
            rows = connection.execute(
                "SELECT * FROM articles ORDER BY timestamp DESC, url ASC"
            ).fetchall()
        for row in rows:
            yield _row_to_article(row)

    def select_articles(
        self,
        filters: ArticleFilters | None = None,
        limit: int | None = None,
        cursor: PaginationCursor | None = None,
        sort_order: SortOrder = SortOrder.DESC,
    ) -> list[Article]:
        """
        Select filtered articles in cursor order.

        Ordering is (timestamp desc, url asc) for DESC and the exact reverse
        for ASC, which is the same key the cursor inequality compares, so
        pages never overlap or skip rows on timestamp collisions.
        """
        clauses, params = _filter_clauses(filters)

        if sort_order == SortOrder.DESC:
            order_by = "timestamp DESC, url ASC"
            if cursor is not None:
                clauses.append("(timestamp < ? OR (timestamp = ? AND url > ?))")
                params.extend([cursor.timestamp, cursor.timestamp, cursor.url])
        else:
            order_by = "timestamp ASC, url DESC"
            if cursor is not None:
                clauses.append("(timestamp > ? OR (timestamp = ? AND url < ?))")
                params.extend([cursor.timestamp, cursor.timestamp, cursor.url])

        sql = "SELECT * FROM articles"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += f" ORDER BY {order_by}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self._connect() as connection:
            rows = connection.execute(sql, params).fetchall()
        return [_row_to_article(row) for row in rows]

    def count_articles(self, filters: ArticleFilters | None = None) -> int:
        clauses, params = _filter_clauses(filters)
        sql = "SELECT COUNT(*) AS total FROM articles"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        with self._connect() as connection:
            row = connection.execute(sql, params).fetchone()
        return int(row["total"])

    def count_pending_articles(self) -> int:
        return self.count_articles(ArticleFilters(sync_status=SyncStatus.PENDING))

    def list_deleted_before(self, cutoff_ms: int) -> list[Article]:
        """Return soft-deleted articles whose deleted_at is older than cutoff_ms."""
        with self._connect() as connection:
            rows = connection.execute(
                "SELECT * FROM articles WHERE deleted_at IS NOT NULL AND deleted_at < ? "
                "ORDER BY deleted_at, url",
                (cutoff_ms,),
            ).fetchall()
        return [_row_to_article(row) for row in rows]

    def put_article(self, article: Article, operation: SyncOperation | None = None) -> None:
        """Upsert one article and, when given, enqueue its operation in the same transaction."""
        with self._connect() as connection:
            self._upsert_article(connection, article)
            if operation is not None:
                self._insert_operation(connection, operation)

    def put_articles(self, articles: list[Article]) -> None:
        """Bulk upsert in one transaction."""
        if not articles:
            return
        with self._connect() as connection:
            for article in articles:
                self._upsert_article(connection, article)

    def delete_article(self, url: str, operation: SyncOperation | None = None) -> bool:
        """Delete one article (and enqueue its operation) atomically. Returns whether a row existed."""
        with self._connect() as connection:
            cursor = connection.execute("DELETE FROM articles WHERE url = ?", (url,))
            if operation is not None:
                self._insert_operation(connection, operation)
        return cursor.rowcount > 0

    def _upsert_article(self, connection: sqlite3.Connection, article: Article) -> None:
        columns = ", ".join(ARTICLE_COLUMNS)
        placeholders = ", ".join("?" for _ in ARTICLE_COLUMNS)
        updates = ", ".join(f"{name} = excluded.{name}" for name in ARTICLE_COLUMNS if name != "url")
        connection.execute(
            f"""
            INSERT INTO articles ({columns}) VALUES ({placeholders})
            ON CONFLICT(url) DO UPDATE SET {updates}
            """,
            _article_params(article),
        )

    # ------------------------------------------------------------------
    # Sync queue
    # ------------------------------------------------------------------

    def _insert_operation(self, connection: sqlite3.Connection, operation: SyncOperation) -> None:
        connection.execute(
            """
            INSERT INTO sync_queue (id, type, article_url, timestamp, retry_count, payload)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                operation.id,
                operation.type,
                operation.article_url,
                operation.timestamp,
                operation.retry_count,
                operation.model_dump_json(),
            ),
        )

    def enqueue_operation(self, operation: SyncOperation) -> None:
        with self._connect() as connection:
            self._insert_operation(connection, operation)

    def list_operations(self) -> list[SyncOperation]:
        """Return queued operations oldest first; same-millisecond entries keep insertion order."""
        with self._connect() as connection:
            rows = connection.execute(
                "SELECT * FROM sync_queue ORDER BY timestamp ASC, rowid ASC"
            ).fetchall()
        return [_row_to_operation(row) for row in rows]

    def remove_operation(self, operation_id: str) -> None:
        with self._connect() as connection:
            connection.execute("DELETE FROM sync_queue WHERE id = ?", (operation_id,))

    def increment_retry_count(self, operation_id: str) -> None:
        with self._connect() as connection:
            connection.execute(
                "UPDATE sync_queue SET retry_count = retry_count + 1 WHERE id = ?",
                (operation_id,),
            )

    def clear_operations(self) -> None:
        with self._connect() as connection:
            connection.execute("DELETE FROM sync_queue")

    def count_operations(self) -> int:
        with self._connect() as connection:
            row = connection.execute("SELECT COUNT(*) AS total FROM sync_queue").fetchone()
        return int(row["total"])
