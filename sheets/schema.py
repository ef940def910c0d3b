"""Flat 11-column row contract between Article and the remote spreadsheet."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Sequence

import jsonschema

from core.clock import iso_to_ms, ms_to_iso
from core.models import Article, SyncStatus

SCHEMA_PATH = Path(__file__).resolve().parent / "remote_article.schema.json"
REMOTE_ARTICLE_SCHEMA = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))

SPREADSHEET_HEADERS: tuple[str, ...] = (
    "URL",
    "Title",
    "Tags",
    "Notes",
    "Description",
    "Featured Image",
    "Timestamp",
    "Domain",
    "Archived",
    "Favorite",
    "Edited At",
)

# Record keys, in column order.
RECORD_FIELDS: tuple[str, ...] = (
    "url",
    "title",
    "tags",
    "notes",
    "description",
    "featured_image",
    "timestamp",
    "domain",
    "archived",
    "favorite",
    "edited_at",
)

TAG_SEPARATOR = ", "
LAST_COLUMN = "K"


def article_to_row(article: Article) -> list[str]:
    """Serialize an Article; absent optionals become empty strings."""
    return [
        article.url,
        article.title,
        TAG_SEPARATOR.join(article.tags),
        article.notes or "",
        article.description or "",
        article.featured_image or "",
        ms_to_iso(article.timestamp),
        article.domain,
        "1" if article.archived else "",
        "1" if article.favorite else "",
        ms_to_iso(article.edited_at) if article.edited_at is not None else "",
    ]


def row_to_record(row: Sequence[Any]) -> dict[str, str]:
    """Map one raw row (possibly short, since trailing blanks are trimmed by the API) to a keyed record."""
    cells = [("" if cell is None else str(cell)) for cell in row]
    cells.extend([""] * (len(RECORD_FIELDS) - len(cells)))
    return dict(zip(RECORD_FIELDS, cells[: len(RECORD_FIELDS)]))


def is_empty_row(row: Sequence[Any] | None) -> bool:
    return not row or not any(str(cell).strip() for cell in row if cell is not None)


def is_valid_record(record: Any) -> bool:
    """True when the record is an object carrying non-blank url and title."""
    try:
        jsonschema.validate(record, REMOTE_ARTICLE_SCHEMA)
    except jsonschema.ValidationError:
        return False
    return True


def _parse_time(value: str) -> int | None:
    text = value.strip()
    if not text:
        return None
    if text.isdigit():
        return int(text)
    return iso_to_ms(text)


def record_to_article(record: dict[str, str]) -> Article:
    """
    Build a synced Article from a remote record.

    Raises:
        ValueError: If the timestamp is missing or unparseable, or the
            resulting Article fails validation.
    """
    timestamp = _parse_time(record.get("timestamp", ""))
    if timestamp is None:
        raise ValueError("remote record has no timestamp")
    tags_text = record.get("tags", "")
    tags = [tag for tag in tags_text.split(TAG_SEPARATOR) if tag.strip()] if tags_text else []

    return Article(
        url=record["url"].strip(),
        title=record.get("title", "").strip(),
        description=record.get("description") or None,
        featured_image=record.get("featured_image") or None,
        domain=record.get("domain", "").strip(),
        tags=tags,
        notes=record.get("notes") or None,
        archived=record.get("archived", "") == "1",
        favorite=record.get("favorite", "") == "1",
        timestamp=timestamp,
        edited_at=_parse_time(record.get("edited_at", "")),
        sync_status=SyncStatus.SYNCED,
    )
