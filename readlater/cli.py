"""Minimal CLI entrypoint for readlater-sync."""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any, Sequence
from uuid import uuid4

from core.config import SyncConfig
from core.models import Article, ArticleFilters, PaginatedResult, PaginationCursor, SyncPhase, SyncStatus
from core.structured_logging import emit_json_event
from core.sync import SyncOrchestrator
from quality.urlnorm import clean_url, extract_domain, is_valid_url
from readlater import __version__
from sheets.auth import FileSpreadsheetStorage, OAuthTokenAuthProvider
from sheets.client import GoogleSheetsStore
from storage.repository import ArticleRepository
from storage.sqlite import SQLiteArticleStore

DEFAULT_DB = "readlater.db"
CLIENT_ID_ENV = "READLATER_CLIENT_ID"
SPREADSHEET_ID_ENV = "READLATER_SPREADSHEET_ID"


def _emit_cli_event(
    event_type: str,
    *,
    run_id: str,
    command: str,
    **payload: Any,
) -> str:
    """Emit one structured CLI event line with standard fields."""
    return emit_json_event(
        event_type=event_type,
        run_id=run_id,
        component="cli",
        command=command,
        **payload,
    )


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "y", "on"}:
        return True
    if lowered in {"0", "false", "no", "n", "off"}:
        return False
    raise argparse.ArgumentTypeError(f"expected yes/no, got {value!r}")


def _parse_tags(value: str) -> list[str]:
    return [tag.strip() for tag in value.split(",") if tag.strip()]


def _repository(args: argparse.Namespace) -> ArticleRepository:
    return ArticleRepository(SQLiteArticleStore(args.db))


def _state_path(args: argparse.Namespace, explicit: str | None, suffix: str) -> Path:
    if explicit:
        return Path(explicit)
    db_path = Path(args.db)
    return db_path.with_name(f"{db_path.stem}.{suffix}.json")


def _build_auth_provider(args: argparse.Namespace) -> OAuthTokenAuthProvider:
    return OAuthTokenAuthProvider(
        client_id=args.client_id,
        token_path=_state_path(args, args.token_file, "token"),
        pending_redirect_url=getattr(args, "redirect_url", None),
    )


def _build_orchestrator(args: argparse.Namespace) -> SyncOrchestrator:
    """Wire repository, remote store and auth provider for one CLI invocation."""
    auth_provider = _build_auth_provider(args)
    engine = GoogleSheetsStore(
        auth_provider=auth_provider,
        storage=FileSpreadsheetStorage(_state_path(args, args.spreadsheet_file, "spreadsheet")),
        spreadsheet_id=args.spreadsheet_id,
    )
    return SyncOrchestrator(
        repository=_repository(args),
        engine=engine,
        auth_provider=auth_provider,
        timeout_seconds=args.timeout,
    )


def _cursor_from_args(args: argparse.Namespace) -> PaginationCursor | None:
    if args.cursor_timestamp is None and args.cursor_url is None:
        return None
    if args.cursor_timestamp is None or args.cursor_url is None:
        raise ValueError("--cursor-timestamp and --cursor-url must be given together")
    return PaginationCursor(timestamp=args.cursor_timestamp, url=args.cursor_url)


def _page_payload(page: PaginatedResult) -> dict[str, Any]:
    return page.model_dump(mode="json")


def _cmd_add(args: argparse.Namespace) -> int:
    """Clean the URL and save a new (or re-saved) article as pending."""
    run_id = str(uuid4())
    url = clean_url(args.url)
    if not is_valid_url(url):
        raise ValueError(f"Not an http(s) URL: {args.url}")

    repository = _repository(args)
    existed = repository.get_by_url(url) is not None
    article = repository.save(
        Article(
            url=url,
            title=args.title or url,
            description=args.description,
            featured_image=args.featured_image,
            domain=extract_domain(url),
            tags=_parse_tags(args.tags) if args.tags else [],
            notes=args.notes,
            favorite=args.favorite,
            archived=args.archived,
        )
    )
    _emit_cli_event(
        "cli_add_completed",
        run_id=run_id,
        command="add",
        db=str(args.db),
        url=article.url,
        queued_operation="update" if existed else "create",
    )
    return 0


def _cmd_list(args: argparse.Namespace) -> int:
    run_id = str(uuid4())
    filters = ArticleFilters(
        archived=args.archived,
        favorite=args.favorite,
        domain=args.domain,
        sync_status=SyncStatus.PENDING if args.pending else None,
        deleted=None if args.include_deleted else False,
        tags=args.tag or None,
    )
    repository = _repository(args)
    page = repository.get_paginated(
        filters=filters,
        limit=args.limit,
        cursor=_cursor_from_args(args),
        sort_order=args.order,
    )
    page.total_count = repository.get_count(filters)
    _emit_cli_event(
        "cli_list_completed",
        run_id=run_id,
        command="list",
        db=str(args.db),
        **_page_payload(page),
    )
    return 0


def _cmd_search(args: argparse.Namespace) -> int:
    run_id = str(uuid4())
    page = _repository(args).search_paginated(
        args.query,
        limit=args.limit,
        cursor=_cursor_from_args(args),
    )
    _emit_cli_event(
        "cli_search_completed",
        run_id=run_id,
        command="search",
        db=str(args.db),
        query=args.query,
        **_page_payload(page),
    )
    return 0


def _cmd_update(args: argparse.Namespace) -> int:
    run_id = str(uuid4())
    changes: dict[str, Any] = {}
    for name in ("title", "description", "featured_image", "notes", "archived", "favorite"):
        value = getattr(args, name)
        if value is not None:
            changes[name] = value
    if args.tags is not None:
        changes["tags"] = _parse_tags(args.tags)
    if not changes:
        raise ValueError("Nothing to update: pass at least one field option")

    article = _repository(args).update(args.url, **changes)
    _emit_cli_event(
        "cli_update_completed",
        run_id=run_id,
        command="update",
        db=str(args.db),
        url=article.url,
        changed_fields=sorted(changes),
    )
    return 0


def _cmd_delete(args: argparse.Namespace) -> int:
    run_id = str(uuid4())
    repository = _repository(args)
    if args.soft:
        repository.soft_delete(args.url)
    else:
        repository.delete(args.url)
    _emit_cli_event(
        "cli_delete_completed",
        run_id=run_id,
        command="delete",
        db=str(args.db),
        url=args.url,
        soft=bool(args.soft),
    )
    return 0


def _cmd_restore(args: argparse.Namespace) -> int:
    run_id = str(uuid4())
    article = _repository(args).restore(args.url)
    _emit_cli_event(
        "cli_restore_completed",
        run_id=run_id,
        command="restore",
        db=str(args.db),
        url=article.url,
    )
    return 0


def _cmd_pending(args: argparse.Namespace) -> int:
    """Show the outgoing queue and the number of pending articles."""
    run_id = str(uuid4())
    repository = _repository(args)
    operations = repository.get_pending_sync_operations()
    if args.clear:
        repository.clear_sync_queue()
    _emit_cli_event(
        "cli_pending_completed",
        run_id=run_id,
        command="pending",
        db=str(args.db),
        pending_articles=repository.get_pending_articles_count(),
        cleared=bool(args.clear),
        operations=[
            {
                "id": operation.id,
                "type": operation.type,
                "article_url": operation.article_url,
                "timestamp": operation.timestamp,
                "retry_count": operation.retry_count,
            }
            for operation in operations
        ],
    )
    return 0


def _cmd_auth(args: argparse.Namespace) -> int:
    run_id = str(uuid4())
    orchestrator = _build_orchestrator(args)
    if args.status:
        state = orchestrator.check_auth_status()
        _emit_cli_event(
            "cli_auth_status",
            run_id=run_id,
            command="auth",
            status=state.status.value,
        )
        return 0 if state.status == SyncPhase.IDLE else 1

    result = orchestrator.authenticate()
    _emit_cli_event(
        "cli_auth_completed",
        run_id=run_id,
        command="auth",
        success=result.success,
        error=result.error,
        state=orchestrator.get_state().model_dump(mode="json"),
    )
    return 0 if result.success else 1


def _cmd_sync(args: argparse.Namespace) -> int:
    run_id = str(uuid4())
    orchestrator = _build_orchestrator(args)
    result = orchestrator.sync_now()
    _emit_cli_event(
        "cli_sync_completed",
        run_id=run_id,
        command="sync",
        db=str(args.db),
        success=result.success,
        error=result.error,
        state=orchestrator.get_state().model_dump(mode="json"),
    )
    return 0 if result.success else 1


def _add_db_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--db", default=DEFAULT_DB, help="SQLite DB path")


def _add_cursor_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--limit", type=int, default=SyncConfig.DEFAULT_PAGE_SIZE, help="Page size")
    parser.add_argument("--cursor-timestamp", type=int, help="next_cursor.timestamp from the previous page")
    parser.add_argument("--cursor-url", help="next_cursor.url from the previous page")


def _add_remote_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--client-id",
        default=os.environ.get(CLIENT_ID_ENV),
        help=f"OAuth client id (default: ${CLIENT_ID_ENV})",
    )
    parser.add_argument(
        "--spreadsheet-id",
        default=os.environ.get(SPREADSHEET_ID_ENV),
        help=f"Spreadsheet id to sync with (default: ${SPREADSHEET_ID_ENV}, else discovered)",
    )
    parser.add_argument("--token-file", help="Token JSON path (default: next to --db)")
    parser.add_argument("--spreadsheet-file", help="Spreadsheet id JSON path (default: next to --db)")
    parser.add_argument(
        "--timeout",
        type=float,
        default=SyncConfig.SYNC_TIMEOUT_SECONDS,
        help="Sync cycle timeout in seconds",
    )


def _add_article_field_arguments(parser: argparse.ArgumentParser, *, defaults: bool) -> None:
    bool_default = False if defaults else None
    parser.add_argument("--title", help="Article title")
    parser.add_argument("--description", help="Short description")
    parser.add_argument("--featured-image", help="Image URL")
    parser.add_argument("--notes", help="Free-form notes")
    parser.add_argument("--tags", help="Comma-separated tags")
    parser.add_argument("--archived", type=_parse_bool, default=bool_default, help="yes/no")
    parser.add_argument("--favorite", type=_parse_bool, default=bool_default, help="yes/no")


def build_parser() -> argparse.ArgumentParser:
    """Create argument parser for the readlater CLI."""
    parser = argparse.ArgumentParser(
        prog="readlater",
        description="Offline-first read-later store with Google Sheets sync",
    )
    parser.add_argument("--version", action="version", version=f"readlater {__version__}")

    subparsers = parser.add_subparsers(dest="command")

    add_parser = subparsers.add_parser("add", help="Save an article locally and queue it for sync")
    add_parser.add_argument("url", help="Article URL (tracking params are stripped)")
    _add_article_field_arguments(add_parser, defaults=True)
    _add_db_argument(add_parser)
    add_parser.set_defaults(func=_cmd_add)

    list_parser = subparsers.add_parser("list", help="List articles, newest first")
    _add_cursor_arguments(list_parser)
    list_parser.add_argument("--order", choices=("desc", "asc"), default="desc", help="Timestamp order")
    list_parser.add_argument("--archived", type=_parse_bool, help="Filter on archived yes/no")
    list_parser.add_argument("--favorite", type=_parse_bool, help="Filter on favorite yes/no")
    list_parser.add_argument("--domain", help="Filter on domain")
    list_parser.add_argument("--tag", action="append", help="Filter on tag (repeatable, any-of)")
    list_parser.add_argument("--pending", action="store_true", help="Only articles not yet synced")
    list_parser.add_argument("--include-deleted", action="store_true", help="Include soft-deleted articles")
    _add_db_argument(list_parser)
    list_parser.set_defaults(func=_cmd_list)

    search_parser = subparsers.add_parser("search", help="Relevance-ranked search")
    search_parser.add_argument("query", help="Search terms")
    _add_cursor_arguments(search_parser)
    _add_db_argument(search_parser)
    search_parser.set_defaults(func=_cmd_search)

    update_parser = subparsers.add_parser("update", help="Edit fields of a saved article")
    update_parser.add_argument("url", help="Stored article URL")
    _add_article_field_arguments(update_parser, defaults=False)
    _add_db_argument(update_parser)
    update_parser.set_defaults(func=_cmd_update)

    delete_parser = subparsers.add_parser("delete", help="Delete an article and queue the remote delete")
    delete_parser.add_argument("url", help="Stored article URL")
    delete_parser.add_argument("--soft", action="store_true", help="Mark deleted; purge after retention")
    _add_db_argument(delete_parser)
    delete_parser.set_defaults(func=_cmd_delete)

    restore_parser = subparsers.add_parser("restore", help="Undo a soft delete")
    restore_parser.add_argument("url", help="Stored article URL")
    _add_db_argument(restore_parser)
    restore_parser.set_defaults(func=_cmd_restore)

    pending_parser = subparsers.add_parser("pending", help="Show the outgoing sync queue")
    pending_parser.add_argument("--clear", action="store_true", help="Drop every queued operation")
    _add_db_argument(pending_parser)
    pending_parser.set_defaults(func=_cmd_pending)

    auth_parser = subparsers.add_parser("auth", help="Authenticate with Google")
    auth_parser.add_argument(
        "--redirect-url",
        help="Full redirect URL (with #access_token=...) copied from the browser",
    )
    auth_parser.add_argument("--status", action="store_true", help="Only report whether a token is stored")
    _add_remote_arguments(auth_parser)
    _add_db_argument(auth_parser)
    auth_parser.set_defaults(func=_cmd_auth)

    sync_parser = subparsers.add_parser("sync", help="Run one sync cycle with the spreadsheet")
    _add_remote_arguments(sync_parser)
    _add_db_argument(sync_parser)
    sync_parser.set_defaults(func=_cmd_sync)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Execute CLI and return process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    try:
        return int(args.func(args))
    except Exception as exc:
        _emit_cli_event(
            "cli_error",
            run_id=str(uuid4()),
            command=str(getattr(args, "command", "unknown")),
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return 1


def cli() -> None:
    """Console-script entrypoint."""
    raise SystemExit(main())


if __name__ == "__main__":
    raise SystemExit(main())
