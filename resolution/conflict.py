"""Last-write-wins conflict resolution between a local and a remote article."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from core.config import SyncConfig
from core.models import Article, SyncStatus
from core.structured_logging import emit_json_event

Side = Literal["local", "remote"]


@dataclass(frozen=True)
class ConflictDecision:
    """Outcome of resolving one local/remote pair."""

    winner: Article
    side: Side
    reason: str


def resolve_conflict(
    local: Article,
    remote: Article,
    run_id: str | None = None,
    grace_window_ms: int = SyncConfig.CONFLICT_GRACE_WINDOW_MS,
    suspicious_gap_ms: int = SyncConfig.SUSPICIOUS_GAP_MS,
) -> ConflictDecision:
    """
    Pick the version of one article to keep after a pull.

    Rules, in order:
    1. URL mismatch or a remote missing title/domain: local wins.
    2. Compare change times (deleted_at, then edited_at, then timestamp).
       A gap larger than `suspicious_gap_ms` is logged but not acted on.
    3. Local pending: remote wins only when newer by more than the grace window.
    4. Local synced: remote wins only when strictly newer; ties keep local.

    Deterministic for identical inputs.
    """
    if local.url != remote.url:
        emit_json_event(
            event_type="conflict_url_mismatch",
            run_id=run_id,
            level="error",
            component="resolution",
            local_url=local.url,
            remote_url=remote.url,
        )
        return ConflictDecision(winner=local, side="local", reason="url_mismatch")

    if not remote.title or not remote.domain:
        emit_json_event(
            event_type="conflict_remote_corrupted",
            run_id=run_id,
            level="warning",
            component="resolution",
            url=local.url,
        )
        return ConflictDecision(winner=local, side="local", reason="remote_corrupted")

    local_time = local.change_time
    remote_time = remote.change_time

    gap_ms = abs(local_time - remote_time)
    if gap_ms > suspicious_gap_ms:
        emit_json_event(
            event_type="conflict_suspicious_gap",
            run_id=run_id,
            level="warning",
            component="resolution",
            url=local.url,
            gap_ms=gap_ms,
        )

    if local.sync_status == SyncStatus.PENDING:
        if remote_time > local_time + grace_window_ms:
            return ConflictDecision(winner=remote, side="remote", reason="remote_newer_than_grace")
        return ConflictDecision(winner=local, side="local", reason="local_pending")

    if remote_time > local_time:
        return ConflictDecision(winner=remote, side="remote", reason="remote_newer")
    return ConflictDecision(winner=local, side="local", reason="local_not_older")


def pick_winner(local: Article, remote: Article, run_id: str | None = None) -> Article:
    """Return just the winning Article of `resolve_conflict`."""
    return resolve_conflict(local, remote, run_id=run_id).winner
