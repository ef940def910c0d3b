"""
Sync orchestrator for readlater-sync.

One cycle moves through fixed phases:
preconditions → checkpoint → drain outgoing queue → pull and merge → purge → verify → commit

Rules:
- At most one cycle runs at a time; a second caller is rejected, not queued
- Every cycle ends in `idle`, `error` or `auth-required`, never `syncing`
- Deletions reach the remote store only through explicit delete operations;
  absence from the remote list never deletes a local article
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable
from uuid import uuid4

from core.clock import now_ms
from core.config import SyncConfig
from core.errors import (
    AuthenticationRequired,
    PreconditionFailure,
    SyncTimeout,
    ValidationFailure,
)
from core.interfaces import AuthProvider, RemoteWriteResult, SpreadsheetStorage, SyncEngine
from core.models import (
    Article,
    CreateOperation,
    DeleteOperation,
    SyncCheckpoint,
    SyncOperation,
    SyncPhase,
    SyncResult,
    SyncState,
    SyncStatus,
    UpdateOperation,
)
from core.state import StateListener, SyncStateChannel
from core.structured_logging import emit_json_event
from resolution.conflict import resolve_conflict
from storage.repository import ArticleRepository

__all__ = [
    "AuthProvider",
    "RemoteWriteResult",
    "SpreadsheetStorage",
    "SyncEngine",
    "SyncOrchestrator",
]

ALREADY_RUNNING = "Sync already in progress"
AUTH_REQUIRED_MESSAGE = "Authentication required"
REDIRECTING_MESSAGE = "Redirecting to authentication"
LOCAL_STORE_UNREACHABLE = "Local database is not accessible"
INTEGRITY_CHECK_FAILED = "Database integrity check failed after sync"
REMOTE_VALIDATION_FAILED = "Remote data validation failed - aborting sync to prevent data loss"


class SyncOrchestrator:
    """
    Drive sync cycles between the local repository and a remote SyncEngine.

    The cycle timeout runs on a timer thread. When it fires while the cycle
    is still `syncing`, it moves the state to `error` and sets a cancellation
    event that the cycle checks between queue operations, before merging and
    before committing. Remote calls already in flight are bounded by the
    engine's own request timeout.
    """

    def __init__(
        self,
        repository: ArticleRepository,
        engine: SyncEngine,
        auth_provider: AuthProvider,
        timeout_seconds: float = SyncConfig.SYNC_TIMEOUT_SECONDS,
        batch_size: int = SyncConfig.QUEUE_BATCH_SIZE,
        batch_delay_seconds: float = SyncConfig.QUEUE_BATCH_DELAY_SECONDS,
        max_attempts: int = SyncConfig.MAX_OPERATION_ATTEMPTS,
        stale_operation_max_age_seconds: float = SyncConfig.STALE_OPERATION_MAX_AGE_SECONDS,
        retention_days: int = SyncConfig.DELETED_RETENTION_DAYS,
        sleep_fn: Callable[[float], None] | None = None,
        clock_fn: Callable[[], int] | None = None,
    ) -> None:
        """Initialize orchestrator and rebuild pending_count from the local store."""
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self.repository = repository
        self.engine = engine
        self.auth_provider = auth_provider
        self.timeout_seconds = timeout_seconds
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self.max_attempts = max_attempts
        self.stale_operation_max_age_ms = int(stale_operation_max_age_seconds * 1000)
        self.retention_days = retention_days

        self._sleep = sleep_fn or time.sleep
        self._now_ms = clock_fn or now_ms

        self._channel = SyncStateChannel()
        self._cycle_lock = threading.Lock()
        self.last_checkpoint: SyncCheckpoint | None = None

        self.refresh_pending_count()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def timeout_message(self) -> str:
        return f"Sync timed out after {self.timeout_seconds:g} seconds"

    def get_state(self) -> SyncState:
        return self._channel.state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener; call the returned handle to unsubscribe."""
        return self._channel.subscribe(listener)

    def refresh_pending_count(self) -> None:
        try:
            pending = self.repository.get_pending_articles_count()
        except Exception as exc:
            self._emit(
                "sync_pending_count_error",
                run_id=None,
                level="error",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return
        self._channel.update(pending_count=pending)

    def reset_sync_state(self) -> None:
        """Manually clear a stuck or failed state back to idle."""
        self._emit("sync_state_reset", run_id=None, level="warning")
        self._channel.update(status=SyncPhase.IDLE, error=None)

    def clear_all_data(self) -> None:
        """Drop every queued outgoing operation and refresh the pending count."""
        self.repository.clear_sync_queue()
        self.refresh_pending_count()

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def check_auth_status(self) -> SyncState:
        """Local-only token check: `checking-auth` → `idle` or `not-authenticated`."""
        self._channel.update(status=SyncPhase.CHECKING_AUTH)
        try:
            authenticated = self.auth_provider.is_authenticated()
        except Exception as exc:
            self._emit(
                "sync_auth_check_error",
                run_id=None,
                level="error",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            authenticated = False
        status = SyncPhase.IDLE if authenticated else SyncPhase.NOT_AUTHENTICATED
        return self._channel.update(status=status)

    def authenticate(self) -> SyncResult:
        """
        Make sure a token is available.

        A pending redirect credential is consumed first; an already valid
        token is accepted as is; otherwise the consent redirect is started
        and a non-success "redirecting" result is returned without waiting.
        """
        try:
            if self.auth_provider.handle_redirect():
                self._emit("sync_auth_redirect_handled", run_id=None)
                self._channel.update(status=SyncPhase.IDLE, error=None)
                return SyncResult(success=True)

            if self.auth_provider.is_authenticated():
                self._channel.update(status=SyncPhase.IDLE, error=None)
                return SyncResult(success=True)

            auth_url = self.auth_provider.redirect_to_auth()
            self._emit("sync_auth_redirect_started", run_id=None, auth_url=auth_url)
            return SyncResult(success=False, error=REDIRECTING_MESSAGE)
        except Exception as exc:
            message = str(exc) or "Authentication failed"
            self._emit(
                "sync_auth_error",
                run_id=None,
                level="error",
                error_type=type(exc).__name__,
                error=message,
            )
            self._channel.update(status=SyncPhase.ERROR, error=message)
            return SyncResult(success=False, error=message)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def sync_now(self) -> SyncResult:
        """
        Run one full sync cycle.

        Returns:
            SyncResult(success=True) after a committed cycle, otherwise
            success=False with the human-readable cause. A concurrent call
            returns "Sync already in progress" without touching state.
        """
        if not self._cycle_lock.acquire(blocking=False):
            self._emit("sync_rejected", run_id=None, level="warning", reason=ALREADY_RUNNING)
            return SyncResult(success=False, error=ALREADY_RUNNING)
        try:
            if self._channel.state.status == SyncPhase.SYNCING:
                return SyncResult(success=False, error=ALREADY_RUNNING)
            return self._run_cycle(run_id=f"sync_{uuid4().hex[:12]}")
        finally:
            self._cycle_lock.release()

    def _run_cycle(self, run_id: str) -> SyncResult:
        started = self._now_ms()

        try:
            self._check_preconditions()
        except PreconditionFailure as exc:
            self._emit("sync_precondition_failed", run_id=run_id, level="error", error=str(exc))
            self._channel.update(status=SyncPhase.ERROR, error=str(exc))
            return SyncResult(success=False, error=str(exc))

        self._channel.update(status=SyncPhase.SYNCING, error=None)
        self._emit("sync_started", run_id=run_id)

        cancelled = threading.Event()
        timer = threading.Timer(self.timeout_seconds, self._on_timeout, args=(run_id, cancelled))
        timer.daemon = True
        timer.start()

        try:
            checkpoint = self._create_checkpoint()
            processed, failures = self._drain_queue(run_id, cancelled)
            merged = self._pull_and_merge(run_id, cancelled)
            self._raise_if_cancelled(cancelled)
            self._purge_deleted(run_id)
            self._verify(run_id, checkpoint)
            self._raise_if_cancelled(cancelled)

            pending = self.repository.get_pending_articles_count()
            committed = self._channel.transition(
                SyncPhase.SYNCING,
                status=SyncPhase.IDLE,
                pending_count=pending,
                last_sync_time=self._now_ms(),
                error=None,
            )
            if not committed:
                raise SyncTimeout(self.timeout_message)

            self._emit(
                "sync_completed",
                run_id=run_id,
                duration_ms=self._now_ms() - started,
                operations_processed=processed,
                operations_failed=failures,
                remote_articles_merged=merged,
            )
            return SyncResult(success=True)

        except AuthenticationRequired as exc:
            self._emit("sync_auth_required", run_id=run_id, level="warning", error=str(exc))
            self._recover(run_id)
            self._channel.update(status=SyncPhase.AUTH_REQUIRED, error=AUTH_REQUIRED_MESSAGE)
            return SyncResult(success=False, error=AUTH_REQUIRED_MESSAGE)

        except Exception as exc:
            message = self.timeout_message if cancelled.is_set() else (str(exc) or type(exc).__name__)
            self._emit(
                "sync_failed",
                run_id=run_id,
                level="error",
                error_type=type(exc).__name__,
                error=message,
            )
            self._recover(run_id)
            self._channel.update(status=SyncPhase.ERROR, error=message)
            return SyncResult(success=False, error=message)

        finally:
            timer.cancel()

    def _on_timeout(self, run_id: str, cancelled: threading.Event) -> None:
        cancelled.set()
        if self._channel.transition(
            SyncPhase.SYNCING,
            status=SyncPhase.ERROR,
            error=self.timeout_message,
        ):
            self._emit(
                "sync_timeout",
                run_id=run_id,
                level="error",
                timeout_seconds=self.timeout_seconds,
            )

    def _raise_if_cancelled(self, cancelled: threading.Event) -> None:
        if cancelled.is_set():
            raise SyncTimeout(self.timeout_message)

    def _check_preconditions(self) -> None:
        try:
            self.repository.ping()
        except Exception as exc:
            raise PreconditionFailure(LOCAL_STORE_UNREACHABLE) from exc

    def _create_checkpoint(self) -> SyncCheckpoint:
        checkpoint = SyncCheckpoint(
            timestamp=self._now_ms(),
            article_count=self.repository.get_count(),
            sync_queue_count=self.repository.get_sync_queue_count(),
            last_sync_time=self._channel.state.last_sync_time,
        )
        self.last_checkpoint = checkpoint
        return checkpoint

    # ------------------------------------------------------------------
    # Phase: drain outgoing queue
    # ------------------------------------------------------------------

    def _drain_queue(self, run_id: str, cancelled: threading.Event) -> tuple[int, int]:
        """Apply queued operations in batches. Returns (processed, failed)."""
        operations = self.repository.get_pending_sync_operations()
        processed = 0
        failures = 0

        for start in range(0, len(operations), self.batch_size):
            for operation in operations[start : start + self.batch_size]:
                self._raise_if_cancelled(cancelled)
                try:
                    self._apply_operation(operation)
                    self.repository.remove_sync_operation(operation.id)
                    processed += 1
                except AuthenticationRequired:
                    raise
                except Exception as exc:
                    failures += 1
                    self._record_operation_failure(run_id, operation, exc)

            if start + self.batch_size < len(operations):
                self._sleep(self.batch_delay_seconds)

        return processed, failures

    def _apply_operation(self, operation: SyncOperation) -> None:
        if isinstance(operation, CreateOperation):
            self.engine.save_article(operation.article)
            self.repository.mark_as_synced(operation.article_url)
        elif isinstance(operation, UpdateOperation):
            self.engine.update_article(operation.article)
            self.repository.mark_as_synced(operation.article_url)
        elif isinstance(operation, DeleteOperation):
            self.engine.delete_article(operation.article_url)
        else:
            raise TypeError(f"unknown operation type: {type(operation).__name__}")

    def _record_operation_failure(self, run_id: str, operation: SyncOperation, exc: Exception) -> None:
        attempts = operation.retry_count + 1
        self.repository.increment_sync_retry_count(operation.id)
        dropped = attempts >= self.max_attempts
        if dropped:
            self.repository.remove_sync_operation(operation.id)
        self._emit(
            "sync_operation_dropped" if dropped else "sync_operation_failed",
            run_id=run_id,
            level="error" if dropped else "warning",
            operation_id=operation.id,
            operation_type=operation.type,
            article_url=operation.article_url,
            attempts=attempts,
            error_type=type(exc).__name__,
            error=str(exc),
        )

    # ------------------------------------------------------------------
    # Phase: pull and merge remote
    # ------------------------------------------------------------------

    def _pull_and_merge(self, run_id: str, cancelled: threading.Event) -> int:
        """Fetch remote records, resolve against local, apply winners in one write."""
        records = self.engine.get_articles()
        self._validate_remote(run_id, records)

        # Rows whose local delete has not reached the remote yet stay deleted.
        pending_deletes = {
            operation.article_url
            for operation in self.repository.get_pending_sync_operations()
            if isinstance(operation, DeleteOperation)
        }

        winners: dict[str, Article] = {}
        for index, record in enumerate(records):
            if not self.engine.is_valid_record(record):
                self._emit("sync_remote_row_skipped", run_id=run_id, level="warning", index=index, reason="missing url or title")
                continue
            try:
                remote = self.engine.parse_record(record)
            except ValueError as exc:
                self._emit(
                    "sync_remote_row_skipped",
                    run_id=run_id,
                    level="warning",
                    index=index,
                    url=record.get("url"),
                    reason=str(exc),
                )
                continue

            if remote.url in pending_deletes:
                self._emit("sync_remote_row_skipped", run_id=run_id, index=index, url=remote.url, reason="pending delete")
                continue

            local = self.repository.get_by_url(remote.url)
            winner = remote if local is None else resolve_conflict(local, remote, run_id=run_id).winner
            winners[remote.url] = winner.model_copy(update={"sync_status": SyncStatus.SYNCED})

        self._raise_if_cancelled(cancelled)
        if winners:
            self.repository.bulk_update(list(winners.values()))
        return len(winners)

    def _validate_remote(self, run_id: str, records: Any) -> None:
        """Reject a payload that is not a list, or where at least half the entries lack url/title."""
        if not isinstance(records, list):
            self._emit("sync_remote_invalid", run_id=run_id, level="error", reason="not a list")
            raise ValidationFailure(REMOTE_VALIDATION_FAILED)

        if not records:
            self._emit("sync_remote_empty", run_id=run_id, level="warning")
            return

        valid = sum(1 for record in records if self.engine.is_valid_record(record))
        invalid_ratio = (len(records) - valid) / len(records)
        if invalid_ratio >= SyncConfig.REMOTE_INVALID_RATIO_LIMIT:
            self._emit(
                "sync_remote_invalid",
                run_id=run_id,
                level="error",
                reason="too many invalid entries",
                valid_count=valid,
                total_count=len(records),
            )
            raise ValidationFailure(REMOTE_VALIDATION_FAILED)

    # ------------------------------------------------------------------
    # Phase: purge, verify, recover
    # ------------------------------------------------------------------

    def _purge_deleted(self, run_id: str) -> None:
        try:
            self.repository.purge_deleted(older_than_days=self.retention_days, run_id=run_id)
        except Exception as exc:
            self._emit(
                "sync_purge_failed",
                run_id=run_id,
                level="warning",
                error_type=type(exc).__name__,
                error=str(exc),
            )

    def _verify(self, run_id: str, checkpoint: SyncCheckpoint) -> None:
        try:
            self.repository.ping()
            queue_count = self.repository.get_sync_queue_count()
        except Exception as exc:
            raise PreconditionFailure(INTEGRITY_CHECK_FAILED) from exc

        if queue_count > checkpoint.sync_queue_count:
            self._emit(
                "sync_queue_grew",
                run_id=run_id,
                level="warning",
                before=checkpoint.sync_queue_count,
                after=queue_count,
            )

    def _recover(self, run_id: str) -> None:
        """Drop exhausted queue entries older than the stale age; never raises."""
        try:
            now = self._now_ms()
            removed = 0
            for operation in self.repository.get_pending_sync_operations():
                exhausted = operation.retry_count >= self.max_attempts - 1
                if exhausted and now - operation.timestamp > self.stale_operation_max_age_ms:
                    self.repository.remove_sync_operation(operation.id)
                    removed += 1
            if removed:
                self._emit("sync_recovery_removed_stale", run_id=run_id, removed_count=removed)
        except Exception as exc:
            self._emit(
                "sync_recovery_failed",
                run_id=run_id,
                level="error",
                error_type=type(exc).__name__,
                error=str(exc),
            )
        self.refresh_pending_count()

    def _emit(self, event_type: str, *, run_id: str | None, level: str = "info", **payload: object) -> None:
        emit_json_event(event_type, run_id=run_id, level=level, component="sync", **payload)
