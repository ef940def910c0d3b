"""Observable sync state with explicit subscribe/unsubscribe handles."""

from __future__ import annotations

import threading
from typing import Any, Callable

from core.models import SyncPhase, SyncState
from core.structured_logging import emit_json_event

StateListener = Callable[[SyncState], None]


class SyncStateChannel:
    """
    Hold the single SyncState of an orchestrator and broadcast every change.

    Listeners run synchronously on the thread that changed the state and
    receive a copy. A listener that raises is logged and skipped; the other
    listeners still run.
    """

    def __init__(self, initial: SyncState | None = None) -> None:
        self._state = initial or SyncState()
        self._listeners: dict[int, StateListener] = {}
        self._next_token = 0
        self._lock = threading.RLock()

    @property
    def state(self) -> SyncState:
        with self._lock:
            return self._state.model_copy()

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener and return a handle that removes it (idempotent)."""
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._listeners[token] = listener

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(token, None)

        return unsubscribe

    def update(self, **changes: Any) -> SyncState:
        """Apply changes unconditionally and broadcast."""
        with self._lock:
            self._state = self._state.model_copy(update=changes)
            snapshot = self._state
            listeners = list(self._listeners.values())
        self._broadcast(snapshot, listeners)
        return snapshot

    def transition(self, expected: SyncPhase, **changes: Any) -> bool:
        """Apply changes only if the current status is `expected`. Returns whether it applied."""
        with self._lock:
            if self._state.status != expected:
                return False
            self._state = self._state.model_copy(update=changes)
            snapshot = self._state
            listeners = list(self._listeners.values())
        self._broadcast(snapshot, listeners)
        return True

    def _broadcast(self, snapshot: SyncState, listeners: list[StateListener]) -> None:
        for listener in listeners:
            try:
                listener(snapshot.model_copy())
            except Exception as exc:
                emit_json_event(
                    event_type="sync_state_listener_error",
                    run_id=None,
                    level="error",
                    component="sync",
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
