"""Structured JSON event lines shared by storage, sheets, sync and the CLI."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

LEVELS = ("debug", "info", "warning", "error")


def emit_json_event(
    event_type: str,
    *,
    run_id: str | None,
    level: str = "info",
    component: str | None = None,
    **payload: Any,
) -> str:
    """
    Print one JSON event line to stdout and return it.

    `run_id` ties the events of one sync cycle or CLI invocation together;
    `component` names the emitting layer and is omitted when not given.
    """
    if level not in LEVELS:
        raise ValueError(f"unknown log level: {level}")
    event: dict[str, Any] = {
        "event_type": event_type,
        "level": level,
        "timestamp": datetime.now(UTC).isoformat(),
        "run_id": run_id,
    }
    if component is not None:
        event["component"] = component
    event.update(payload)
    line = json.dumps(event, ensure_ascii=True, sort_keys=True, default=str)
    print(line)
    return line
