"""Conflict-resolution utilities."""

from resolution.conflict import ConflictDecision, pick_winner, resolve_conflict

__all__ = [
    "ConflictDecision",
    "resolve_conflict",
    "pick_winner",
]
