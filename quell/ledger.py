from __future__ import annotations

from datetime import timedelta
from typing import Any

from quell.models import OccurrenceStats
from quell.store import StateStore


class TrackingLedger:
    """Per-identity throttle marker, affected users and occurrence counters."""

    def __init__(self, state: StateStore, cooldown: timedelta, max_tracked_users: int = 1000):
        self.state = state
        self.cooldown = cooldown
        self.max_tracked_users = max_tracked_users

    def track_user(self, identity: str, user_id: Any) -> None:
        if user_id is None or user_id == "":
            return
        users = self.state.get_users(identity)
        if user_id in users or len(users) >= self.max_tracked_users:
            return
        users.append(user_id)
        self.state.put_users(identity, users, self.cooldown)

    def bump_occurrence(self, identity: str) -> OccurrenceStats:
        stats = self.state.get_stats(identity)
        stats.occurrences += 1
        return stats

    def record_throttled(self, identity: str, stats: OccurrenceStats) -> OccurrenceStats:
        stats.throttled += 1
        self.state.put_stats(identity, stats, self.cooldown)
        return stats

    def is_throttled(self, identity: str) -> bool:
        return self.state.has_marker(identity)

    def activate(self, identity: str) -> None:
        self.state.set_marker(identity, self.cooldown)

    def affected_users(self, identity: str) -> list:
        return self.state.get_users(identity)

    def clear(self, identity: str) -> None:
        # The marker stays until it expires on its own.
        self.state.clear(identity)
