from __future__ import annotations

from datetime import timedelta

from quell.clock import Clock, SystemClock
from quell.store import StateStore


class CapacityGuard:
    """Caps how many distinct identities may be throttled at once.

    Once the cap is reached, identities without an active marker bypass
    throttling and are delivered straight away, so novel failures are never
    dropped during an incident storm.
    """

    def __init__(
        self,
        state: StateStore,
        cooldown: timedelta,
        max_tracked_errors: int = 1000,
        clock: Clock | None = None,
    ):
        self.state = state
        self.cooldown = cooldown
        self.max_tracked_errors = max_tracked_errors
        self.clock = clock or SystemClock()
        self.grace = timedelta(minutes=10)

    def live_tracked(self) -> dict[str, float]:
        now = self.clock.now().timestamp()
        return {identity: expiry for identity, expiry in self.state.get_tracked().items() if expiry > now}

    def tracked_count(self) -> int:
        return len(self.live_tracked())

    def should_bypass(self, identity: str) -> bool:
        if self.state.has_marker(identity):
            return False
        return self.tracked_count() >= self.max_tracked_errors

    def admit(self, identity: str) -> None:
        tracked = self.state.get_tracked()
        tracked[identity] = (self.clock.now() + self.cooldown + self.grace).timestamp()
        self.state.put_tracked(tracked, self.cooldown + self.grace)
