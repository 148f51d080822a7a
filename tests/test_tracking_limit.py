from datetime import datetime, timezone

from quell.clock import FrozenClock
from quell.models import Decision
from quell.notifiers import MemoryNotifier
from quell.store import MemoryStore
from quell.throttler import ErrorThrottler

T0 = datetime(2025, 12, 5, 10, 0, 0, tzinfo=timezone.utc)


def _throttler(max_errors: int = 2):
    clock = FrozenClock(T0)
    notifier = MemoryNotifier()
    throttler = ErrorThrottler(
        notifier,
        MemoryStore(clock=clock),
        cooldown_minutes=60,
        max_tracked_errors=max_errors,
    )
    return throttler, notifier, clock


def test_new_identity_bypasses_when_limit_reached():
    throttler, notifier, _ = _throttler(max_errors=2)
    throttler.report(RuntimeError("a"), key="a")
    throttler.report(RuntimeError("b"), key="b")

    decision = throttler.report(RuntimeError("c"), {"user_id": 9, "route": "/pay"}, key="c")

    assert decision is Decision.BYPASSED
    assert notifier.count == 3
    _, context = notifier.last()
    assert context["tracking_limit_reached"] is True
    assert context["key"] == "c"
    assert context["route"] == "/pay"
    assert context["reported_at"] == "2025-12-05T10:00:00Z"
    assert "occurrences" not in context

    status = throttler.status("c")
    assert status == {
        "key": "c",
        "throttled": False,
        "tracked": False,
        "stats": {"occurrences": 0, "throttled": 0},
        "affected_users": [],
    }


def test_bypass_repeats_for_every_occurrence():
    throttler, notifier, _ = _throttler(max_errors=1)
    throttler.report(RuntimeError("a"), key="a")
    for _ in range(3):
        assert throttler.report(RuntimeError("storm"), key="storm") is Decision.BYPASSED
    assert notifier.count == 4


def test_known_identity_still_throttled_at_limit():
    throttler, notifier, _ = _throttler(max_errors=2)
    throttler.report(RuntimeError("a"), key="a")
    throttler.report(RuntimeError("b"), key="b")

    assert throttler.report(RuntimeError("a"), key="a") is Decision.THROTTLED
    assert notifier.count == 2


def test_capacity_frees_after_tracking_expiry():
    throttler, notifier, clock = _throttler(max_errors=1)
    throttler.report(RuntimeError("a"), key="a")

    clock.advance(minutes=61)
    assert throttler.report(RuntimeError("b"), key="b") is Decision.BYPASSED

    clock.advance(minutes=9)
    assert throttler.report(RuntimeError("b"), key="b") is Decision.REPORTED
    assert "tracking_limit_reached" not in notifier.last()[1]
