import logging
from datetime import datetime, timezone

import pytest

from quell.clock import FrozenClock
from quell.errors import ConfigurationError
from quell.models import Decision
from quell.notifiers import MemoryNotifier
from quell.store import MemoryStore
from quell.throttler import ErrorThrottler

T0 = datetime(2025, 12, 5, 10, 0, 0, tzinfo=timezone.utc)


def _throttler(debug: bool, **kwargs):
    clock = FrozenClock(T0)
    return ErrorThrottler(MemoryNotifier(), MemoryStore(clock=clock), cooldown_minutes=60, debug=debug, **kwargs)


def test_debug_logs_reported_and_throttled(caplog):
    caplog.set_level(logging.DEBUG, logger="quell.throttler")
    throttler = _throttler(True)

    throttler.report(RuntimeError("x"), {"user_id": 1}, key="checkout")
    throttler.report(RuntimeError("x"), key="checkout")

    reported, throttled = [r for r in caplog.records if r.name == "quell.throttler"]
    assert reported.levelno == logging.INFO
    assert reported.getMessage() == "[quell] checkout reported"
    assert reported.quell == {"affected_users": [1], "count": 1, "occurrences": 1, "throttled": 0}
    assert throttled.levelno == logging.DEBUG
    assert throttled.getMessage() == "[quell] checkout throttled"
    assert throttled.quell == {"occurrences": 1, "throttled": 1}


def test_debug_logs_bypass_warning(caplog):
    caplog.set_level(logging.DEBUG, logger="quell.throttler")
    throttler = _throttler(True, max_tracked_errors=1)

    throttler.report(RuntimeError("a"), key="a")
    throttler.report(RuntimeError("b"), key="b")

    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert "tracking limit reached" in record.getMessage()
    assert record.quell == {"current_tracked_errors": 1, "max_tracked_errors": 1}


def test_no_logs_when_debug_disabled(caplog):
    caplog.set_level(logging.DEBUG, logger="quell.throttler")
    throttler = _throttler(False)

    throttler.report(RuntimeError("x"))
    throttler.report(RuntimeError("x"))

    assert [r for r in caplog.records if r.name == "quell.throttler"] == []


def test_decision_hook_receives_every_decision():
    seen = []
    throttler = _throttler(False, max_tracked_errors=1, on_decision=lambda d, k, details: seen.append((d, k)))

    throttler.report(RuntimeError("a"), key="a")
    throttler.report(RuntimeError("a"), key="a")
    throttler.report(RuntimeError("b"), key="b")

    assert seen == [
        (Decision.REPORTED, "a"),
        (Decision.THROTTLED, "a"),
        (Decision.BYPASSED, "b"),
    ]


def test_non_boolean_debug_is_rejected():
    with pytest.raises(ConfigurationError):
        _throttler("yes")


def test_failing_hook_does_not_reopen_delivery(caplog):
    caplog.set_level(logging.ERROR, logger="quell.throttler")
    notifier = MemoryNotifier()

    def hook(decision, identity, details):
        raise RuntimeError("hook broke")

    throttler = ErrorThrottler(
        notifier,
        MemoryStore(clock=FrozenClock(T0)),
        cooldown_minutes=60,
        on_decision=hook,
    )
    decisions = [throttler.report(RuntimeError("E"), key="k") for _ in range(5)]

    assert notifier.count == 1
    assert decisions == [Decision.REPORTED] + [Decision.THROTTLED] * 4
    assert throttler.status("k")["throttled"] is True
    assert any("on_decision hook failed" in r.getMessage() for r in caplog.records)


def test_hook_sees_state_after_delivery():
    seen = []
    throttler = _throttler(False, on_decision=lambda d, k, details: seen.append(throttler.status(k)))

    throttler.report(RuntimeError("x"), {"user_id": 1}, key="k")

    assert seen[0]["throttled"] is True
    assert seen[0]["tracked"] is True
    assert seen[0]["affected_users"] == []
