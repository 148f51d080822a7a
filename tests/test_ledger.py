from datetime import datetime, timedelta, timezone

from quell.clock import FrozenClock
from quell.ledger import TrackingLedger
from quell.store import MemoryStore, StateStore

T0 = datetime(2025, 12, 5, 10, 0, 0, tzinfo=timezone.utc)


def _ledger(max_users: int = 3):
    clock = FrozenClock(T0)
    state = StateStore(MemoryStore(clock=clock))
    return TrackingLedger(state, timedelta(minutes=60), max_tracked_users=max_users), state, clock


def test_track_user_dedupes_and_caps_preserving_order():
    ledger, _, _ = _ledger(max_users=3)
    for user in [5, 1, 5, 2, 1, 9, 4]:
        ledger.track_user("e", user)
    assert ledger.affected_users("e") == [5, 1, 2]


def test_track_user_ignores_missing_ids_but_keeps_zero():
    ledger, _, _ = _ledger()
    ledger.track_user("e", None)
    ledger.track_user("e", "")
    ledger.track_user("e", 0)
    assert ledger.affected_users("e") == [0]


def test_track_user_slides_record_expiry():
    ledger, _, clock = _ledger()
    ledger.track_user("e", 1)
    clock.advance(minutes=50)
    ledger.track_user("e", 2)
    clock.advance(minutes=50)
    assert ledger.affected_users("e") == [1, 2]


def test_bump_occurrence_does_not_persist():
    ledger, state, _ = _ledger()
    stats = ledger.bump_occurrence("e")
    assert stats.occurrences == 1
    assert state.get_stats("e").occurrences == 0


def test_record_throttled_writes_once():
    ledger, state, _ = _ledger()
    stats = ledger.record_throttled("e", ledger.bump_occurrence("e"))
    assert (stats.occurrences, stats.throttled) == (1, 1)
    assert state.get_stats("e") == stats


def test_activate_marker_expires_after_cooldown():
    ledger, _, clock = _ledger()
    ledger.activate("e")
    assert ledger.is_throttled("e") is True
    clock.advance(minutes=59)
    assert ledger.is_throttled("e") is True
    clock.advance(minutes=1)
    assert ledger.is_throttled("e") is False


def test_clear_keeps_marker():
    ledger, _, _ = _ledger()
    ledger.track_user("e", 1)
    ledger.record_throttled("e", ledger.bump_occurrence("e"))
    ledger.activate("e")
    ledger.clear("e")
    assert ledger.affected_users("e") == []
    assert ledger.bump_occurrence("e").occurrences == 1
    assert ledger.is_throttled("e") is True
