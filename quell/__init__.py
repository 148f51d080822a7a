from collections.abc import Mapping
from typing import Any

from quell.capacity import CapacityGuard
from quell.clock import Clock, FrozenClock, SystemClock
from quell.config import build_notifier, load_settings
from quell.errors import ConfigurationError, DeliveryError, QuellError
from quell.keys import GroupableError, fingerprint, resolve_identity
from quell.ledger import TrackingLedger
from quell.models import Decision, OccurrenceStats, ThrottleSettings
from quell.notifiers import (
    CallbackNotifier,
    FanoutNotifier,
    LogNotifier,
    MemoryNotifier,
    Notifier,
    WebhookNotifier,
)
from quell.store import ExpiringStore, MemoryStore, SQLiteStore, StateStore
from quell.throttler import ErrorThrottler

__version__ = "0.1.0"

_default: ErrorThrottler | None = None


def init(
    notifier: Notifier | None = None,
    *,
    store: ExpiringStore | None = None,
    db_path: str | None = None,
    clock: Clock | None = None,
    environ: Mapping[str, str] | None = None,
    **settings: Any,
) -> ErrorThrottler:
    global _default
    resolved = load_settings(environ, **settings)
    if store is None:
        store = SQLiteStore(db_path, clock=clock) if db_path else MemoryStore(clock=clock)
    throttler = ErrorThrottler(
        notifier or LogNotifier(),
        store,
        settings=resolved,
        clock=clock,
    )
    _default = throttler
    return throttler


def report(error: BaseException, context: Mapping[str, Any] | None = None, key: str | None = None) -> Decision:
    if _default is None:
        raise QuellError("quell.init() must be called before quell.report()")
    return _default.report(error, context, key)


__all__ = [
    "CallbackNotifier",
    "CapacityGuard",
    "Clock",
    "ConfigurationError",
    "Decision",
    "DeliveryError",
    "ErrorThrottler",
    "ExpiringStore",
    "FanoutNotifier",
    "FrozenClock",
    "GroupableError",
    "LogNotifier",
    "MemoryNotifier",
    "MemoryStore",
    "Notifier",
    "OccurrenceStats",
    "QuellError",
    "SQLiteStore",
    "StateStore",
    "SystemClock",
    "ThrottleSettings",
    "TrackingLedger",
    "WebhookNotifier",
    "build_notifier",
    "fingerprint",
    "init",
    "load_settings",
    "report",
    "resolve_identity",
]
