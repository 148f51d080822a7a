from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Callable, Mapping
from typing import Any

from quell.capacity import CapacityGuard
from quell.clock import Clock, SystemClock, isoformat_z
from quell.errors import ConfigurationError
from quell.keys import resolve_identity
from quell.ledger import TrackingLedger
from quell.models import Decision, OccurrenceStats, ThrottleSettings
from quell.notifiers import Notifier
from quell.store import ExpiringStore, MemoryStore, StateStore

logger = logging.getLogger(__name__)

DecisionHook = Callable[[Decision, str, dict], None]


class ErrorThrottler:
    """Deduplicates error reports so each identity is delivered once per cooldown.

    Suppressed occurrences are counted, and the users they affected are
    collected (up to ``max_tracked_users``). Both are attached to the next
    delivered report for that identity.
    """

    def __init__(
        self,
        notifier: Notifier,
        store: ExpiringStore | None = None,
        *,
        settings: ThrottleSettings | None = None,
        clock: Clock | None = None,
        on_decision: DecisionHook | None = None,
        **overrides: Any,
    ):
        base = settings or ThrottleSettings()
        if overrides:
            base = ThrottleSettings(**(base.model_dump() | overrides))
        self.settings = base
        self.notifier = notifier
        store_clock = getattr(store, "clock", None)
        if clock is not None and store_clock is not None and clock is not store_clock:
            raise ConfigurationError("clock must be the same object as the store's clock")
        self.clock = clock or store_clock or SystemClock()
        self.store = store if store is not None else MemoryStore(clock=self.clock)
        self.on_decision = on_decision
        self.state = StateStore(self.store, namespace=self.settings.namespace)
        self.ledger = TrackingLedger(
            self.state,
            self.settings.cooldown,
            max_tracked_users=self.settings.max_tracked_users,
        )
        self.capacity = CapacityGuard(
            self.state,
            self.settings.cooldown,
            max_tracked_errors=self.settings.max_tracked_errors,
            clock=self.clock,
        )

    def report(
        self,
        error: BaseException,
        context: Mapping[str, Any] | None = None,
        key: str | None = None,
    ) -> Decision:
        identity = resolve_identity(error, key)
        context = dict(context or {})

        if self.capacity.should_bypass(identity):
            self._report_at_limit(error, context, identity)
            return Decision.BYPASSED

        self.ledger.track_user(identity, context.get("user_id"))
        stats = self.ledger.bump_occurrence(identity)

        if self.ledger.is_throttled(identity):
            stats = self.ledger.record_throttled(identity, stats)
            details = {"occurrences": stats.occurrences, "throttled": stats.throttled}
            self._log_decision(Decision.THROTTLED, identity, details)
            self._run_hook(Decision.THROTTLED, identity, details)
            return Decision.THROTTLED

        self._deliver(error, context, identity, stats)
        return Decision.REPORTED

    def _report_at_limit(self, error: BaseException, context: dict, identity: str) -> None:
        context["reported_at"] = isoformat_z(self.clock.now())
        context["key"] = identity
        context["tracking_limit_reached"] = True

        self.notifier.notify(error, context)

        if self.settings.debug or self.on_decision:
            details = {
                "current_tracked_errors": self.capacity.tracked_count(),
                "max_tracked_errors": self.settings.max_tracked_errors,
            }
            self._log_decision(Decision.BYPASSED, identity, details)
            self._run_hook(Decision.BYPASSED, identity, details)

    def _deliver(self, error: BaseException, context: dict, identity: str, stats: OccurrenceStats) -> None:
        affected_users = self.ledger.affected_users(identity)
        enriched = self._enrich(context, identity, stats, affected_users)

        self.notifier.notify(error, enriched)

        details = {
            "affected_users": affected_users,
            "count": len(affected_users),
            "occurrences": stats.occurrences,
            "throttled": stats.throttled,
        }
        self._log_decision(Decision.REPORTED, identity, details)
        self.ledger.activate(identity)
        self.capacity.admit(identity)
        self.ledger.clear(identity)
        self._run_hook(Decision.REPORTED, identity, details)

    def _enrich(self, context: dict, identity: str, stats: OccurrenceStats, affected_users: list) -> dict:
        context["affected_users"] = affected_users
        context["affected_user_count"] = len(affected_users)
        context["user_tracking_capped"] = len(affected_users) >= self.settings.max_tracked_users
        context["reported_at"] = isoformat_z(self.clock.now())
        context["key"] = identity
        context["occurrences"] = stats.occurrences
        context["throttled"] = stats.throttled
        return context

    def _run_hook(self, decision: Decision, identity: str, details: dict) -> None:
        if self.on_decision is None:
            return
        try:
            self.on_decision(decision, identity, details)
        except Exception:
            # Decision hooks never change the outcome of a report.
            logger.exception("[quell] on_decision hook failed for %s", identity)

    def _log_decision(self, decision: Decision, identity: str, details: dict) -> None:
        if not self.settings.debug:
            return
        if decision is Decision.REPORTED:
            logger.info("[quell] %s reported", identity, extra={"quell": details})
        elif decision is Decision.THROTTLED:
            logger.debug("[quell] %s throttled", identity, extra={"quell": details})
        else:
            logger.warning(
                "[quell] %s reported immediately (tracking limit reached)",
                identity,
                extra={"quell": details},
            )

    def status(self, identity: str) -> dict:
        tracked = self.capacity.live_tracked()
        return {
            "key": identity,
            "throttled": self.ledger.is_throttled(identity),
            "tracked": identity in tracked,
            "stats": self.state.get_stats(identity).model_dump(),
            "affected_users": self.ledger.affected_users(identity),
        }

    def wrap(
        self,
        fn: Callable | None = None,
        *,
        key: str | None = None,
        context: Mapping[str, Any] | None = None,
    ):
        """Report (and re-raise) any exception escaping ``fn``.

        Usable as ``@throttler.wrap`` or ``@throttler.wrap(key="billing")``.
        """
        if fn is None:
            return functools.partial(self.wrap, key=key, context=context)

        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def async_wrapped(*args, **kwargs):
                try:
                    return await fn(*args, **kwargs)
                except Exception as exc:
                    self.report(exc, context, key)
                    raise

            return async_wrapped

        @functools.wraps(fn)
        def wrapped(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except Exception as exc:
                self.report(exc, context, key)
                raise

        return wrapped
