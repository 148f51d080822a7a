from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any

from quell.errors import ConfigurationError
from quell.models import ThrottleSettings
from quell.notifiers import LogNotifier, MemoryNotifier, Notifier, WebhookNotifier

ENV_FIELDS = {
    "QUELL_COOLDOWN": "cooldown_minutes",
    "QUELL_DEBUG": "debug",
    "QUELL_MAX_TRACKED_USERS": "max_tracked_users",
    "QUELL_MAX_TRACKED_ERRORS": "max_tracked_errors",
    "QUELL_NAMESPACE": "namespace",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got: {raw!r}")


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be a positive integer, got: {raw!r}") from None


def load_settings(environ: Mapping[str, str] | None = None, **overrides: Any) -> ThrottleSettings:
    """Build settings from ``QUELL_*`` environment variables plus explicit overrides."""
    env = os.environ if environ is None else environ
    data: dict[str, Any] = {}
    for name, field in ENV_FIELDS.items():
        raw = env.get(name)
        if raw is None or raw == "":
            continue
        if field == "debug":
            data[field] = _parse_bool(name, raw)
        elif field == "namespace":
            data[field] = raw.strip()
        else:
            data[field] = _parse_int(name, raw)
    data.update(overrides)
    return ThrottleSettings(**data)


def build_notifier(provider: str) -> Notifier:
    """Map a provider name (``log``, ``memory``) or ``webhook:<url>`` to a notifier."""
    name = provider.strip()
    if name == "log":
        return LogNotifier()
    if name == "memory":
        return MemoryNotifier()
    if name.startswith("webhook:"):
        url = name[len("webhook:"):]
        if not url:
            raise ConfigurationError("webhook provider requires a URL, e.g. webhook:https://example.com/hook")
        return WebhookNotifier(url)
    raise ConfigurationError(f"Unknown error reporter provider: {provider!r}")
