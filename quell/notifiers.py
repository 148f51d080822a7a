from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any, Protocol

import httpx

from quell.errors import DeliveryError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Quell-Signature"
SIGNATURE_VERSION_HEADER = "X-Quell-Signature-Version"


def payload_signature(payload: dict, secret: str) -> str:
    """HMAC-SHA256 over the canonical JSON form of a webhook payload."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


class Notifier(Protocol):
    def notify(self, error: BaseException, context: Mapping[str, Any]) -> None: ...


class LogNotifier:
    """Writes each delivered report to a stdlib logger at ERROR level."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("quell.reports")

    def notify(self, error: BaseException, context: Mapping[str, Any]) -> None:
        self.logger.error(
            str(error),
            exc_info=(type(error), error, error.__traceback__),
            extra={"quell_context": dict(context)},
        )


class CallbackNotifier:
    def __init__(self, fn: Callable[[BaseException, Mapping[str, Any]], None]):
        self.fn = fn

    def notify(self, error: BaseException, context: Mapping[str, Any]) -> None:
        self.fn(error, context)


class MemoryNotifier:
    """Keeps delivered reports in a list; handy for tests and dry runs."""

    def __init__(self):
        self.reports: list[tuple[BaseException, dict[str, Any]]] = []

    def notify(self, error: BaseException, context: Mapping[str, Any]) -> None:
        self.reports.append((error, dict(context)))

    @property
    def count(self) -> int:
        return len(self.reports)

    def last(self) -> tuple[BaseException, dict[str, Any]] | None:
        return self.reports[-1] if self.reports else None

    def clear(self) -> None:
        self.reports.clear()


class FanoutNotifier:
    """Delivers to several notifiers in order. The first failure propagates."""

    def __init__(self, *notifiers: Notifier):
        self.notifiers = list(notifiers)

    def add(self, notifier: Notifier) -> None:
        self.notifiers.append(notifier)

    def notify(self, error: BaseException, context: Mapping[str, Any]) -> None:
        for notifier in self.notifiers:
            notifier.notify(error, context)


class WebhookNotifier:
    def __init__(
        self,
        url: str,
        headers: dict | None = None,
        *,
        retries: int = 1,
        backoff_seconds: float = 0.25,
        signing_secret: str | None = None,
        timeout: float = 3.0,
    ):
        self.url = url
        self.headers = dict(headers or {})
        self.retries = retries
        self.backoff_seconds = backoff_seconds
        self.signing_secret = signing_secret
        self.timeout = timeout

    @staticmethod
    def build_payload(error: BaseException, context: Mapping[str, Any]) -> dict:
        return {
            "error": {
                "type": type(error).__name__,
                "message": str(error),
            },
            "key": context.get("key"),
            "reported_at": context.get("reported_at"),
            "context": json.loads(json.dumps(dict(context), default=str)),
        }

    def notify(self, error: BaseException, context: Mapping[str, Any]) -> None:
        payload = self.build_payload(error, context)
        headers = dict(self.headers)
        if self.signing_secret:
            headers[SIGNATURE_HEADER] = f"sha256={payload_signature(payload, self.signing_secret)}"
            headers[SIGNATURE_VERSION_HEADER] = "v1"

        attempts = max(1, self.retries)
        for attempt in range(1, attempts + 1):
            try:
                self._post(payload, headers)
                return
            except (httpx.HTTPError, DeliveryError) as exc:
                if attempt == attempts:
                    if isinstance(exc, DeliveryError):
                        raise
                    raise DeliveryError(f"webhook delivery to {self.url} failed: {exc}") from exc
                logger.warning("webhook delivery attempt %d/%d failed: %s", attempt, attempts, exc)
                if self.backoff_seconds > 0:
                    time.sleep(self.backoff_seconds)

    def _post(self, payload: dict, headers: dict) -> None:
        with httpx.Client(timeout=self.timeout) as client:
            resp: httpx.Response = client.post(self.url, json=payload, headers=headers)
        if not resp.is_success:
            raise DeliveryError(f"webhook {self.url} answered {resp.status_code}")

    @staticmethod
    def verify_signature(payload: dict, headers: Mapping[str, str], secret: str) -> bool:
        provided = headers.get(SIGNATURE_HEADER, "")
        if not provided.startswith("sha256="):
            return False
        return hmac.compare_digest(provided, f"sha256={payload_signature(payload, secret)}")
