from __future__ import annotations


class QuellError(Exception):
    """Base class for errors raised by quell itself."""


class ConfigurationError(QuellError, ValueError):
    """Invalid throttler settings; raised at construction time."""


class DeliveryError(QuellError):
    """A notifier could not deliver a report."""
