"""
Error Types for Feed Reconciliation

Defines the exception hierarchy raised by listeners, feed adapters and the
run coordinator.
"""

from typing import Any, Optional


class FeedReconciliationError(Exception):
    """Base class for all reconciliation errors."""
    pass


class TransportFailure(FeedReconciliationError):
    """Raised when a subscription cannot be established or drops mid-stream."""

    def __init__(self, source_label: str, reason: str):
        self.source_label = source_label
        self.reason = reason
        super().__init__(f"[{source_label}] transport failure: {reason}")


class MalformedPayload(FeedReconciliationError):
    """Raised when an event payload is missing or has invalid fields."""

    def __init__(self, source_label: str, reason: str, payload: Optional[Any] = None):
        self.source_label = source_label
        self.reason = reason
        self.payload = payload
        super().__init__(f"[{source_label}] malformed payload: {reason}")


class RunTimeout(FeedReconciliationError):
    """Raised when listeners do not reach their target before the deadline."""
    pass


class ConfigError(ValueError):
    """Raised when the run configuration is invalid."""
    pass
