"""
Event Source Interface

Contract between the reconciliation engine and the network clients that
deliver contract events. A source is an opaque asynchronous producer: it
subscribes with a log filter and pushes raw payloads to a callback until
unsubscribed.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

EventCallback = Callable[[Any], None]
ErrorCallback = Callable[[BaseException], None]


def redact_url(url: str) -> str:
    """Hide the API key path segment of a provider URL for logging."""
    head, sep, tail = url.rpartition("/")
    if sep and len(tail) >= 16:
        return f"{head}/***"
    return url


@dataclass(frozen=True)
class LogFilter:
    """
    Event filter shared by every source in a run.

    Attributes:
        address: Contract address emitting the events
        topics: Topic filter list (topic0 selects the event signature)
    """

    address: str
    topics: List[Optional[str]] = field(default_factory=list)

    def to_rpc_params(self) -> Dict[str, Any]:
        """Filter object for eth_subscribe / eth_getLogs."""
        params: Dict[str, Any] = {"address": self.address}
        if self.topics:
            params["topics"] = list(self.topics)
        return params


@dataclass
class SubscriptionHandle:
    """
    Handle for an active subscription.

    Attributes:
        subscription_id: Identifier assigned by the provider (or locally)
        connection: Transport object owned by the subscription
        task: Background task delivering events
        closed: Set once unsubscribe has started
    """

    subscription_id: str
    connection: Any = None
    task: Optional[asyncio.Task] = None
    closed: bool = False


class EventSource(ABC):
    """
    One provider/transport/client combination producing raw event payloads.

    Callbacks are invoked on the event loop thread, one payload at a time.
    """

    def __init__(self, label: str):
        self.label = label

    @abstractmethod
    async def subscribe(
        self,
        log_filter: LogFilter,
        on_event: EventCallback,
        on_error: ErrorCallback
    ) -> SubscriptionHandle:
        """
        Start delivering events matching the filter.

        Raises:
            TransportFailure: If the subscription cannot be established
        """

    @abstractmethod
    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Stop delivering events. Calling it more than once is allowed."""

    @staticmethod
    def _stop_task(handle: SubscriptionHandle) -> None:
        task = handle.task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
