"""
Replay Source

Replays recorded payloads as if they arrived from a live subscription. Used
for offline runs against captured traffic and in tests.

Capture files are YAML (or JSON) mapping each source label to its list of
raw payloads:

    infura/websocket/eth_subscribe:
      - {transactionHash: "0x...", blockNumber: "0x10"}
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml

from src.feeds.base import ErrorCallback, EventCallback, EventSource, LogFilter, SubscriptionHandle
from src.reconciliation.errors import TransportFailure

logger = logging.getLogger(__name__)


def load_capture(path: Union[str, Path]) -> Dict[str, List[Any]]:
    """
    Load a capture file.

    Args:
        path: YAML or JSON capture file

    Returns:
        Mapping source label -> recorded payloads

    Raises:
        ValueError: If the file does not contain a mapping of lists
    """
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Capture file {path} must contain a mapping of source label to payloads")

    for label, payloads in data.items():
        if not isinstance(payloads, list):
            raise ValueError(f"Capture for {label} in {path} must be a list")

    logger.info(f"Loaded capture {path}: {len(data)} sources")
    return data


class ReplaySource(EventSource):
    """
    Delivers a fixed list of payloads, one per loop iteration.

    Running out of payloads before unsubscribe is reported as a transport
    failure, the same way a live feed closing its stream would be.
    """

    def __init__(self, label: str, payloads: List[Any], delay: float = 0.0):
        """
        Initialize the replay source.

        Args:
            label: Source label
            payloads: Raw payloads in delivery order
            delay: Seconds to wait before each payload
        """
        super().__init__(label)
        self.payloads = list(payloads)
        self.delay = delay
        self.delivered = 0

    async def subscribe(
        self,
        log_filter: LogFilter,
        on_event: EventCallback,
        on_error: ErrorCallback
    ) -> SubscriptionHandle:
        handle = SubscriptionHandle(subscription_id=f"replay-{self.label}")
        handle.task = asyncio.create_task(self._replay(handle, on_event, on_error))
        logger.info(f"[{self.label}] Replaying {len(self.payloads)} payloads")
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        if handle.closed:
            return
        handle.closed = True
        self._stop_task(handle)

    async def _replay(self, handle: SubscriptionHandle, on_event: EventCallback, on_error: ErrorCallback) -> None:
        for payload in self.payloads:
            await asyncio.sleep(self.delay)
            if handle.closed:
                return
            self.delivered += 1
            on_event(payload)

        # Let a pending unsubscribe land before declaring the stream ended
        await asyncio.sleep(0)
        if not handle.closed:
            on_error(TransportFailure(self.label, f"replay exhausted after {self.delivered} payloads"))
