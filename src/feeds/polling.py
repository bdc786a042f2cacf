"""
HTTP Log Poller

Emulates a log subscription over a plain JSON-RPC HTTP endpoint by polling
`eth_blockNumber` and fetching new ranges with `eth_getLogs`. Blocking HTTP
calls run in worker threads; events are delivered on the event loop.
"""

import asyncio
import itertools
import logging
import uuid
from typing import Any, Dict, List, Optional

import requests

from src.feeds.base import ErrorCallback, EventCallback, EventSource, LogFilter, SubscriptionHandle, redact_url
from src.reconciliation.errors import TransportFailure

logger = logging.getLogger(__name__)


class HttpLogPoller(EventSource):
    """Polling log source over a JSON-RPC HTTP endpoint."""

    def __init__(
        self,
        label: str,
        url: str,
        poll_interval: float = 2.0,
        request_timeout: float = 10.0,
        max_block_range: int = 500,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the HTTP poller.

        Args:
            label: Source label
            url: https:// endpoint URL
            poll_interval: Seconds between head checks
            request_timeout: Timeout for each HTTP request
            max_block_range: Largest block span requested per eth_getLogs call
            session: Optional requests session
        """
        super().__init__(label)
        self.url = url
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self.max_block_range = max_block_range
        self.session = session or requests.Session()
        self._request_ids = itertools.count(1)

    async def subscribe(
        self,
        log_filter: LogFilter,
        on_event: EventCallback,
        on_error: ErrorCallback
    ) -> SubscriptionHandle:
        """
        Start polling from the block after the current head.

        Raises:
            TransportFailure: If the head block cannot be read
        """
        head = await asyncio.to_thread(self.block_number)

        handle = SubscriptionHandle(subscription_id=f"poll-{uuid.uuid4().hex[:12]}")
        handle.task = asyncio.create_task(self._poll(handle, log_filter, head + 1, on_event, on_error))

        logger.info(
            f"[{self.label}] Polling {redact_url(self.url)} every {self.poll_interval}s "
            f"from block {head + 1}"
        )
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Stop the polling task."""
        if handle.closed:
            return
        handle.closed = True
        self._stop_task(handle)
        logger.info(f"[{self.label}] Stopped polling {handle.subscription_id}")

    def block_number(self) -> int:
        """Current head block number."""
        result = self._rpc("eth_blockNumber", [])
        try:
            return int(result, 16)
        except (TypeError, ValueError) as e:
            raise TransportFailure(self.label, f"eth_blockNumber returned {result!r}") from e

    def get_logs(self, log_filter: LogFilter, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        """
        Fetch logs for an inclusive block range.

        Args:
            log_filter: Event filter
            from_block: First block
            to_block: Last block

        Returns:
            Raw log objects
        """
        params = log_filter.to_rpc_params()
        params["fromBlock"] = hex(from_block)
        params["toBlock"] = hex(to_block)

        result = self._rpc("eth_getLogs", [params])
        if not isinstance(result, list):
            raise TransportFailure(self.label, f"eth_getLogs returned {type(result).__name__}")
        return result

    def _rpc(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._request_ids), "method": method, "params": params}

        try:
            response = self.session.post(self.url, json=payload, timeout=self.request_timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            raise TransportFailure(self.label, f"{method} failed: {e}") from e

        if not isinstance(body, dict):
            raise TransportFailure(self.label, f"{method} returned a non-object response")
        if "error" in body:
            raise TransportFailure(self.label, f"{method} returned error: {body['error']}")

        return body.get("result")

    async def _poll(
        self,
        handle: SubscriptionHandle,
        log_filter: LogFilter,
        next_block: int,
        on_event: EventCallback,
        on_error: ErrorCallback
    ) -> None:
        try:
            while not handle.closed:
                await asyncio.sleep(self.poll_interval)

                head = await asyncio.to_thread(self.block_number)
                if head < next_block:
                    continue

                to_block = min(head, next_block + self.max_block_range - 1)
                logs = await asyncio.to_thread(self.get_logs, log_filter, next_block, to_block)
                logger.debug(f"[{self.label}] Blocks {next_block}-{to_block}: {len(logs)} logs")

                for log in logs:
                    if handle.closed:
                        return
                    on_event(log)

                next_block = to_block + 1

        except TransportFailure as e:
            if not handle.closed:
                on_error(e)
