"""
WebSocket Log Source

Subscribes to contract logs with JSON-RPC `eth_subscribe("logs", ...)` over a
WebSocket connection and forwards every `eth_subscription` notification.
"""

import asyncio
import itertools
import json
import logging
from typing import Any, Dict

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from src.feeds.base import ErrorCallback, EventCallback, EventSource, LogFilter, SubscriptionHandle, redact_url
from src.reconciliation.errors import TransportFailure

logger = logging.getLogger(__name__)


class WebSocketLogSource(EventSource):
    """Log subscription over a JSON-RPC WebSocket endpoint."""

    def __init__(self, label: str, url: str, open_timeout: float = 10.0):
        """
        Initialize the WebSocket source.

        Args:
            label: Source label
            url: wss:// endpoint URL
            open_timeout: Seconds allowed for the connection handshake
        """
        super().__init__(label)
        self.url = url
        self.open_timeout = open_timeout
        self._request_ids = itertools.count(1)

    async def subscribe(
        self,
        log_filter: LogFilter,
        on_event: EventCallback,
        on_error: ErrorCallback
    ) -> SubscriptionHandle:
        """
        Connect and subscribe to logs.

        Raises:
            TransportFailure: If the connection or subscription fails
        """
        logger.info(f"[{self.label}] Connecting to {redact_url(self.url)}")

        try:
            connection = await websockets.connect(self.url, open_timeout=self.open_timeout)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise TransportFailure(self.label, f"connection to {redact_url(self.url)} failed: {e}") from e

        try:
            response = await self._call(connection, "eth_subscribe", ["logs", log_filter.to_rpc_params()])
        except TransportFailure:
            await connection.close()
            raise

        subscription_id = response.get("result")
        if not isinstance(subscription_id, str):
            await connection.close()
            raise TransportFailure(self.label, f"eth_subscribe returned no subscription id: {response}")

        handle = SubscriptionHandle(subscription_id=subscription_id, connection=connection)
        handle.task = asyncio.create_task(self._pump(handle, on_event, on_error))

        logger.info(f"[{self.label}] Subscribed to logs (subscription {subscription_id})")
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Send eth_unsubscribe and close the connection."""
        if handle.closed:
            return
        handle.closed = True

        request = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": "eth_unsubscribe",
            "params": [handle.subscription_id],
        }

        try:
            await handle.connection.send(json.dumps(request))
        except ConnectionClosed as e:
            logger.debug(f"[{self.label}] Connection already closed on unsubscribe: {e}")
        finally:
            await handle.connection.close()
            self._stop_task(handle)

        logger.info(f"[{self.label}] Unsubscribed {handle.subscription_id}")

    async def _call(self, connection, method: str, params: list) -> Dict[str, Any]:
        request_id = next(self._request_ids)
        request = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}

        try:
            await connection.send(json.dumps(request))
            raw = await connection.recv()
            response = json.loads(raw)
        except (ConnectionClosed, ValueError) as e:
            raise TransportFailure(self.label, f"{method} failed: {e}") from e

        if not isinstance(response, dict):
            raise TransportFailure(self.label, f"{method} returned a non-object response: {response!r}")
        if "error" in response:
            raise TransportFailure(self.label, f"{method} returned error: {response['error']}")

        return response

    async def _pump(self, handle: SubscriptionHandle, on_event: EventCallback, on_error: ErrorCallback) -> None:
        try:
            async for message in handle.connection:
                try:
                    data = json.loads(message)
                except ValueError:
                    # The decoder rejects it as malformed
                    on_event(message)
                    continue

                if not isinstance(data, dict):
                    on_event(data)
                    continue

                if data.get("method") != "eth_subscription":
                    continue

                params = data.get("params")
                if not isinstance(params, dict):
                    on_event(data)
                    continue

                if params.get("subscription") != handle.subscription_id:
                    continue

                on_event(params.get("result"))

            if not handle.closed:
                on_error(TransportFailure(self.label, "connection closed by server"))

        except ConnectionClosed as e:
            if not handle.closed:
                on_error(TransportFailure(self.label, f"connection lost: {e}"))
        except Exception as e:
            logger.error(f"[{self.label}] Reader stopped: {e}", exc_info=True)
            if not handle.closed:
                on_error(TransportFailure(self.label, f"reader failed: {e}"))
