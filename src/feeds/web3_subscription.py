"""
web3.py Log Source

Subscribes to contract logs through web3.py's `AsyncWeb3` over a
`WebSocketProvider`, so a run can compare the web3.py client against the raw
JSON-RPC client on the same endpoint.
"""

import asyncio
import logging
from typing import Any, Mapping

from web3 import AsyncWeb3, WebSocketProvider
from web3.exceptions import Web3Exception
from websockets.exceptions import ConnectionClosed

from src.feeds.base import ErrorCallback, EventCallback, EventSource, LogFilter, SubscriptionHandle, redact_url
from src.reconciliation.errors import TransportFailure

logger = logging.getLogger(__name__)


def plain_log(value: Any) -> Any:
    """
    Convert a web3.py formatted log back to the raw JSON-RPC shape.

    HexBytes become 0x-prefixed hex strings and AttributeDicts become dicts,
    so the same payload decoder serves every client.
    """
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, Mapping):
        return {key: plain_log(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [plain_log(item) for item in value]
    return value


class Web3LogSource(EventSource):
    """Log subscription through web3.py's persistent WebSocket provider."""

    def __init__(self, label: str, url: str, open_timeout: float = 10.0):
        """
        Initialize the web3.py source.

        Args:
            label: Source label
            url: wss:// endpoint URL
            open_timeout: Seconds allowed for the connection handshake
        """
        super().__init__(label)
        self.url = url
        self.open_timeout = open_timeout

    def _connect_client(self) -> AsyncWeb3:
        provider = WebSocketProvider(self.url, websocket_kwargs={"open_timeout": self.open_timeout})
        return AsyncWeb3(provider)

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
        logger.info(f"[{self.label}] Connecting web3 provider to {redact_url(self.url)}")

        w3 = self._connect_client()
        try:
            await w3.provider.connect()
        except (OSError, Web3Exception, asyncio.TimeoutError) as e:
            raise TransportFailure(self.label, f"connection to {redact_url(self.url)} failed: {e}") from e

        params = log_filter.to_rpc_params()
        params["address"] = AsyncWeb3.to_checksum_address(params["address"])

        try:
            subscription_id = await w3.eth.subscribe("logs", params)
        except (OSError, Web3Exception, ConnectionClosed) as e:
            await w3.provider.disconnect()
            raise TransportFailure(self.label, f"eth_subscribe failed: {e}") from e

        handle = SubscriptionHandle(subscription_id=str(subscription_id), connection=w3)
        handle.task = asyncio.create_task(self._pump(handle, on_event, on_error))

        logger.info(f"[{self.label}] Subscribed to logs via web3 (subscription {subscription_id})")
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Cancel the reader, unsubscribe and disconnect the provider."""
        if handle.closed:
            return
        handle.closed = True
        self._stop_task(handle)

        w3 = handle.connection
        try:
            await w3.eth.unsubscribe(handle.subscription_id)
        except (OSError, Web3Exception, ConnectionClosed) as e:
            logger.debug(f"[{self.label}] eth_unsubscribe failed, disconnecting anyway: {e}")
        finally:
            await w3.provider.disconnect()

        logger.info(f"[{self.label}] Unsubscribed {handle.subscription_id}")

    async def _pump(self, handle: SubscriptionHandle, on_event: EventCallback, on_error: ErrorCallback) -> None:
        try:
            async for response in handle.connection.socket.process_subscriptions():
                if isinstance(response, Mapping) and isinstance(response.get("params"), Mapping):
                    response = response["params"]

                if not isinstance(response, Mapping):
                    on_event(plain_log(response))
                    continue

                if str(response.get("subscription")) != handle.subscription_id:
                    continue

                on_event(plain_log(response.get("result")))

            if not handle.closed:
                on_error(TransportFailure(self.label, "subscription stream ended"))

        except Exception as e:
            if not handle.closed:
                logger.error(f"[{self.label}] Subscription stream failed: {e}")
                on_error(TransportFailure(self.label, f"subscription stream failed: {e}"))
