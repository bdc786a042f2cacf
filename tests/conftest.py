"""
Pytest configuration and shared fixtures for unit and integration tests.

Provides deterministic transaction hashes, log payload builders and
in-memory event sources so runs can be exercised without a network.
"""

import asyncio

import pytest
from prometheus_client import CollectorRegistry

from src.feeds.base import EventSource, LogFilter, SubscriptionHandle
from src.reconciliation.errors import TransportFailure

CONTRACT = "0xdac17f958d2ee523a2206206994597c13d831ec7"
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

SOURCE_X = "infura/websocket/eth_subscribe"
SOURCE_Y = "alchemy/websocket/eth_subscribe"
SOURCE_Z = "infura/http/eth_getLogs"


def tx_hash(n):
    """Deterministic 32-byte transaction hash for an integer."""
    return "0x" + format(n, "064x")


def log_payload(n, block=None, **extra):
    """Raw log object as delivered by eth_subscribe / eth_getLogs."""
    payload = {
        "address": CONTRACT,
        "topics": [TRANSFER_TOPIC],
        "transactionHash": tx_hash(n),
        "logIndex": "0x0",
        "removed": False,
    }
    if block is not None:
        payload["blockNumber"] = hex(block)
    payload.update(extra)
    return payload


def notification(subscription_id, result):
    """eth_subscription envelope around a log object."""
    return {
        "jsonrpc": "2.0",
        "method": "eth_subscription",
        "params": {"subscription": subscription_id, "result": result},
    }


class FailingSource(EventSource):
    """Source whose subscription fails after delivering some payloads."""

    def __init__(self, label, payloads=(), fail_on_subscribe=False):
        super().__init__(label)
        self.payloads = list(payloads)
        self.fail_on_subscribe = fail_on_subscribe
        self.unsubscribed = False

    async def subscribe(self, log_filter, on_event, on_error):
        if self.fail_on_subscribe:
            raise TransportFailure(self.label, "connection refused")

        handle = SubscriptionHandle(subscription_id=f"failing-{self.label}")

        async def deliver():
            for payload in self.payloads:
                await asyncio.sleep(0)
                on_event(payload)
            await asyncio.sleep(0)
            on_error(ConnectionResetError("connection reset by peer"))

        handle.task = asyncio.create_task(deliver())
        return handle

    async def unsubscribe(self, handle):
        self.unsubscribed = True
        handle.closed = True
        self._stop_task(handle)


class SilentSource(EventSource):
    """Source that subscribes successfully and never delivers anything."""

    def __init__(self, label, unsubscribe_error=None):
        super().__init__(label)
        self.unsubscribe_error = unsubscribe_error
        self.unsubscribe_calls = 0

    async def subscribe(self, log_filter, on_event, on_error):
        return SubscriptionHandle(subscription_id=f"silent-{self.label}")

    async def unsubscribe(self, handle):
        self.unsubscribe_calls += 1
        if self.unsubscribe_error is not None:
            raise self.unsubscribe_error
        handle.closed = True


@pytest.fixture
def log_filter():
    """Filter for Transfer events on the test contract."""
    return LogFilter(address=CONTRACT, topics=[TRANSFER_TOPIC])


@pytest.fixture
def registry():
    """Fresh Prometheus registry per test."""
    return CollectorRegistry()


@pytest.fixture(autouse=True)
def clean_run_id():
    """Ensure no run ID leaks between tests."""
    from src.utils.run_context import clear_run_id
    clear_run_id()
    yield
    clear_run_id()
