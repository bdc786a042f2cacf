"""
Feed Adapters for Feed Reconciliation

Concrete event sources for the reconciliation engine:
- WebSocketLogSource: eth_subscribe over a websocket
- HttpLogPoller: eth_getLogs polling over HTTP
- ReplaySource: recorded payloads from a capture file

Usage:
    from src.feeds import LogFilter, WebSocketLogSource

    source = WebSocketLogSource("infura/websocket/eth_subscribe", url)
    handle = await source.subscribe(LogFilter(address), on_event, on_error)
"""

from src.feeds.base import EventSource, LogFilter, SubscriptionHandle
from src.feeds.payload import LogPayloadDecoder, decode_log_payload
from src.feeds.polling import HttpLogPoller
from src.feeds.replay import ReplaySource, load_capture
from src.feeds.websocket import WebSocketLogSource

__all__ = [
    "EventSource",
    "LogFilter",
    "SubscriptionHandle",
    "LogPayloadDecoder",
    "decode_log_payload",
    "HttpLogPoller",
    "ReplaySource",
    "load_capture",
    "WebSocketLogSource",
]

__version__ = "1.0.0"
