"""
Event Source Factory

Constructs the EventSource for a configured provider/transport/client.
"""

import logging
from typing import Dict, List, Optional

from src.feeds.base import EventSource
from src.feeds.polling import HttpLogPoller
from src.feeds.replay import ReplaySource, load_capture
from src.feeds.web3_subscription import Web3LogSource
from src.feeds.websocket import WebSocketLogSource
from src.reconciliation.errors import ConfigError
from src.utils.config import SourceConfig, resolve_source_url

logger = logging.getLogger(__name__)

WEBSOCKET_CLIENTS = {
    "eth_subscribe": WebSocketLogSource,
    "web3": Web3LogSource,
}


def build_source(
    source_cfg: SourceConfig,
    vault_client=None,
    captures: Optional[Dict[str, Dict[str, List]]] = None
) -> EventSource:
    """
    Build the EventSource for one source configuration.

    Args:
        source_cfg: Source configuration
        vault_client: VaultClient for api_key_vault references
        captures: Cache of loaded capture files keyed by path

    Returns:
        EventSource matching `source_cfg.transport`

    Raises:
        ConfigError: If the transport or client is unknown, or a capture lacks the source
    """
    label = source_cfg.label
    transport = source_cfg.transport

    if transport == "websocket":
        source_cls = WEBSOCKET_CLIENTS.get(source_cfg.client)
        if source_cls is None:
            raise ConfigError(
                f"[{label}] unsupported websocket client: {source_cfg.client}. "
                f"Must be one of {sorted(WEBSOCKET_CLIENTS)}"
            )
        url = resolve_source_url(source_cfg, vault_client)
        source = source_cls(label, url, open_timeout=source_cfg.open_timeout)
    elif transport == "http":
        if source_cfg.client != "eth_getLogs":
            raise ConfigError(f"[{label}] unsupported http client: {source_cfg.client}. Must be eth_getLogs")
        url = resolve_source_url(source_cfg, vault_client)
        source = HttpLogPoller(label, url, poll_interval=source_cfg.poll_interval)
    elif transport == "replay":
        if captures is None:
            captures = {}
        path = source_cfg.replay_path
        if path not in captures:
            try:
                captures[path] = load_capture(path)
            except (OSError, ValueError) as e:
                raise ConfigError(f"[{label}] cannot load capture {path}: {e}") from e
        if label not in captures[path]:
            raise ConfigError(
                f"[{label}] capture {path} has no payloads for this source. "
                f"Available: {sorted(captures[path])}"
            )
        source = ReplaySource(label, captures[path][label], delay=source_cfg.replay_delay)
    else:
        raise ConfigError(f"[{label}] unsupported transport: {transport}")

    logger.debug(f"Built {type(source).__name__} for {label}")
    return source


def build_sources(source_cfgs: List[SourceConfig], vault_client=None) -> Dict[str, EventSource]:
    """
    Build every configured source, sharing loaded capture files.

    Returns:
        Mapping source label -> EventSource, in configuration order
    """
    captures: Dict[str, Dict[str, List]] = {}
    return {cfg.label: build_source(cfg, vault_client, captures) for cfg in source_cfgs}
