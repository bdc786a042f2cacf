"""
Run Configuration for Feed Reconciliation

Loads the YAML run configuration, applies environment overrides and resolves
provider API keys from the environment or HashiCorp Vault.

Example:

    mode: keyed
    target_count: 1000
    gate_quorum: 3
    filter:
      address: "0xdAC17F958D2ee523a2206206994597C13D831ec7"
      event: "Transfer(address,address,uint256)"
    sources:
      - provider: infura
        transport: websocket
        client: eth_subscribe
        url: "wss://mainnet.infura.io/ws/v3/{api_key}"
        api_key_env: INFURA_API_KEY

`filter.event` is the event signature; its keccak hash becomes topic0. Raw
`filter.topics` may be given instead, or alongside it when topic0 matches.
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from web3 import Web3

from src.feeds.base import LogFilter, redact_url
from src.reconciliation.errors import ConfigError
from src.reconciliation.records import make_source_label

logger = logging.getLogger(__name__)

VALID_MODES = ("keyed", "flat")
VALID_TRANSPORTS = ("websocket", "http", "replay")
VALID_CLIENTS = {
    "websocket": ("eth_subscribe", "web3"),
    "http": ("eth_getLogs",),
}


@dataclass
class SourceConfig:
    """One provider/transport/client combination under comparison."""

    provider: str
    transport: str
    client: str
    url: Optional[str] = None
    poll_interval: float = 2.0
    open_timeout: float = 10.0
    replay_path: Optional[str] = None
    replay_delay: float = 0.0
    api_key_env: Optional[str] = None
    api_key_vault: Optional[str] = None

    @property
    def label(self) -> str:
        return make_source_label(self.provider, self.transport, self.client)


@dataclass
class MetricsConfig:
    """Prometheus exposition settings."""

    port: Optional[int] = None
    pushgateway_url: Optional[str] = None
    job_name: str = "feed_reconciliation"


@dataclass
class RunConfig:
    """Complete configuration for one reconciliation run."""

    filter: LogFilter
    sources: List[SourceConfig]
    mode: str = "keyed"
    target_count: int = 1000
    gate_quorum: int = 0
    min_window_keys: int = 1
    trim_tail: bool = False
    reference_source: Optional[str] = None
    timeout_seconds: Optional[float] = None
    metrics: MetricsConfig = field(default_factory=MetricsConfig)

    @property
    def source_labels(self) -> List[str]:
        return [source.label for source in self.sources]

    @property
    def uses_vault(self) -> bool:
        return any(source.api_key_vault for source in self.sources)

    def validate(self) -> None:
        """
        Check the configuration for consistency.

        Raises:
            ConfigError: If any setting is invalid
        """
        if self.mode not in VALID_MODES:
            raise ConfigError(f"Invalid mode: {self.mode}. Must be one of {list(VALID_MODES)}")

        if self.target_count < 1:
            raise ConfigError(f"target_count must be positive, got {self.target_count}")

        if self.gate_quorum < 0 or self.gate_quorum > len(self.sources):
            raise ConfigError(
                f"gate_quorum must be between 0 and the number of sources "
                f"({len(self.sources)}), got {self.gate_quorum}"
            )

        if self.min_window_keys < 1:
            raise ConfigError(f"min_window_keys must be at least 1, got {self.min_window_keys}")

        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ConfigError(f"timeout_seconds must be positive, got {self.timeout_seconds}")

        if not self.filter.address:
            raise ConfigError("filter.address is required (or set CONTRACT_ADDR)")

        if len(self.sources) < 2:
            raise ConfigError(f"At least two sources are required, got {len(self.sources)}")

        try:
            labels = self.source_labels
        except ValueError as e:
            raise ConfigError(str(e)) from e

        duplicates = sorted({label for label in labels if labels.count(label) > 1})
        if duplicates:
            raise ConfigError(f"Duplicate source labels: {duplicates}")

        if self.reference_source is not None and self.reference_source not in labels:
            raise ConfigError(f"reference_source {self.reference_source} is not a configured source")

        for source in self.sources:
            if source.transport not in VALID_TRANSPORTS:
                raise ConfigError(
                    f"[{source.label}] invalid transport {source.transport}. "
                    f"Must be one of {list(VALID_TRANSPORTS)}"
                )
            clients = VALID_CLIENTS.get(source.transport)
            if clients is not None and source.client not in clients:
                raise ConfigError(
                    f"[{source.label}] invalid client {source.client} for {source.transport}. "
                    f"Must be one of {list(clients)}"
                )
            if source.transport == "replay":
                if not source.replay_path:
                    raise ConfigError(f"[{source.label}] replay transport requires replay_path")
            elif not source.url:
                raise ConfigError(f"[{source.label}] url is required")

    def redacted(self) -> Dict[str, Any]:
        """Plain-object form with inline API keys hidden."""
        data = asdict(self)
        for source in data["sources"]:
            if source.get("url") and "{api_key}" not in source["url"]:
                source["url"] = redact_url(source["url"])
            source["label"] = make_source_label(source["provider"], source["transport"], source["client"])
        return data


def _build_source(raw: Dict[str, Any]) -> SourceConfig:
    if not isinstance(raw, dict):
        raise ConfigError(f"Each source must be a mapping, got {raw!r}")

    missing = [key for key in ("provider", "transport", "client") if not raw.get(key)]
    if missing:
        raise ConfigError(f"Source {raw} is missing required fields: {missing}")

    known = set(SourceConfig.__dataclass_fields__)
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigError(f"Source {raw.get('provider')} has unknown fields: {unknown}")

    return SourceConfig(**raw)


def event_topic(signature: str) -> str:
    """
    Topic0 for an event signature.

    Args:
        signature: Canonical signature, e.g. "Transfer(address,address,uint256)"

    Returns:
        0x-prefixed keccak-256 hash of the signature
    """
    normalized = signature.replace(" ", "")
    if "(" not in normalized or not normalized.endswith(")"):
        raise ConfigError(f"Invalid event signature: {signature!r}. Expected e.g. Transfer(address,address,uint256)")
    return "0x" + bytes(Web3.keccak(text=normalized)).hex()


def _build_topics(event: Optional[str], topics: List[Optional[str]]) -> List[Optional[str]]:
    if not event:
        return list(topics)

    topic0 = event_topic(event)
    if not topics:
        return [topic0]
    if not isinstance(topics[0], str) or topics[0].lower() != topic0:
        raise ConfigError(f"filter.topics[0] {topics[0]} does not match event {event} ({topic0})")
    return list(topics)


def parse_config(data: Dict[str, Any]) -> RunConfig:
    """
    Build a RunConfig from a parsed mapping and environment overrides.

    Environment overrides:
        CONTRACT_ADDR: filter address
        FEEDRECON_TARGET_COUNT: target_count
        FEEDRECON_MODE: mode

    Args:
        data: Parsed YAML document

    Returns:
        Validated RunConfig

    Raises:
        ConfigError: If the configuration is invalid
    """
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping")

    filter_cfg = data.get("filter") or {}
    address = os.getenv("CONTRACT_ADDR") or filter_cfg.get("address") or ""
    topics = _build_topics(filter_cfg.get("event"), filter_cfg.get("topics") or [])

    sources = [_build_source(raw) for raw in data.get("sources") or []]

    metrics_cfg = data.get("metrics") or {}

    try:
        config = RunConfig(
            filter=LogFilter(address=address, topics=list(topics)),
            sources=sources,
            mode=os.getenv("FEEDRECON_MODE") or data.get("mode", "keyed"),
            target_count=int(os.getenv("FEEDRECON_TARGET_COUNT") or data.get("target_count", 1000)),
            gate_quorum=int(data.get("gate_quorum", 0)),
            min_window_keys=int(data.get("min_window_keys", 1)),
            trim_tail=bool(data.get("trim_tail", False)),
            reference_source=data.get("reference_source"),
            timeout_seconds=data.get("timeout_seconds"),
            metrics=MetricsConfig(**metrics_cfg)
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}") from e

    config.validate()
    return config


def load_config(path: Union[str, Path]) -> RunConfig:
    """
    Load and validate a YAML run configuration.

    Args:
        path: Configuration file path

    Returns:
        Validated RunConfig

    Raises:
        ConfigError: If the file is missing or invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    config = parse_config(data)
    logger.info(
        f"Loaded configuration {config_path}: mode={config.mode}, "
        f"target_count={config.target_count}, sources={config.source_labels}"
    )
    return config


def resolve_api_key(source: SourceConfig, vault_client=None) -> Optional[str]:
    """
    Resolve the API key for a source.

    `api_key_env` names an environment variable; `api_key_vault` is a Vault
    secret reference of the form "path#field" (field defaults to "api_key").

    Args:
        source: Source configuration
        vault_client: VaultClient used for Vault references

    Returns:
        API key, or None if the source needs none

    Raises:
        ConfigError: If the key cannot be resolved
    """
    if source.api_key_env:
        value = os.getenv(source.api_key_env)
        if not value:
            raise ConfigError(f"[{source.label}] environment variable {source.api_key_env} is not set")
        return value

    if source.api_key_vault:
        if vault_client is None:
            raise ConfigError(f"[{source.label}] api_key_vault is set but no Vault client is available")
        path, _, field_name = source.api_key_vault.partition("#")
        try:
            return vault_client.get_secret_field(path, field_name or "api_key")
        except KeyError as e:
            raise ConfigError(f"[{source.label}] {e.args[0]}") from e

    return None


def resolve_source_url(source: SourceConfig, vault_client=None) -> Optional[str]:
    """
    Substitute the resolved API key into the source URL.

    Args:
        source: Source configuration
        vault_client: VaultClient used for Vault references

    Returns:
        Final endpoint URL
    """
    if source.url is None:
        return None

    api_key = resolve_api_key(source, vault_client)
    if "{api_key}" in source.url:
        if api_key is None:
            raise ConfigError(f"[{source.label}] url needs {{api_key}} but no api_key_env/api_key_vault is set")
        return source.url.replace("{api_key}", api_key)

    return source.url
