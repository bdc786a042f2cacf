"""
Vault Client Utility for Feed Reconciliation

Reads the provider API keys embedded in feed endpoint URLs from a HashiCorp
Vault KV v2 engine. Several sources usually share one provider secret, so each
secret path is read at most once per client.
"""

import os
from typing import Dict, Any, Optional
from dataclasses import dataclass
import hvac
from hvac.exceptions import VaultError, InvalidPath
import logging

logger = logging.getLogger(__name__)


@dataclass
class HealthStatus:
    """
    Vault reachability as reported by `check-config`.

    Attributes:
        healthy: Authenticated and unsealed
        sealed: Whether Vault reports itself sealed
        error: Reason when not healthy
    """

    healthy: bool
    sealed: bool
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.healthy

    def to_dict(self) -> Dict[str, Any]:
        return {"healthy": self.healthy, "sealed": self.sealed, "error": self.error}


class VaultClient:
    """
    Provider API key lookup backed by HashiCorp Vault.

    Usage:
        with VaultClient() as vault:
            api_key = vault.get_secret_field("feedrecon/alchemy", "api_key")
    """

    def __init__(
        self,
        vault_url: Optional[str] = None,
        vault_token: Optional[str] = None,
        verify_ssl: bool = True,
        mount_point: str = "secret"
    ):
        """
        Connect to Vault.

        Args:
            vault_url: Vault server URL (defaults to VAULT_ADDR)
            vault_token: Token (defaults to VAULT_TOKEN)
            verify_ssl: Whether to verify TLS certificates
            mount_point: KV v2 mount point

        Raises:
            ValueError: If the URL or token is missing
            VaultError: If Vault is unreachable or rejects the token
        """
        self.vault_url = vault_url or os.getenv("VAULT_ADDR")
        self.vault_token = vault_token or os.getenv("VAULT_TOKEN")
        self.mount_point = mount_point
        self._secrets: Dict[str, Dict[str, Any]] = {}

        if not self.vault_url:
            raise ValueError("Vault URL must be provided via parameter or VAULT_ADDR environment variable")

        if not self.vault_token:
            raise ValueError("Vault token must be provided via parameter or VAULT_TOKEN environment variable")

        try:
            self.client = hvac.Client(url=self.vault_url, token=self.vault_token, verify=verify_ssl)
            authenticated = self.client.is_authenticated()
        except Exception as e:
            logger.error(f"Cannot reach Vault at {self.vault_url}: {e}")
            raise VaultError(f"Vault initialization failed: {e}") from e

        if not authenticated:
            logger.error(f"Vault at {self.vault_url} rejected the token")
            raise VaultError("Failed to authenticate with Vault")

        logger.info(f"Connected to Vault at {self.vault_url}")

    def get_secret(self, path: str) -> Dict[str, Any]:
        """
        Read a secret, once per path.

        Args:
            path: Secret path under the mount point (e.g. "feedrecon/infura")

        Returns:
            Secret data

        Raises:
            InvalidPath: If nothing is stored at the path
            VaultError: If the read fails
        """
        if path in self._secrets:
            return self._secrets[path]

        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=path,
                mount_point=self.mount_point
            )
        except InvalidPath:
            logger.error(f"No provider secret at {self.mount_point}/{path}")
            raise
        except Exception as e:
            logger.error(f"Reading provider secret {path} failed: {e}")
            raise VaultError(f"Secret retrieval failed: {e}") from e

        if not response or "data" not in response:
            raise InvalidPath(f"No data found at path: {path}")

        self._secrets[path] = response["data"].get("data", {})
        logger.debug(f"Read provider secret {path} ({len(self._secrets[path])} fields)")
        return self._secrets[path]

    def get_secret_field(self, path: str, field: str) -> str:
        """
        Read one field of a secret.

        Raises:
            KeyError: If the field is absent
        """
        secret = self.get_secret(path)

        if field not in secret:
            raise KeyError(
                f"Field '{field}' not found in secret {path}. "
                f"Available fields: {sorted(secret.keys())}"
            )

        return secret[field]

    def health_check(self) -> HealthStatus:
        """Report whether the token is still valid and Vault is unsealed."""
        try:
            if not self.client.is_authenticated():
                return HealthStatus(healthy=False, sealed=False, error="Not authenticated")

            health = self.client.sys.read_health_status(method="GET")
        except Exception as e:
            logger.warning(f"Vault health check failed: {e}")
            return HealthStatus(healthy=False, sealed=True, error=str(e))

        sealed = health.get("sealed", True) if isinstance(health, dict) else True
        if sealed:
            logger.warning(f"Vault at {self.vault_url} is sealed")
            return HealthStatus(healthy=False, sealed=True, error="Vault is sealed")

        return HealthStatus(healthy=True, sealed=False)

    def close(self):
        """Drop cached secrets and the hvac client."""
        self._secrets.clear()
        self.client = None
        logger.debug("Vault client closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
