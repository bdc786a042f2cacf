"""
Unit tests for vault_client module.
"""

import pytest
from unittest.mock import patch, MagicMock
from hvac.exceptions import VaultError, InvalidPath

from src.utils.vault_client import VaultClient


class TestVaultClient:
    """Test suite for VaultClient class."""

    @pytest.fixture
    def mock_hvac_client(self):
        """Mock hvac.Client for testing."""
        with patch('src.utils.vault_client.hvac.Client') as mock:
            client_instance = MagicMock()
            client_instance.is_authenticated.return_value = True
            mock.return_value = client_instance
            yield mock

    def _with_secret(self, mock_hvac_client, data):
        mock_client = mock_hvac_client.return_value
        mock_client.secrets.kv.v2.read_secret_version.return_value = {"data": {"data": data}}
        return mock_client

    def test_init_with_parameters(self, mock_hvac_client):
        """Test VaultClient initialization with explicit parameters."""
        client = VaultClient(
            vault_url="http://test-vault:8200",
            vault_token="test-token"
        )

        assert client.vault_url == "http://test-vault:8200"
        assert client.vault_token == "test-token"
        assert client.mount_point == "secret"
        mock_hvac_client.assert_called_once_with(url="http://test-vault:8200", token="test-token", verify=True)

    def test_init_with_env_vars(self, mock_hvac_client, monkeypatch):
        """Test VaultClient initialization with environment variables."""
        monkeypatch.setenv("VAULT_ADDR", "http://env-vault:8200")
        monkeypatch.setenv("VAULT_TOKEN", "env-token")

        client = VaultClient()

        assert client.vault_url == "http://env-vault:8200"
        assert client.vault_token == "env-token"

    def test_init_missing_url_raises_error(self, monkeypatch):
        """Test that missing Vault URL raises ValueError."""
        monkeypatch.delenv("VAULT_ADDR", raising=False)
        with pytest.raises(ValueError, match="Vault URL must be provided"):
            VaultClient(vault_token="test-token")

    def test_init_missing_token_raises_error(self, monkeypatch):
        """Test that missing Vault token raises ValueError."""
        monkeypatch.delenv("VAULT_TOKEN", raising=False)
        with pytest.raises(ValueError, match="Vault token must be provided"):
            VaultClient(vault_url="http://test:8200")

    def test_init_authentication_failure(self, mock_hvac_client):
        """Test that authentication failure raises VaultError."""
        mock_hvac_client.return_value.is_authenticated.return_value = False

        with pytest.raises(VaultError, match="Failed to authenticate"):
            VaultClient(vault_url="http://test:8200", vault_token="bad-token")

    def test_init_connection_failure(self, mock_hvac_client):
        """Test that an unreachable Vault raises VaultError."""
        mock_hvac_client.return_value.is_authenticated.side_effect = ConnectionError("refused")

        with pytest.raises(VaultError, match="Vault initialization failed"):
            VaultClient(vault_url="http://test:8200", vault_token="test-token")

    def test_get_secret_success(self, mock_hvac_client):
        """Test successful secret retrieval."""
        mock_client = self._with_secret(mock_hvac_client, {"api_key": "abc123"})

        client = VaultClient(vault_url="http://test:8200", vault_token="test-token")
        secret = client.get_secret("infura-api-key")

        assert secret == {"api_key": "abc123"}
        mock_client.secrets.kv.v2.read_secret_version.assert_called_once_with(
            path="infura-api-key",
            mount_point="secret"
        )

    def test_get_secret_not_found(self, mock_hvac_client):
        """Test secret retrieval with invalid path."""
        mock_client = mock_hvac_client.return_value
        mock_client.secrets.kv.v2.read_secret_version.side_effect = InvalidPath("Not found")

        client = VaultClient(vault_url="http://test:8200", vault_token="test-token")

        with pytest.raises(InvalidPath):
            client.get_secret("nonexistent")

    def test_get_secret_empty_response(self, mock_hvac_client):
        """Test secret retrieval with empty response."""
        mock_client = mock_hvac_client.return_value
        mock_client.secrets.kv.v2.read_secret_version.return_value = {}

        client = VaultClient(vault_url="http://test:8200", vault_token="test-token")

        with pytest.raises(InvalidPath, match="No data found"):
            client.get_secret("empty-secret")

    def test_get_secret_other_error(self, mock_hvac_client):
        """Test that unexpected errors are wrapped."""
        mock_client = mock_hvac_client.return_value
        mock_client.secrets.kv.v2.read_secret_version.side_effect = RuntimeError("timeout")

        client = VaultClient(vault_url="http://test:8200", vault_token="test-token")

        with pytest.raises(VaultError, match="Secret retrieval failed"):
            client.get_secret("infura-api-key")

    def test_get_secret_field(self, mock_hvac_client):
        """Test reading one field of a secret."""
        self._with_secret(mock_hvac_client, {"token": "t0k"})

        client = VaultClient(vault_url="http://test:8200", vault_token="test-token")

        assert client.get_secret_field("alchemy", "token") == "t0k"

    def test_get_secret_field_missing(self, mock_hvac_client):
        """Test that a missing field raises KeyError."""
        self._with_secret(mock_hvac_client, {"token": "t0k"})

        client = VaultClient(vault_url="http://test:8200", vault_token="test-token")

        with pytest.raises(KeyError, match="api_key"):
            client.get_secret_field("alchemy", "api_key")

    def test_get_secret_is_read_once(self, mock_hvac_client):
        """Test that sources sharing a secret path cause one Vault read."""
        mock_client = self._with_secret(mock_hvac_client, {"api_key": "k1", "ws_key": "k2"})

        client = VaultClient(vault_url="http://test:8200", vault_token="test-token")

        assert client.get_secret_field("feedrecon/infura", "api_key") == "k1"
        assert client.get_secret_field("feedrecon/infura", "ws_key") == "k2"
        mock_client.secrets.kv.v2.read_secret_version.assert_called_once_with(
            path="feedrecon/infura",
            mount_point="secret"
        )

    def test_health_check_success(self, mock_hvac_client):
        """Test successful health check."""
        mock_client = mock_hvac_client.return_value
        mock_client.sys.read_health_status.return_value = {"sealed": False}

        client = VaultClient(vault_url="http://test:8200", vault_token="test-token")
        status = client.health_check()

        assert status
        assert status.to_dict() == {"healthy": True, "sealed": False, "error": None}

    def test_health_check_not_authenticated(self, mock_hvac_client):
        """Test health check with failed authentication."""
        client = VaultClient(vault_url="http://test:8200", vault_token="test-token")

        # After client is created, change authentication to fail
        mock_client = mock_hvac_client.return_value
        mock_client.is_authenticated.return_value = False

        status = client.health_check()
        assert not status
        assert status.error == "Not authenticated"

    def test_health_check_sealed(self, mock_hvac_client):
        """Test health check with sealed Vault."""
        mock_client = mock_hvac_client.return_value
        mock_client.sys.read_health_status.return_value = {"sealed": True}

        client = VaultClient(vault_url="http://test:8200", vault_token="test-token")
        status = client.health_check()

        assert not status
        assert status.sealed is True

    def test_health_check_exception(self, mock_hvac_client):
        """Test health check when Vault is unreachable."""
        client = VaultClient(vault_url="http://test:8200", vault_token="test-token")
        mock_hvac_client.return_value.is_authenticated.side_effect = ConnectionError("down")

        status = client.health_check()

        assert not status
        assert "down" in status.error

    def test_context_manager(self, mock_hvac_client):
        """Test VaultClient as context manager."""
        self._with_secret(mock_hvac_client, {"api_key": "k1"})

        with VaultClient(vault_url="http://test:8200", vault_token="test-token") as client:
            client.get_secret("feedrecon/infura")
            assert client.client is not None

        assert client.client is None
        assert client._secrets == {}

    def test_close(self, mock_hvac_client):
        """Test closing the Vault client."""
        client = VaultClient(vault_url="http://test:8200", vault_token="test-token")
        assert client.client is not None

        client.close()
        assert client.client is None
