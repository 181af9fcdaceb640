"""Tests for autodl.core.config."""

import json
from unittest.mock import patch

import pytest

from autodl.core.config import (
    DEFAULT_COMMAND_TIMEOUT_SECONDS,
    SyncConfig,
    get_default_config_path,
    get_exchange_credentials,
    get_graph_credentials,
    load_sync_config,
)


class TestGetGraphCredentials:
    """Tests for get_graph_credentials function."""

    def test_returns_credentials_when_set(self, mock_env_vars):
        with patch("autodl.core.config.load_dotenv"):
            tenant_id, client_id, client_secret = get_graph_credentials()

        assert tenant_id == "test-tenant-id"
        assert client_id == "test-client-id"
        assert client_secret == "test-client-secret"

    def test_raises_when_secret_missing(self, mock_env_vars, monkeypatch):
        monkeypatch.delenv("MS_GRAPH_CLIENT_SECRET")

        with (
            patch("autodl.core.config.load_dotenv"),
            pytest.raises(ValueError, match="MS_GRAPH_CLIENT_SECRET"),
        ):
            get_graph_credentials()


class TestGetExchangeCredentials:
    """Tests for get_exchange_credentials function."""

    def test_falls_back_to_graph_ids(self, mock_env_vars):
        with patch("autodl.core.config.load_dotenv"):
            creds = get_exchange_credentials()

        assert creds.tenant_id == "test-tenant-id"
        assert creds.client_id == "test-client-id"
        assert creds.organization == "test.onmicrosoft.com"
        assert creds.certificate_thumbprint == "ABC123"

    def test_exchange_ids_take_precedence(self, mock_env_vars, monkeypatch):
        monkeypatch.setenv("EXCHANGE_TENANT_ID", "exo-tenant")
        monkeypatch.setenv("EXCHANGE_CLIENT_ID", "exo-client")

        with patch("autodl.core.config.load_dotenv"):
            creds = get_exchange_credentials()

        assert creds.tenant_id == "exo-tenant"
        assert creds.client_id == "exo-client"

    def test_raises_without_organization(self, mock_env_vars, monkeypatch):
        monkeypatch.delenv("EXCHANGE_ORGANIZATION")

        with (
            patch("autodl.core.config.load_dotenv"),
            pytest.raises(ValueError, match="EXCHANGE_ORGANIZATION"),
        ):
            get_exchange_credentials()

    def test_raises_without_certificate(self, mock_env_vars, monkeypatch):
        monkeypatch.delenv("EXCHANGE_CERTIFICATE_THUMBPRINT")

        with (
            patch("autodl.core.config.load_dotenv"),
            pytest.raises(ValueError, match="EXCHANGE_CERTIFICATE_THUMBPRINT"),
        ):
            get_exchange_credentials()

    def test_certificate_path_requires_password(self, mock_env_vars, monkeypatch):
        monkeypatch.delenv("EXCHANGE_CERTIFICATE_THUMBPRINT")
        monkeypatch.setenv("EXCHANGE_CERTIFICATE_PATH", "/certs/app.pfx")

        with (
            patch("autodl.core.config.load_dotenv"),
            pytest.raises(ValueError, match="EXCHANGE_CERTIFICATE_PASSWORD"),
        ):
            get_exchange_credentials()

    def test_certificate_path_with_empty_password(self, mock_env_vars, monkeypatch):
        monkeypatch.delenv("EXCHANGE_CERTIFICATE_THUMBPRINT")
        monkeypatch.setenv("EXCHANGE_CERTIFICATE_PATH", "/certs/app.pfx")
        monkeypatch.setenv("EXCHANGE_CERTIFICATE_PASSWORD", "")

        with patch("autodl.core.config.load_dotenv"):
            creds = get_exchange_credentials()

        assert creds.certificate_path == "/certs/app.pfx"
        assert creds.certificate_password == ""


class TestSyncConfig:
    """Tests for the SyncConfig model."""

    def test_defaults_timeout(self):
        config = SyncConfig(email_domain="contoso.com", groups=["HR"])
        assert config.command_timeout_seconds == DEFAULT_COMMAND_TIMEOUT_SECONDS

    def test_strips_values(self):
        config = SyncConfig(email_domain=" contoso.com ", groups=[" HR "])
        assert config.email_domain == "contoso.com"
        assert config.groups == ["HR"]

    def test_keeps_duplicates(self):
        config = SyncConfig(email_domain="contoso.com", groups=["HR", "HR"])
        assert config.groups == ["HR", "HR"]

    @pytest.mark.parametrize("domain", ["", "user@contoso.com", "con toso.com"])
    def test_rejects_bad_domain(self, domain):
        with pytest.raises(ValueError):
            SyncConfig(email_domain=domain, groups=["HR"])

    def test_rejects_empty_group_list(self):
        with pytest.raises(ValueError):
            SyncConfig(email_domain="contoso.com", groups=[])

    def test_rejects_blank_group_name(self):
        with pytest.raises(ValueError):
            SyncConfig(email_domain="contoso.com", groups=["HR", "  "])

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError):
            SyncConfig(email_domain="contoso.com", groups=["HR"], command_timeout_seconds=0)


class TestLoadSyncConfig:
    """Tests for load_sync_config function."""

    def test_loads_valid_file(self, mock_env_vars, sync_config_file):
        config = load_sync_config(sync_config_file)

        assert config.email_domain == "contoso.com"
        assert config.groups == ["Finance-Team", "HR"]
        assert config.command_timeout_seconds == 60

    def test_accepts_string_path(self, mock_env_vars, sync_config_file):
        config = load_sync_config(str(sync_config_file))
        assert config.groups == ["Finance-Team", "HR"]

    def test_missing_file_raises(self, mock_env_vars, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_sync_config(tmp_path / "missing.json")

    def test_invalid_json_raises(self, mock_env_vars, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")

        with pytest.raises(ValueError, match="not valid JSON"):
            load_sync_config(path)

    def test_non_object_raises(self, mock_env_vars, tmp_path):
        path = tmp_path / "list.json"
        path.write_text(json.dumps(["HR"]))

        with pytest.raises(ValueError, match="JSON object"):
            load_sync_config(path)

    def test_missing_groups_raises(self, mock_env_vars, tmp_path):
        path = tmp_path / "nogroups.json"
        path.write_text(json.dumps({"email_domain": "contoso.com"}))

        with pytest.raises(ValueError, match="Invalid config"):
            load_sync_config(path)

    def test_domain_override_from_env(self, mock_env_vars, monkeypatch, sync_config_file):
        monkeypatch.setenv("AUTODL_EMAIL_DOMAIN", "fabrikam.com")

        config = load_sync_config(sync_config_file)

        assert config.email_domain == "fabrikam.com"

    def test_default_path_from_env(self, mock_env_vars, monkeypatch, sync_config_file):
        monkeypatch.setenv("AUTODL_CONFIG", str(sync_config_file))

        with patch("autodl.core.config.load_dotenv"):
            assert get_default_config_path() == sync_config_file
            config = load_sync_config()

        assert config.groups == ["Finance-Team", "HR"]
