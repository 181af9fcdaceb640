"""Shared pytest fixtures."""

import json
from unittest.mock import MagicMock

import pytest


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Set mock environment variables for testing."""
    monkeypatch.setenv("MS_GRAPH_TENANT_ID", "test-tenant-id")
    monkeypatch.setenv("MS_GRAPH_CLIENT_ID", "test-client-id")
    monkeypatch.setenv("MS_GRAPH_CLIENT_SECRET", "test-client-secret")
    monkeypatch.setenv("EXCHANGE_ORGANIZATION", "test.onmicrosoft.com")
    monkeypatch.setenv("EXCHANGE_CERTIFICATE_THUMBPRINT", "ABC123")
    monkeypatch.delenv("EXCHANGE_TENANT_ID", raising=False)
    monkeypatch.delenv("EXCHANGE_CLIENT_ID", raising=False)
    monkeypatch.delenv("EXCHANGE_CERTIFICATE_PATH", raising=False)
    monkeypatch.delenv("EXCHANGE_CERTIFICATE_PASSWORD", raising=False)
    monkeypatch.delenv("AUTODL_CONFIG", raising=False)
    monkeypatch.delenv("AUTODL_EMAIL_DOMAIN", raising=False)


@pytest.fixture
def sync_config_file(tmp_path):
    """Write a valid sync config and return its path."""
    path = tmp_path / "autodl.json"
    path.write_text(
        json.dumps(
            {
                "email_domain": "contoso.com",
                "groups": ["Finance-Team", "HR"],
                "command_timeout_seconds": 60,
            }
        )
    )
    return path


@pytest.fixture
def mock_graph_client():
    """Mock MS Graph client for testing."""
    return MagicMock()
