"""Configuration loading utilities."""

import json
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

DEFAULT_CONFIG_NAME = "autodl.json"
DEFAULT_COMMAND_TIMEOUT_SECONDS = 120

GRAPH_ENV_VARS = ("MS_GRAPH_TENANT_ID", "MS_GRAPH_CLIENT_ID", "MS_GRAPH_CLIENT_SECRET")


def _missing(names: list[str]) -> str:
    return ", ".join(name for name in names if not os.getenv(name))


def get_graph_credentials() -> tuple[str, str, str]:
    """Read the app registration used for directory lookups.

    Returns:
        Tuple of (tenant_id, client_id, client_secret)

    Raises:
        ValueError: Naming every MS_GRAPH_* variable that is unset
    """
    load_dotenv()

    missing = _missing(list(GRAPH_ENV_VARS))
    if missing:
        raise ValueError(f"Missing Graph app settings: {missing}")

    tenant, client, secret = (os.environ[name] for name in GRAPH_ENV_VARS)
    return tenant, client, secret


@dataclass
class ExchangeCredentials:
    """App-only certificate login for Exchange Online PowerShell."""

    tenant_id: str
    client_id: str
    organization: str
    certificate_thumbprint: str | None = None
    certificate_path: str | None = None
    certificate_password: str | None = None


def get_exchange_credentials() -> ExchangeCredentials:
    """Read the Exchange Online login from environment.

    The tenant and app default to the Graph registration. A certificate is
    either installed locally (``EXCHANGE_CERTIFICATE_THUMBPRINT``) or read
    from a .pfx file (``EXCHANGE_CERTIFICATE_PATH``), whose password must be
    set even when empty.

    Raises:
        ValueError: If the organization, app or certificate is not configured
    """
    load_dotenv()

    env = os.getenv
    tenant_id = env("EXCHANGE_TENANT_ID") or env("MS_GRAPH_TENANT_ID")
    client_id = env("EXCHANGE_CLIENT_ID") or env("MS_GRAPH_CLIENT_ID")
    if not (tenant_id and client_id):
        raise ValueError(
            "Missing Exchange app settings: set EXCHANGE_TENANT_ID and EXCHANGE_CLIENT_ID "
            "or their MS_GRAPH_* equivalents"
        )

    organization = env("EXCHANGE_ORGANIZATION")
    if not organization:
        raise ValueError("Missing Exchange setting: EXCHANGE_ORGANIZATION")

    creds = ExchangeCredentials(
        tenant_id=tenant_id,
        client_id=client_id,
        organization=organization,
        certificate_thumbprint=env("EXCHANGE_CERTIFICATE_THUMBPRINT"),
        certificate_path=env("EXCHANGE_CERTIFICATE_PATH"),
        certificate_password=env("EXCHANGE_CERTIFICATE_PASSWORD"),
    )

    if not (creds.certificate_thumbprint or creds.certificate_path):
        raise ValueError(
            "Missing Exchange certificate: set EXCHANGE_CERTIFICATE_THUMBPRINT "
            "or EXCHANGE_CERTIFICATE_PATH"
        )
    if creds.certificate_path and creds.certificate_password is None:
        # Key Vault exported certificates use an empty password
        raise ValueError(
            "EXCHANGE_CERTIFICATE_PATH needs EXCHANGE_CERTIFICATE_PASSWORD (may be empty)"
        )

    return creds


class SyncConfig(BaseModel):
    """Group names to mirror and how to address their distribution lists."""

    email_domain: str
    """Domain for list addresses, e.g. "contoso.com"."""

    groups: list[str] = Field(min_length=1)
    """Entra group display names, processed in order. Duplicates are kept."""

    command_timeout_seconds: int = Field(default=DEFAULT_COMMAND_TIMEOUT_SECONDS, gt=0)
    """Upper bound for a single Exchange Online PowerShell call."""

    @field_validator("email_domain")
    @classmethod
    def _check_domain(cls, value: str) -> str:
        value = value.strip()
        if not value or "@" in value or " " in value:
            raise ValueError(f"invalid email domain: {value!r}")
        return value

    @field_validator("groups")
    @classmethod
    def _check_groups(cls, value: list[str]) -> list[str]:
        names = [name.strip() for name in value]
        if any(not name for name in names):
            raise ValueError("group names must not be empty")
        return names


def get_project_root() -> Path:
    """Get the project root directory."""
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / "pyproject.toml").exists():
            return parent
    raise RuntimeError("Could not find project root (no pyproject.toml found)")


def get_default_config_path() -> Path:
    """Get the sync config path from ``AUTODL_CONFIG`` or the project config dir."""
    load_dotenv()

    env_path = os.getenv("AUTODL_CONFIG")
    if env_path:
        return Path(env_path)
    return get_project_root() / "config" / DEFAULT_CONFIG_NAME


def load_sync_config(config_path: Path | str | None = None) -> SyncConfig:
    """Load and validate the sync configuration.

    ``AUTODL_EMAIL_DOMAIN`` overrides the domain from the file.

    Args:
        config_path: Path to the JSON config. If None, uses the default location.

    Returns:
        Validated SyncConfig

    Raises:
        FileNotFoundError: If the config file does not exist
        ValueError: If the file is not valid JSON or fails validation
    """
    config_path = Path(config_path) if config_path else get_default_config_path()

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with config_path.open() as f:
            config_data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Config file {config_path} is not valid JSON: {e}") from e

    if not isinstance(config_data, dict):
        raise ValueError(f"Config file {config_path} must contain a JSON object")

    domain_override = os.getenv("AUTODL_EMAIL_DOMAIN")
    if domain_override:
        config_data["email_domain"] = domain_override

    try:
        return SyncConfig.model_validate(config_data)
    except ValidationError as e:
        raise ValueError(f"Invalid config file {config_path}: {e}") from e
