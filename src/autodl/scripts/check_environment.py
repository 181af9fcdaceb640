#!/usr/bin/env python3
"""Check that credentials, PowerShell and config are ready for a sync run."""

import argparse
import asyncio
import sys

from autodl.core.config import get_exchange_credentials, get_graph_credentials, load_sync_config
from autodl.exchange.client import ExchangeOnlineClient


def check_graph_credentials() -> bool:
    """Check MS Graph credentials are set."""
    try:
        tenant_id, client_id, _ = get_graph_credentials()
    except ValueError as e:
        print(f"✗ {e}")
        return False

    print("✓ MS Graph credentials configured")
    print(f"  Tenant ID: {tenant_id[:8]}...")
    print(f"  Client ID: {client_id[:8]}...")
    return True


def check_exchange_credentials() -> bool:
    """Check Exchange Online certificate credentials are set."""
    try:
        creds = get_exchange_credentials()
    except ValueError as e:
        print(f"✗ {e}")
        return False

    method = "certificate file" if creds.certificate_path else "certificate thumbprint"
    print(f"✓ Exchange credentials configured ({method})")
    print(f"  Organization: {creds.organization}")
    return True


async def check_powershell_module() -> bool:
    """Check pwsh and the ExchangeOnlineManagement module are installed."""
    try:
        client = ExchangeOnlineClient()
    except ValueError as e:
        print(f"✗ Skipped PowerShell check: {e}")
        return False

    if await client.check_module_installed():
        print("✓ PowerShell ExchangeOnlineManagement module installed")
        return True

    print("✗ PowerShell 7+ or ExchangeOnlineManagement module missing")
    print("  Install-Module -Name ExchangeOnlineManagement")
    return False


def check_sync_config(config_path: str | None = None) -> bool:
    """Check the sync config loads and validates."""
    try:
        config = load_sync_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        print(f"✗ {e}")
        return False

    print(f"✓ Sync config loaded: {len(config.groups)} groups, domain {config.email_domain}")
    return True


async def check_all(config_path: str | None = None) -> bool:
    """Run all environment checks."""
    print("Environment Check")
    print("=" * 40)
    print()

    results = {
        "MS Graph": check_graph_credentials(),
        "Exchange Online": check_exchange_credentials(),
        "PowerShell": await check_powershell_module(),
        "Sync config": check_sync_config(config_path),
    }

    print()
    print("=" * 40)
    print("Summary:")
    for name, success in results.items():
        status = "✓" if success else "✗"
        print(f"  {status} {name}")

    return all(results.values())


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Check the distribution list sync environment")
    parser.add_argument("--config", help="Path to sync config JSON")

    args = parser.parse_args()

    success = asyncio.run(check_all(args.config))
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
