"""Normalization utilities for membership identities.

Identities are the join key between Entra ID and Exchange Online, so both
sides must be normalized the same way before any set comparison.
"""

from collections.abc import Iterable


def normalize_identity(address: str | None) -> str | None:
    """Normalize a mailbox address for comparison (stripped, lowercase).

    Args:
        address: Mail address or user principal name

    Returns:
        Lowercase stripped address, or None if empty
    """
    if not address:
        return None
    normalized = address.strip().lower()
    return normalized or None


def normalize_identities(addresses: Iterable[str | None]) -> set[str]:
    """Normalize addresses into a membership set, dropping empty values."""
    result: set[str] = set()
    for address in addresses:
        normalized = normalize_identity(address)
        if normalized:
            result.add(normalized)
    return result


def escape_single_quotes(value: str) -> str:
    """Escape a value for a single-quoted PowerShell string or OData literal.

    Both languages escape an embedded quote by doubling it.
    """
    return value.replace("'", "''")
