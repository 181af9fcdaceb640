"""Entra ID (Microsoft Graph) access."""
