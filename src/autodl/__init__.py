"""Keep Exchange Online distribution lists in sync with Entra ID groups."""

__version__ = "0.1.0"
