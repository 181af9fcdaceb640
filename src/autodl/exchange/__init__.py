"""Exchange Online access."""
