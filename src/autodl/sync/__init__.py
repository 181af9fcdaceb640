"""Distribution list sync engine."""
