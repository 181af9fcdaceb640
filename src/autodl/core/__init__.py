"""Core utilities for distribution list sync."""

from autodl.core.config import (
    SyncConfig,
    get_exchange_credentials,
    get_graph_credentials,
    load_sync_config,
)
from autodl.core.mapping import GroupMapping
from autodl.core.reconcile import Diff, diff

__all__ = [
    "Diff",
    "GroupMapping",
    "SyncConfig",
    "diff",
    "get_exchange_credentials",
    "get_graph_credentials",
    "load_sync_config",
]
