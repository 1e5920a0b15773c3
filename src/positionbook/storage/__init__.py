"""Persistence for positions, the transaction log and account data.

Provides a primary key-value repository (in memory or JSON files), optional
mirror backends (a second directory or Supabase), and the gateway that
writes through both and broadcasts changes to in-process observers.
"""

from .gateway import (
    COLLECTIONS,
    SETTING_KEYS,
    MirrorResult,
    PersistenceGateway,
    SaveOutcome,
    empty_value,
)
from .mirror import (
    ACCOUNT_PRINCIPALS,
    INVESTMENT_LOGS,
    PORTFOLIO_ASSETS,
    SETTINGS_PREFIX,
    JsonDirectoryMirror,
    MirrorStore,
    SupabaseMirror,
)
from .notifications import ChangeEvent, ChangeNotifier
from .repository import InMemoryRepository, JsonFileRepository, Repository

__all__ = [
    "ACCOUNT_PRINCIPALS",
    "COLLECTIONS",
    "INVESTMENT_LOGS",
    "PORTFOLIO_ASSETS",
    "SETTINGS_PREFIX",
    "SETTING_KEYS",
    "ChangeEvent",
    "ChangeNotifier",
    "InMemoryRepository",
    "JsonDirectoryMirror",
    "JsonFileRepository",
    "MirrorResult",
    "MirrorStore",
    "PersistenceGateway",
    "Repository",
    "SaveOutcome",
    "SupabaseMirror",
    "empty_value",
]
