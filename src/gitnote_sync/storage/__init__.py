"""Storage layer for gitnote-sync: local store, settings, codecs and the remote."""

from gitnote_sync.storage.local_store import LocalStore
from gitnote_sync.storage.remote_store import RemoteContentStore
from gitnote_sync.storage.settings_store import SettingsStore
from gitnote_sync.storage.sync_repository import SyncRepository

__all__ = [
    "LocalStore",
    "RemoteContentStore",
    "SettingsStore",
    "SyncRepository",
]
