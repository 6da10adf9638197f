"""Configuration, storage backends and the error taxonomy."""

from .errors import (
    CopydeskError,
    GenerationFailure,
    HydrationFailure,
    MissingIdentity,
    NoActiveDocument,
    QuotaExceeded,
    RemoteUnavailable,
    SectionBusy,
    SelectionStale,
    TemplateValidationError,
)
from .gateway import DurableStoreGateway, GatewayStatus, StorageLocation, StorageOutcome, SyncReport
from .local_cache import CacheSnapshot, LocalCacheStore
from .records import PersistedRecord
from .remote_store import RemoteStore
from .settings import SecretVault, Settings, SettingsStore

__all__ = [
    "CacheSnapshot",
    "CopydeskError",
    "DurableStoreGateway",
    "GatewayStatus",
    "GenerationFailure",
    "HydrationFailure",
    "LocalCacheStore",
    "MissingIdentity",
    "NoActiveDocument",
    "PersistedRecord",
    "QuotaExceeded",
    "RemoteStore",
    "RemoteUnavailable",
    "SecretVault",
    "SectionBusy",
    "SelectionStale",
    "Settings",
    "SettingsStore",
    "StorageLocation",
    "StorageOutcome",
    "SyncReport",
    "TemplateValidationError",
]
