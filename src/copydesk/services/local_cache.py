"""Local key-value cache: the always-available layer of the durable store."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .errors import HydrationFailure, QuotaExceeded
from .records import COLLECTIONS, PersistedRecord

__all__ = ["CacheSnapshot", "LocalCacheStore", "SESSION_KEYS"]

LOGGER = logging.getLogger(__name__)
_CACHE_FILENAME = "workspace_cache.json"
_CACHE_VERSION = 2
_SESSION = "session"
_PENDING = "pending_sync"
SESSION_KEYS: tuple[str, ...] = (
    "active_document_id",
    "left_sidebar_open",
    "right_sidebar_open",
    "active_tool_id",
    "migration_complete",
)


@dataclass(slots=True)
class CacheSnapshot:
    """Everything the cache holds, decoded for hydration."""

    documents: dict[str, PersistedRecord] = field(default_factory=dict)
    progress: dict[str, PersistedRecord] = field(default_factory=dict)
    session: dict[str, Any] = field(default_factory=dict)
    pending_sync: set[str] = field(default_factory=set)
    error: HydrationFailure | None = None

    def collection(self, name: str) -> dict[str, PersistedRecord]:
        return self.documents if name == "documents" else self.progress


class LocalCacheStore:
    """JSON-file cache holding one entry per logical collection.

    Every mutation rewrites the whole file through a temporary file, so a
    crash mid-write leaves the previous state in place. The serialized size
    is bounded by ``capacity_bytes``; a write that would exceed it raises
    :class:`QuotaExceeded` and is rolled back in memory.
    """

    def __init__(self, path: Path | None = None, *, capacity_bytes: int = 5 * 1024 * 1024) -> None:
        self._path = path or Path.home() / ".copydesk" / "cache" / _CACHE_FILENAME
        self._capacity = max(0, int(capacity_bytes))
        self._data: dict[str, Any] | None = None
        self._load_error: HydrationFailure | None = None

    @classmethod
    def in_directory(cls, directory: Path, *, capacity_bytes: int = 5 * 1024 * 1024) -> LocalCacheStore:
        return cls(directory / _CACHE_FILENAME, capacity_bytes=capacity_bytes)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def capacity_bytes(self) -> int:
        return self._capacity

    # ------------------------------------------------------------------
    # Snapshot (hydration)
    # ------------------------------------------------------------------
    def load_snapshot(self) -> CacheSnapshot:
        """Decode the full cache; corrupt content yields empty collections."""

        data = self._ensure_loaded()
        snapshot = CacheSnapshot(error=self._load_error)
        corrupt: list[str] = []
        for collection in COLLECTIONS:
            target = snapshot.collection(collection)
            for key, raw in data[collection]["entries"].items():
                try:
                    target[key] = PersistedRecord.from_dict(raw)
                except ValueError as exc:
                    corrupt.append(f"{collection}:{key}")
                    LOGGER.warning("Skipping corrupt %s record %s: %s", collection, key, exc)
        snapshot.session = dict(data[_SESSION]["entries"])
        snapshot.pending_sync = set(data[_PENDING])
        if corrupt and snapshot.error is None:
            snapshot.error = HydrationFailure(
                message="Some saved records could not be read",
                details={"corrupt": corrupt},
            )
        return snapshot

    # ------------------------------------------------------------------
    # Record access
    # ------------------------------------------------------------------
    def get(self, collection: str, key: str) -> PersistedRecord | None:
        """Return the record or ``None`` when absent or unreadable."""

        raw = self._entries(collection).get(key)
        if raw is None:
            return None
        try:
            return PersistedRecord.from_dict(raw)
        except ValueError as exc:
            LOGGER.warning("Local %s record %s is corrupt: %s", collection, key, exc)
            return None

    def keys(self, collection: str) -> list[str]:
        return list(self._entries(collection))

    def put(self, collection: str, key: str, record: PersistedRecord) -> None:
        """Replace the whole record for ``key``."""

        entries = self._entries(collection)
        previous = entries.get(key)
        entries[key] = record.to_dict()
        try:
            self._flush()
        except QuotaExceeded:
            if previous is None:
                entries.pop(key, None)
            else:
                entries[key] = previous
            raise

    def remove(self, collection: str, key: str) -> bool:
        entries = self._entries(collection)
        if entries.pop(key, None) is None:
            return False
        self._discard_pending(f"{collection}:{key}")
        self._flush()
        return True

    # ------------------------------------------------------------------
    # Session preferences
    # ------------------------------------------------------------------
    def session_prefs(self) -> dict[str, Any]:
        return dict(self._ensure_loaded()[_SESSION]["entries"])

    def save_session_prefs(self, prefs: Mapping[str, Any]) -> None:
        """Persist the whitelisted subset of ``prefs``."""

        entries = self._ensure_loaded()[_SESSION]["entries"]
        previous = dict(entries)
        entries.clear()
        entries.update({key: value for key, value in prefs.items() if key in SESSION_KEYS})
        if entries == previous:
            return
        try:
            self._flush()
        except QuotaExceeded:
            entries.clear()
            entries.update(previous)
            raise

    # ------------------------------------------------------------------
    # Pending sync markers
    # ------------------------------------------------------------------
    def pending_sync(self) -> set[str]:
        return set(self._ensure_loaded()[_PENDING])

    def mark_pending(self, collection: str, key: str) -> None:
        pending = self._ensure_loaded()[_PENDING]
        marker = f"{collection}:{key}"
        if marker in pending:
            return
        pending.append(marker)
        try:
            self._flush()
        except QuotaExceeded:
            pending.remove(marker)
            raise

    def clear_pending(self, collection: str, key: str) -> None:
        if self._discard_pending(f"{collection}:{key}"):
            self._flush()

    def _discard_pending(self, marker: str) -> bool:
        pending = self._ensure_loaded()[_PENDING]
        if marker not in pending:
            return False
        pending.remove(marker)
        return True

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------
    def _entries(self, collection: str) -> dict[str, Any]:
        if collection not in COLLECTIONS:
            raise KeyError(f"Unknown collection {collection!r}")
        return self._ensure_loaded()[collection]["entries"]

    def _ensure_loaded(self) -> dict[str, Any]:
        if self._data is None:
            payload, error = self._read_payload()
            self._data, migrated = _migrate(payload)
            self._load_error = error
            if migrated:
                LOGGER.info("Migrated local cache %s to version %s", self._path, _CACHE_VERSION)
                try:
                    self._flush()
                except (OSError, QuotaExceeded) as exc:
                    LOGGER.warning("Unable to persist migrated cache: %s", exc)
        return self._data

    def _read_payload(self) -> tuple[dict[str, Any], HydrationFailure | None]:
        if not self._path.exists():
            return {}, None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}, None
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.warning("Local cache %s is unreadable: %s", self._path, exc)
            return {}, HydrationFailure(details={"path": str(self._path), "reason": str(exc)})
        if not isinstance(data, Mapping):
            LOGGER.warning("Local cache %s does not contain an object", self._path)
            return {}, HydrationFailure(details={"path": str(self._path), "reason": "not an object"})
        return dict(data), None

    def _flush(self) -> None:
        data = self._ensure_loaded()
        body = json.dumps(data, sort_keys=True)
        size = len(body.encode("utf-8"))
        if self._capacity and size > self._capacity:
            LOGGER.warning(
                "Local cache write refused: %d bytes exceeds capacity %d", size, self._capacity
            )
            raise QuotaExceeded(required_bytes=size, capacity_bytes=self._capacity)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)


def _migrate(payload: Mapping[str, Any]) -> tuple[dict[str, Any], bool]:
    """Upgrade ``payload`` to the current layout.

    Version 1 stored bare ``{id: payload}`` maps per collection; they are
    wrapped into :class:`PersistedRecord` envelopes once.
    """

    version = payload.get("version", _CACHE_VERSION) if payload else _CACHE_VERSION
    migrated = bool(payload) and version != _CACHE_VERSION
    data: dict[str, Any] = {"version": _CACHE_VERSION}
    for collection in COLLECTIONS:
        raw = payload.get(collection)
        entries: dict[str, Any] = {}
        if version == 1 and isinstance(raw, Mapping):
            for key, value in raw.items():
                entries[str(key)] = PersistedRecord(payload=dict(value)).to_dict() if isinstance(value, Mapping) else value
        elif isinstance(raw, Mapping) and isinstance(raw.get("entries"), Mapping):
            entries = {str(key): value for key, value in raw["entries"].items()}
        data[collection] = {"version": _CACHE_VERSION, "entries": entries}
    session = payload.get(_SESSION)
    session_entries: dict[str, Any] = {}
    if isinstance(session, Mapping):
        source = session.get("entries", session) if version != 1 else session
        if isinstance(source, Mapping):
            session_entries = {key: value for key, value in source.items() if key in SESSION_KEYS}
    data[_SESSION] = {"version": _CACHE_VERSION, "entries": session_entries}
    pending = payload.get(_PENDING)
    data[_PENDING] = [str(item) for item in pending] if isinstance(pending, list) else []
    return data, migrated
