"""Uniform CRUD over the local cache and the optional remote store.

Policy summary:

* Writes land in the local cache synchronously before the first suspension
  point, then go to the remote store. A remote failure leaves the local
  record as the fallback of record and marks it ``pending_sync``; the remote
  side is never patched with a partial update.
* Reads prefer the remote copy when it is reachable and exists, unless the
  local copy is a newer pending write (last-write-wins on ``updatedAt``).
* Every operation returns a :class:`StorageOutcome` naming the path taken.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from .errors import CopydeskError, QuotaExceeded, RemoteUnavailable
from .local_cache import LocalCacheStore
from .records import COLLECTIONS, DOCUMENTS, PROGRESS, PersistedRecord
from .remote_store import RemoteStore

__all__ = [
    "DurableStoreGateway",
    "GatewayStatus",
    "StorageLocation",
    "StorageOutcome",
    "SyncReport",
]

LOGGER = logging.getLogger(__name__)


class StorageLocation(str, Enum):
    """Which backend served an operation."""

    REMOTE = "remote"
    LOCAL_FALLBACK = "local_fallback"
    LOCAL = "local"
    FAILED = "failed"


@dataclass(slots=True)
class StorageOutcome:
    """Result of one gateway operation."""

    location: StorageLocation
    record: PersistedRecord | None = None
    error: CopydeskError | None = None

    @property
    def ok(self) -> bool:
        return self.location is not StorageLocation.FAILED

    @property
    def found(self) -> bool:
        return self.record is not None


@dataclass(slots=True)
class GatewayStatus:
    """Non-fatal conditions surfaced to the session."""

    pending_sync: bool = False
    storage_full: bool = False
    last_error: CopydeskError | None = None


@dataclass(slots=True)
class SyncReport:
    """Summary of one reconciliation pass."""

    pushed: list[str] = field(default_factory=list)
    pulled: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    remaining: list[str] = field(default_factory=list)
    error: CopydeskError | None = None


StatusListener = Callable[[GatewayStatus], None]


class DurableStoreGateway:
    """Two-backend store with explicit fallback and reconciliation."""

    def __init__(
        self,
        local: LocalCacheStore,
        remote: RemoteStore | None = None,
        *,
        mode: str = "hybrid",
    ) -> None:
        self._local = local
        self._remote = remote
        self._mode = mode
        self._status = GatewayStatus(pending_sync=bool(local.pending_sync()))
        self._listeners: list[StatusListener] = []

    @property
    def local(self) -> LocalCacheStore:
        return self._local

    @property
    def status(self) -> GatewayStatus:
        return self._status

    @property
    def remote_enabled(self) -> bool:
        return self._remote is not None and self._mode != "local"

    def add_status_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------
    async def save(self, collection: str, key: str, record: PersistedRecord) -> StorageOutcome:
        """Persist the whole ``record`` for ``key``."""

        local_error = self._write_local(collection, key, record)
        if not self.remote_enabled:
            if local_error is not None:
                return StorageOutcome(StorageLocation.FAILED, record, local_error)
            return StorageOutcome(StorageLocation.LOCAL, record)

        assert self._remote is not None
        try:
            await self._remote.put(collection, key, record)
        except RemoteUnavailable as exc:
            LOGGER.warning("Remote save of %s/%s failed; kept locally: %s", collection, key, exc)
            if local_error is not None:
                self._update_status(last_error=exc)
                return StorageOutcome(StorageLocation.FAILED, record, local_error)
            self._mark_pending(collection, key, exc)
            return StorageOutcome(StorageLocation.LOCAL_FALLBACK, record, exc)

        if local_error is None:
            self._clear_pending(collection, key)
        LOGGER.debug("Saved %s/%s to remote", collection, key)
        return StorageOutcome(StorageLocation.REMOTE, record, local_error)

    async def load(self, collection: str, key: str) -> StorageOutcome:
        """Return the freshest readable copy of ``key``."""

        local_record = self._local.get(collection, key)
        if not self.remote_enabled:
            return StorageOutcome(StorageLocation.LOCAL, local_record)
        if local_record is None and self._is_pending(collection, key):
            # Deleted locally; the remote copy goes away on the next sync.
            return StorageOutcome(StorageLocation.LOCAL, None)

        assert self._remote is not None
        try:
            remote_record = await self._remote.get(collection, key)
        except RemoteUnavailable as exc:
            LOGGER.warning("Remote load of %s/%s failed; using local copy: %s", collection, key, exc)
            self._update_status(last_error=exc)
            return StorageOutcome(StorageLocation.LOCAL_FALLBACK, local_record, exc)

        if remote_record is None:
            return StorageOutcome(StorageLocation.LOCAL, local_record)
        if local_record is not None and self._is_pending(collection, key):
            if not remote_record.is_newer_than(local_record):
                return StorageOutcome(StorageLocation.LOCAL, local_record)
        if local_record is None or local_record.to_dict() != remote_record.to_dict():
            self._write_local(collection, key, remote_record)
        return StorageOutcome(StorageLocation.REMOTE, remote_record)

    async def delete(self, collection: str, key: str) -> StorageOutcome:
        """Remove ``key`` from both layers."""

        self._local.remove(collection, key)
        if not self.remote_enabled:
            return StorageOutcome(StorageLocation.LOCAL)

        assert self._remote is not None
        try:
            await self._remote.delete(collection, key)
        except RemoteUnavailable as exc:
            LOGGER.warning("Remote delete of %s/%s failed; will retry: %s", collection, key, exc)
            self._mark_pending(collection, key, exc)
            return StorageOutcome(StorageLocation.LOCAL_FALLBACK, error=exc)
        return StorageOutcome(StorageLocation.REMOTE)

    async def delete_document(self, document_id: str) -> StorageOutcome:
        """Delete a document and cascade to its generation progress."""

        outcome = await self.delete(DOCUMENTS, document_id)
        progress_outcome = await self.delete(PROGRESS, document_id)
        if outcome.location is StorageLocation.REMOTE and progress_outcome.error is not None:
            return progress_outcome
        return outcome

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------
    async def sync_pending(self) -> SyncReport:
        """Push locally pending writes and deletes to the remote store.

        Conflicts resolve last-write-wins on ``updatedAt``. The pass stops
        at the first remote failure so an outage does not cause a request
        storm; whatever is left stays pending.
        """

        report = SyncReport()
        pending = sorted(self._local.pending_sync())
        if not self.remote_enabled or not pending:
            report.remaining = pending
            return report

        assert self._remote is not None
        for index, marker in enumerate(pending):
            collection, _, key = marker.partition(":")
            if collection not in COLLECTIONS or not key:
                LOGGER.warning("Dropping malformed pending marker %r", marker)
                self._local.clear_pending(collection, key)
                continue
            try:
                resolution = await self._reconcile(collection, key)
            except RemoteUnavailable as exc:
                LOGGER.warning("Sync paused at %s: %s", marker, exc)
                report.error = exc
                report.remaining = pending[index:]
                self._update_status(last_error=exc)
                break
            getattr(report, resolution).append(marker)
            self._local.clear_pending(collection, key)
        self._update_status(pending_sync=bool(self._local.pending_sync()))
        if report.error is None:
            LOGGER.info(
                "Sync complete: %d pushed, %d pulled, %d deleted",
                len(report.pushed),
                len(report.pulled),
                len(report.deleted),
            )
        return report

    async def check_connectivity(self) -> SyncReport:
        """Ping the remote store and push pending writes when it answers.

        An unreachable store yields a report whose ``remaining`` lists every
        pending key and whose ``error`` is a :class:`RemoteUnavailable`.
        """

        pending = sorted(self._local.pending_sync())
        if not self.remote_enabled:
            return SyncReport(remaining=pending)
        assert self._remote is not None
        if not await self._remote.ping():
            error = RemoteUnavailable(details={"reason": "ping_failed"})
            self._update_status(pending_sync=bool(pending), last_error=error)
            return SyncReport(remaining=pending, error=error)
        if not pending:
            return SyncReport()
        return await self.sync_pending()

    async def reconcile(self) -> SyncReport:
        """Run the one-time migration, then a connectivity check and sync."""

        report = await self.migrate_local_to_remote()
        if report.error is not None:
            return report
        follow_up = await self.check_connectivity()
        follow_up.pushed[:0] = report.pushed
        follow_up.pulled[:0] = report.pulled
        follow_up.deleted[:0] = report.deleted
        return follow_up

    async def migrate_local_to_remote(self) -> SyncReport:
        """Push every local record to the remote store once."""

        prefs = self._local.session_prefs()
        if prefs.get("migration_complete") or not self.remote_enabled:
            return SyncReport()
        for collection in COLLECTIONS:
            for key in self._local.keys(collection):
                self._local.mark_pending(collection, key)
        LOGGER.info("Migrating local records to remote store")
        report = await self.sync_pending()
        if report.error is None:
            prefs["migration_complete"] = True
            self._local.save_session_prefs(prefs)
        return report

    async def _reconcile(self, collection: str, key: str) -> str:
        assert self._remote is not None
        local_record = self._local.get(collection, key)
        if local_record is None:
            await self._remote.delete(collection, key)
            return "deleted"
        remote_record = await self._remote.get(collection, key)
        if remote_record is not None and not local_record.is_newer_than(remote_record):
            LOGGER.info("Remote copy of %s/%s is newer; keeping it", collection, key)
            self._write_local(collection, key, remote_record)
            return "pulled"
        await self._remote.put(collection, key, local_record)
        return "pushed"

    # ------------------------------------------------------------------
    # Local helpers
    # ------------------------------------------------------------------
    def _write_local(self, collection: str, key: str, record: PersistedRecord) -> CopydeskError | None:
        try:
            self._local.put(collection, key, record)
        except QuotaExceeded as exc:
            self._update_status(storage_full=True, last_error=exc)
            return exc
        except OSError as exc:
            LOGGER.error("Local cache write for %s/%s failed: %s", collection, key, exc)
            error = QuotaExceeded(message="Local storage is unavailable", details={"reason": str(exc)})
            self._update_status(last_error=error)
            return error
        if self._status.storage_full:
            self._update_status(storage_full=False)
        return None

    def _is_pending(self, collection: str, key: str) -> bool:
        return f"{collection}:{key}" in self._local.pending_sync()

    def _mark_pending(self, collection: str, key: str, error: CopydeskError) -> None:
        try:
            self._local.mark_pending(collection, key)
        except QuotaExceeded as exc:
            self._update_status(storage_full=True, last_error=exc)
            return
        self._update_status(pending_sync=True, last_error=error)

    def _clear_pending(self, collection: str, key: str) -> None:
        if not self._is_pending(collection, key):
            return
        self._local.clear_pending(collection, key)
        self._update_status(pending_sync=bool(self._local.pending_sync()))

    def _update_status(self, **changes: object) -> None:
        previous = (self._status.pending_sync, self._status.storage_full, self._status.last_error)
        for name, value in changes.items():
            setattr(self._status, name, value)
        current = (self._status.pending_sync, self._status.storage_full, self._status.last_error)
        if current == previous:
            return
        for listener in list(self._listeners):
            listener(self._status)


