"""Debounced persistence of the active document's content."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from ..editor.document_model import Document
from ..services.errors import CopydeskError
from ..services.gateway import DurableStoreGateway, StorageLocation, StorageOutcome
from ..services.records import DOCUMENTS, PersistedRecord
from .events import DocumentContentSaved, EventBus, NoticePosted

LOGGER = logging.getLogger(__name__)

DocumentSource = Callable[[], Document | None]


class AutosaveScheduler:
    """Collapse bursts of edits into one gateway write.

    Each notification cancels the pending timer and starts a new one. When a
    timer fires, the document is read from ``source`` at that moment, so the
    write always carries the latest content. Writes run one at a time; an edit
    arriving while a write is in flight schedules the next one instead of
    interrupting it. Failed remote writes are not retried immediately; the
    next debounced write (or a connectivity check) reconciles them.
    """

    def __init__(
        self,
        gateway: DurableStoreGateway,
        source: DocumentSource,
        *,
        delay: float = 0.5,
        event_bus: EventBus | None = None,
    ) -> None:
        self._gateway = gateway
        self._source = source
        self._delay = max(0.0, float(delay))
        self._bus = event_bus
        self._timer: asyncio.Task[None] | None = None
        self._write_lock = asyncio.Lock()
        self._dirty = False
        self._last_outcome: StorageOutcome | None = None
        self._closed = False

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def has_pending_write(self) -> bool:
        return self._dirty or (self._timer is not None and not self._timer.done())

    @property
    def pending_sync(self) -> bool:
        return self._gateway.status.pending_sync

    @property
    def last_outcome(self) -> StorageOutcome | None:
        return self._last_outcome

    def notify_content_changed(self, new_content: str | None = None) -> None:
        """Schedule a write for the current document.

        ``new_content`` is accepted for call-site symmetry with editor
        listeners but never captured; the write reads the document at fire
        time.
        """

        if self._closed:
            LOGGER.debug("Ignoring content change after autosave was closed")
            return
        self._dirty = True
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._fire_after_delay())

    async def flush(self) -> StorageOutcome | None:
        """Write immediately if anything is pending; used before switching documents."""

        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        if not self._dirty:
            return None
        return await self._write_latest()

    async def close(self) -> None:
        await self.flush()
        self._closed = True

    async def _fire_after_delay(self) -> None:
        await asyncio.sleep(self._delay)
        # From here on a new notification must not cancel the write.
        self._timer = None
        await self._write_latest()

    async def _write_latest(self) -> StorageOutcome | None:
        async with self._write_lock:
            if not self._dirty:
                return self._last_outcome
            self._dirty = False
            document = self._source()
            if document is None:
                LOGGER.debug("Autosave fired with no active document")
                return None
            record = PersistedRecord(payload=document.to_dict())
            try:
                outcome = await self._gateway.save(DOCUMENTS, document.id, record)
            except CopydeskError as exc:
                LOGGER.error("Autosave of %s failed: %s", document.id, exc)
                self._dirty = True
                self._post_notice(exc.message, exc.severity, exc.to_dict())
                return None
            self._last_outcome = outcome
            self._report(document, outcome)
            if outcome.location is StorageLocation.REMOTE and self._gateway.status.pending_sync:
                await self._gateway.sync_pending()
            return outcome

    def _report(self, document: Document, outcome: StorageOutcome) -> None:
        if outcome.location is StorageLocation.FAILED:
            self._dirty = True
            LOGGER.error("Autosave of %s could not be stored anywhere: %s", document.id, outcome.error)
            return
        pending = outcome.location is StorageLocation.LOCAL_FALLBACK
        LOGGER.debug("Autosaved %s to %s", document.id, outcome.location.value)
        if self._bus is not None:
            self._bus.publish(
                DocumentContentSaved(
                    document_id=document.id,
                    location=outcome.location.value,
                    pending_sync=pending,
                )
            )

    def _post_notice(self, message: str, severity: str, details: dict | None) -> None:
        if self._bus is not None:
            self._bus.publish(NoticePosted(message=message, severity=severity, details=details))


__all__ = ["AutosaveScheduler"]
