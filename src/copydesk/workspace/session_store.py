"""Session store: the in-memory source of truth for the editing workspace.

Composes hydration, autosave, selection tracking and the generation workflow
around one editing component and one storage gateway. Consumers read the
properties below and subscribe to :class:`SessionChanged` instead of polling.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Mapping

from ..ai.client import Generator
from ..ai.prompts import selection_messages
from ..core.ranges import TextRange
from ..editor.buffer_editor import EditorComponent
from ..editor.document_model import Document, Selection
from ..editor.selection_tracker import SelectionTracker
from ..services.errors import CopydeskError, NoActiveDocument, QuotaExceeded, SelectionStale
from ..services.gateway import DurableStoreGateway, GatewayStatus, StorageOutcome, SyncReport
from ..services.local_cache import CacheSnapshot
from ..services.records import DOCUMENTS, PersistedRecord
from ..templates.schema import TemplateDefinition
from .autosave import AutosaveScheduler
from .events import (
    DocumentCreated,
    DocumentDeleted,
    DocumentOpened,
    EventBus,
    NoticePosted,
    SelectionChanged,
    SessionChanged,
    StorageLimitReached,
    SyncStateChanged,
)
from .generation import GenerationProgressMachine
from .hydration import HydrationController
from .progress import GenerationProgress

LOGGER = logging.getLogger(__name__)


class _Unknown:
    """Value of persisted fields while hydration is still pending.

    It refuses truth testing so ``if not session.active_document`` cannot
    mistake "not loaded yet" for "no document".
    """

    _instance: _Unknown | None = None

    def __new__(cls) -> _Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        raise TypeError("Session state is not hydrated yet; compare against UNKNOWN explicitly")

    def __repr__(self) -> str:
        return "UNKNOWN"


UNKNOWN: Any = _Unknown()

_DEFAULT_PREFS: Mapping[str, Any] = {
    "left_sidebar_open": True,
    "right_sidebar_open": False,
    "active_tool_id": None,
}


class SessionStore:
    """Single editing session: active document, selection and layout prefs."""

    def __init__(
        self,
        editor: EditorComponent,
        gateway: DurableStoreGateway,
        *,
        event_bus: EventBus | None = None,
        generator: Generator | None = None,
        template: TemplateDefinition | None = None,
        autosave_delay: float = 0.5,
        generation_timeout: float | None = None,
        hydration: HydrationController | None = None,
    ) -> None:
        self._editor = editor
        self._gateway = gateway
        self._bus = event_bus or EventBus()
        self._generator = generator
        self._hydration = hydration or HydrationController(gateway.local, event_bus=self._bus)
        self._autosave = AutosaveScheduler(
            gateway,
            self._autosave_source,
            delay=autosave_delay,
            event_bus=self._bus,
        )
        self._tracker = SelectionTracker(editor, publish=self._on_selection)
        self._generation: GenerationProgressMachine | None = None
        if generator is not None and template is not None:
            self._generation = GenerationProgressMachine(
                gateway,
                generator,
                template,
                hydration=self._hydration,
                event_bus=self._bus,
                active_document=lambda: self.active_document_id,
                apply_content=self.apply_generated_content,
                read_content=self._content_for,
                mirror_progress=self._mirror_progress,
                timeout=generation_timeout,
            )
        self._active: Document | None = None
        self._prefs: dict[str, Any] = dict(_DEFAULT_PREFS)
        self._loading_editor = False
        self._last_notice_error: CopydeskError | None = None
        editor.add_update_listener(self._on_editor_update)
        gateway.add_status_listener(self._on_gateway_status)
        self._hydration.subscribe(self._apply_snapshot)

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------
    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def hydration(self) -> HydrationController:
        return self._hydration

    @property
    def is_hydrated(self) -> bool:
        return self._hydration.is_hydrated

    @property
    def autosave(self) -> AutosaveScheduler:
        return self._autosave

    @property
    def selection_tracker(self) -> SelectionTracker:
        return self._tracker

    @property
    def generation(self) -> GenerationProgressMachine | None:
        return self._generation

    @property
    def gateway(self) -> DurableStoreGateway:
        return self._gateway

    @property
    def active_document(self) -> Document | None:
        """The active document, ``None`` when there is none, ``UNKNOWN`` before hydration."""

        if not self._hydration.is_hydrated:
            return UNKNOWN
        return self._active

    @property
    def active_document_id(self) -> str | None:
        return self._active.id if self._active is not None else None

    @property
    def selection(self) -> Selection | None:
        return self._tracker.current

    @property
    def prefs(self) -> dict[str, Any]:
        if not self._hydration.is_hydrated:
            return UNKNOWN
        return dict(self._prefs)

    @property
    def pending_sync(self) -> bool:
        return self._gateway.status.pending_sync

    @property
    def storage_full(self) -> bool:
        return self._gateway.status.storage_full

    def subscribe(self, listener: Callable[[SessionChanged], None]) -> None:
        self._bus.subscribe(SessionChanged, listener)

    def unsubscribe(self, listener: Callable[[SessionChanged], None]) -> None:
        self._bus.unsubscribe(SessionChanged, listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> CacheSnapshot:
        """Hydrate from the local cache; the snapshot is applied before this returns."""

        return await self._hydration.hydrate()

    async def reconcile(self) -> SyncReport | None:
        """Push pending local writes once the remote store answers."""

        await self._hydration.await_hydration()
        if not self._gateway.remote_enabled:
            return None
        try:
            report = await self._gateway.reconcile()
        except CopydeskError as exc:
            LOGGER.warning("Reconciliation skipped: %s", exc)
            self._notice(exc)
            return None
        return report

    async def close(self) -> None:
        await self._autosave.close()

    # ------------------------------------------------------------------
    # Document operations
    # ------------------------------------------------------------------
    async def create_document(self, title: str = "", *, project_id: str | None = None) -> Document:
        await self._hydration.await_hydration()
        await self._autosave.flush()
        document = Document(project_id=project_id)
        if title:
            document.rename(title)
        outcome = await self._save_document(document)
        self._activate(document)
        LOGGER.info("Created document %s (%s)", document.id, outcome.location.value)
        self._bus.publish(DocumentCreated(document_id=document.id, title=document.title))
        return document

    async def open_document(self, document_id: str) -> Document | None:
        """Load ``document_id`` and make it active; ``None`` when it cannot be found."""

        await self._hydration.await_hydration()
        if self._active is not None and self._active.id == document_id:
            return self._active
        await self._autosave.flush()
        outcome = await self._gateway.load(DOCUMENTS, document_id)
        if outcome.record is None:
            LOGGER.warning("Document %s not found (%s)", document_id, outcome.location.value)
            return None
        try:
            document = Document.from_dict(outcome.record.payload)
        except ValueError as exc:
            LOGGER.warning("Document %s is unreadable: %s", document_id, exc)
            return None
        self._activate(document)
        self._bus.publish(DocumentOpened(document_id=document.id, location=outcome.location.value))
        return document

    def update_document_content(self, content: str) -> None:
        """Replace the active document's content through the editing component."""

        if self._active is None:
            raise NoActiveDocument()
        self._editor.set_content(content)

    def update_document_title(self, title: str) -> None:
        if self._active is None:
            raise NoActiveDocument()
        self._active.rename(title)
        self._autosave.notify_content_changed()
        self._changed("active_document")

    async def delete_document(self, document_id: str) -> StorageOutcome:
        """Delete a document and its generation progress."""

        await self._hydration.await_hydration()
        if self._active is not None and self._active.id == document_id:
            await self._autosave.flush()
            self._deactivate()
        outcome = await self._gateway.delete_document(document_id)
        if self._generation is not None:
            self._generation.forget(document_id)
        LOGGER.info("Deleted document %s (%s)", document_id, outcome.location.value)
        self._bus.publish(DocumentDeleted(document_id=document_id))
        return outcome

    async def clear_active_document(self) -> None:
        await self._hydration.await_hydration()
        await self._autosave.flush()
        self._deactivate()

    def apply_generated_content(self, document_id: str, content: str) -> None:
        """Write composed generation output into the editor if the document is still active."""

        if self._active is None or self._active.id != document_id:
            LOGGER.info("Generated content for inactive document %s not applied", document_id)
            return
        self._editor.set_content(content)

    def _content_for(self, document_id: str) -> str | None:
        if self._active is None or self._active.id != document_id:
            return None
        return self._editor.get_content()

    def _mirror_progress(self, document_id: str, progress: GenerationProgress | None) -> None:
        if self._active is None or self._active.id != document_id:
            return
        self._active.generation_progress = progress.to_dict() if progress is not None else None

    # ------------------------------------------------------------------
    # Selection tools
    # ------------------------------------------------------------------
    async def run_selection_tool(self, tool_id: str, *, tone: str | None = None) -> TextRange:
        """Rewrite the captured selection with ``tool_id`` and replace it in place.

        Raises :class:`SelectionStale` (with ``replacement`` set when a result
        exists) if there is nothing selected or the text moved meanwhile.
        """

        if self._generator is None:
            raise RuntimeError("No generator configured for selection tools")
        if self._active is None:
            raise NoActiveDocument()
        selection = self._tracker.capture()
        if selection is None:
            raise SelectionStale(message="Nothing is selected", details={"reason": "no_selection"})
        document_id = self._active.id
        messages = selection_messages(tool_id, selection.text, tone=tone)
        result = await self._generator.generate(messages)
        try:
            if self.active_document_id != document_id:
                raise SelectionStale(details={"reason": "document_changed"}, replacement=result)
            return self._tracker.replace_selection(selection, result)
        except SelectionStale as exc:
            self._notice(exc)
            raise

    # ------------------------------------------------------------------
    # Layout preferences
    # ------------------------------------------------------------------
    def toggle_left_sidebar(self) -> bool:
        return self._set_prefs(left_sidebar_open=not self._prefs["left_sidebar_open"])["left_sidebar_open"]

    def toggle_right_sidebar(self) -> bool:
        return self._set_prefs(right_sidebar_open=not self._prefs["right_sidebar_open"])["right_sidebar_open"]

    def set_active_tool(self, tool_id: str | None) -> None:
        """Select a tool; choosing one opens the right sidebar."""

        if tool_id is None:
            self._set_prefs(active_tool_id=None)
        else:
            self._set_prefs(active_tool_id=tool_id, right_sidebar_open=True)

    def describe(self) -> dict[str, Any]:
        """Plain-data summary used by the command line."""

        document = self._active
        return {
            "hydration": self._hydration.state.value,
            "active_document": document.to_dict() if document is not None else None,
            "prefs": dict(self._prefs),
            "pending_sync": self.pending_sync,
            "storage_full": self.storage_full,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _apply_snapshot(self, snapshot: CacheSnapshot) -> None:
        prefs = dict(_DEFAULT_PREFS)
        prefs.update({key: value for key, value in snapshot.session.items() if key in _DEFAULT_PREFS})
        self._prefs = prefs
        active_id = snapshot.session.get("active_document_id")
        record = snapshot.documents.get(active_id) if isinstance(active_id, str) else None
        if record is not None:
            try:
                document = Document.from_dict(record.payload)
            except ValueError as exc:
                LOGGER.warning("Saved active document %s is unreadable: %s", active_id, exc)
            else:
                self._active = document
                with self._editor_loading():
                    self._editor.set_content(document.content)
                LOGGER.info("Restored active document %s", document.id)
        elif active_id:
            LOGGER.warning("Saved active document %s is missing from the cache", active_id)
        if snapshot.error is not None:
            self._notice(snapshot.error)
        self._changed("active_document", "prefs")

    def _activate(self, document: Document) -> None:
        self._active = document
        with self._editor_loading():
            self._editor.set_content(document.content)
        self._persist_prefs()
        self._changed("active_document")

    def _deactivate(self) -> None:
        self._active = None
        with self._editor_loading():
            self._editor.set_content("")
        self._persist_prefs()
        self._changed("active_document")

    async def _save_document(self, document: Document) -> StorageOutcome:
        return await self._gateway.save(DOCUMENTS, document.id, PersistedRecord(payload=document.to_dict()))

    def _autosave_source(self) -> Document | None:
        return self._active

    def _on_editor_update(self, content: str) -> None:
        if self._loading_editor or self._active is None:
            return
        if content == self._active.content:
            return
        self._active.update_content(content)
        self._autosave.notify_content_changed(content)
        self._changed("active_document")

    def _on_selection(self, selection: Selection | None) -> None:
        if selection is None:
            self._bus.publish(SelectionChanged(text=None))
        else:
            start, end = selection.range
            self._bus.publish(SelectionChanged(text=selection.text, start=start, end=end))
        self._changed("selection")

    def _on_gateway_status(self, status: GatewayStatus) -> None:
        error = status.last_error
        self._bus.publish(
            SyncStateChanged(
                pending_sync=status.pending_sync,
                error_code=error.error_code if error is not None else None,
            )
        )
        if status.storage_full and isinstance(error, QuotaExceeded):
            self._bus.publish(
                StorageLimitReached(required_bytes=error.required_bytes, capacity_bytes=error.capacity_bytes)
            )
        if error is not None and error is not self._last_notice_error:
            self._last_notice_error = error
            self._notice(error)
        self._changed("sync")

    def _set_prefs(self, **changes: Any) -> dict[str, Any]:
        self._prefs.update(changes)
        self._persist_prefs()
        self._changed("prefs")
        return self._prefs

    def _persist_prefs(self) -> None:
        prefs = dict(self._prefs)
        prefs["active_document_id"] = self.active_document_id
        stored = self._gateway.local.session_prefs()
        if stored.get("migration_complete"):
            prefs["migration_complete"] = True
        try:
            self._gateway.local.save_session_prefs(prefs)
        except (QuotaExceeded, OSError) as exc:
            LOGGER.warning("Session preferences not saved: %s", exc)

    @contextmanager
    def _editor_loading(self) -> Iterator[None]:
        self._loading_editor = True
        try:
            yield
        finally:
            self._loading_editor = False

    def _notice(self, error: CopydeskError) -> None:
        self._bus.publish(NoticePosted(message=error.message, severity=error.severity, details=error.to_dict()))

    def _changed(self, *fields: str) -> None:
        self._bus.publish(SessionChanged(fields=fields))


__all__ = ["SessionStore", "UNKNOWN"]
