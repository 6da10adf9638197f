"""Editing session, autosave and resumable generation."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from ..ai.client import ClientSettings, GenerationClient, Generator
from ..editor.buffer_editor import BufferEditor, EditorComponent
from ..services.gateway import DurableStoreGateway
from ..services.local_cache import LocalCacheStore
from ..services.remote_store import RemoteStore
from ..services.settings import Settings
from ..templates.loader import load_builtin_template
from ..templates.schema import TemplateDefinition
from .autosave import AutosaveScheduler
from .events import EventBus
from .generation import FormRestore, GenerationContext, GenerationProgressMachine
from .hydration import HydrationController, HydrationState
from .progress import (
    GenerationProgress,
    SectionRecord,
    SectionStatus,
    WorkflowState,
    compose_document,
    splice_section,
)
from .session_store import UNKNOWN, SessionStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Workspace:
    """Everything :func:`build_workspace` wires together."""

    settings: Settings
    event_bus: EventBus
    gateway: DurableStoreGateway
    session: SessionStore
    editor: EditorComponent
    remote: RemoteStore | None = None
    client: GenerationClient | None = None

    async def aclose(self) -> None:
        await self.session.close()
        if self.remote is not None:
            await self.remote.aclose()
        if self.client is not None:
            await self.client.aclose()


def build_workspace(
    settings: Settings,
    *,
    editor: EditorComponent | None = None,
    generator: Generator | None = None,
    template: TemplateDefinition | None = None,
    remote_transport: httpx.AsyncBaseTransport | None = None,
) -> Workspace:
    """Compose a session from ``settings``.

    A remote store is created only when ``remote_url`` is set and the storage
    mode is not ``local``. Without an explicit ``generator`` an
    OpenAI-compatible :class:`GenerationClient` is built from the settings.
    """

    bus = EventBus()
    local = LocalCacheStore.in_directory(
        settings.resolved_cache_dir(), capacity_bytes=settings.local_cache_capacity
    )
    remote: RemoteStore | None = None
    if settings.remote_enabled:
        remote = RemoteStore(
            settings.remote_url,
            identity=lambda: settings.user_id,
            api_key=settings.remote_api_key,
            timeout=settings.remote_timeout,
            transport=remote_transport,
        )
    gateway = DurableStoreGateway(local, remote, mode=settings.storage_mode)
    client: GenerationClient | None = None
    if generator is None:
        client = GenerationClient(ClientSettings.from_settings(settings))
        generator = client
    editor = editor or BufferEditor()
    session = SessionStore(
        editor,
        gateway,
        event_bus=bus,
        generator=generator,
        template=template or load_builtin_template(),
        autosave_delay=settings.autosave_delay,
        generation_timeout=settings.request_timeout,
    )
    LOGGER.debug(
        "Workspace built (storage_mode=%s, remote=%s, cache=%s)",
        settings.storage_mode,
        "on" if remote is not None else "off",
        local.path,
    )
    return Workspace(
        settings=settings,
        event_bus=bus,
        gateway=gateway,
        session=session,
        editor=editor,
        remote=remote,
        client=client,
    )


__all__ = [
    "AutosaveScheduler",
    "EventBus",
    "FormRestore",
    "GenerationContext",
    "GenerationProgress",
    "GenerationProgressMachine",
    "HydrationController",
    "HydrationState",
    "SectionRecord",
    "SectionStatus",
    "SessionStore",
    "UNKNOWN",
    "WorkflowState",
    "Workspace",
    "build_workspace",
    "compose_document",
    "splice_section",
]
