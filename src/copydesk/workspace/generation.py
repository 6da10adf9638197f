"""Resumable, per-section generation workflow."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from ..ai.client import Generator
from ..ai.prompts import BrandVoice, Persona, section_messages
from ..services.errors import CopydeskError, GenerationFailure, SectionBusy
from ..services.gateway import DurableStoreGateway, StorageLocation
from ..services.records import PROGRESS, PersistedRecord
from ..templates.schema import SectionDefinition, TemplateDefinition
from ..utils.text import summarize
from .events import (
    EventBus,
    GenerationStateChanged,
    SectionGenerated,
    SectionGenerationFailed,
)
from .hydration import HydrationController
from .progress import (
    GenerationProgress,
    SectionRecord,
    SectionStatus,
    WorkflowState,
    compose_document,
    splice_section,
)

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FormRestore:
    """What the form surface should show for one section."""

    document_id: str
    section_index: int
    section_id: str
    form_data: dict[str, str]
    status: SectionStatus
    generated_content: str | None = None


@dataclass(slots=True)
class GenerationContext:
    """Optional prompt context shared by every section of a run."""

    brand_voice: BrandVoice | None = None
    persona: Persona | None = None


@dataclass(slots=True)
class _CallToken:
    document_id: str
    epoch: int


RestoreForm = Callable[[FormRestore], None]
ActiveDocumentProvider = Callable[[], str | None]
ContentSource = Callable[[str], str | None]
ContentSink = Callable[[str, str], None]
ProgressSink = Callable[[str, GenerationProgress | None], None]


class GenerationProgressMachine:
    """Drives ``advance``/``regenerate``/``skip``/``resume`` for one template.

    Each step is a complete read-modify-write of the document's
    :class:`GenerationProgress`, persisted as a single gateway write. Calls
    are single-flight per ``(document_id, section_index)``; a second call
    while the first is outstanding raises :class:`SectionBusy`. Results that
    arrive after the user moved to another document (or abandoned the run)
    are discarded.
    """

    def __init__(
        self,
        gateway: DurableStoreGateway,
        generator: Generator,
        template: TemplateDefinition,
        *,
        hydration: HydrationController,
        event_bus: EventBus | None = None,
        active_document: ActiveDocumentProvider | None = None,
        apply_content: ContentSink | None = None,
        read_content: ContentSource | None = None,
        mirror_progress: ProgressSink | None = None,
        timeout: float | None = None,
    ) -> None:
        self._gateway = gateway
        self._generator = generator
        self._template = template
        self._hydration = hydration
        self._bus = event_bus
        self._active_document = active_document
        self._apply_content = apply_content
        self._read_content = read_content
        self._mirror_progress = mirror_progress
        self._timeout = timeout
        self._progress: dict[str, GenerationProgress] = {}
        self._states: dict[str, WorkflowState] = {}
        self._epochs: dict[str, int] = {}
        self._in_flight: set[tuple[str, int]] = set()

    @property
    def template(self) -> TemplateDefinition:
        return self._template

    def progress(self, document_id: str) -> GenerationProgress | None:
        return self._progress.get(document_id)

    def workflow_state(self, document_id: str) -> WorkflowState | None:
        return self._states.get(document_id)

    def is_in_flight(self, document_id: str, section_index: int) -> bool:
        return (document_id, section_index) in self._in_flight

    def section_status(self, document_id: str, section_index: int) -> SectionStatus:
        progress = self._progress.get(document_id)
        section = self._template.section(section_index)
        status = progress.section_status(section.id) if progress else SectionStatus.NOT_STARTED
        if self.is_in_flight(document_id, section_index) and status in (
            SectionStatus.GENERATED,
            SectionStatus.MODIFIED,
        ):
            return SectionStatus.REGENERATING
        return status

    # ------------------------------------------------------------------
    # Workflow lifecycle
    # ------------------------------------------------------------------
    async def start(
        self,
        document_id: str,
        *,
        apply_brand_voice: bool = False,
        persona_id: str | None = None,
    ) -> GenerationProgress:
        """Return the existing run for ``document_id`` or begin a new one."""

        existing = await self._load(document_id)
        if existing is not None and not existing.is_complete:
            return existing
        progress = GenerationProgress.start(
            self._template,
            apply_brand_voice=apply_brand_voice,
            persona_id=persona_id,
        )
        self._epochs[document_id] = self._epochs.get(document_id, 0) + 1
        await self._persist(document_id, progress)
        self._set_state(document_id, WorkflowState.ACTIVE)
        LOGGER.info("Started %s for document %s", self._template.id, document_id)
        return progress

    async def resume(self, document_id: str, *, restore_form: RestoreForm | None = None) -> FormRestore | None:
        """Reload progress and hand the current section's saved form to ``restore_form``.

        The freshly loaded progress is passed explicitly; nothing cached from
        an earlier call is consulted.
        """

        await self._hydration.await_hydration()
        progress = await self._load(document_id, refresh=True)
        if progress is None:
            LOGGER.debug("No generation progress to resume for %s", document_id)
            return None
        restore = self._restore_for(document_id, progress, progress.current_section_index)
        if restore_form is not None:
            restore_form(restore)
        LOGGER.info(
            "Resumed %s at section %d (%s)", document_id, restore.section_index, restore.section_id
        )
        return restore

    def view_section(self, document_id: str, section_index: int) -> FormRestore:
        """Saved form values for any section, for navigating back through the run."""

        progress = self._progress.get(document_id)
        if progress is None:
            raise KeyError(f"No generation progress loaded for {document_id!r}")
        return self._restore_for(document_id, progress, section_index)

    async def abandon(self, document_id: str) -> None:
        """Stop the run, discard in-flight results and delete the progress record."""

        self._epochs[document_id] = self._epochs.get(document_id, 0) + 1
        self._progress.pop(document_id, None)
        self._mirror(document_id, None)
        outcome = await self._gateway.delete(PROGRESS, document_id)
        if not outcome.ok:
            LOGGER.warning("Progress for %s could not be deleted: %s", document_id, outcome.error)
        self._set_state(document_id, WorkflowState.ABANDONED)

    def forget(self, document_id: str) -> None:
        """Drop cached state after the document itself was deleted."""

        self._epochs[document_id] = self._epochs.get(document_id, 0) + 1
        self._progress.pop(document_id, None)
        self._states.pop(document_id, None)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    async def advance(
        self,
        document_id: str,
        section_index: int,
        form_data: Mapping[str, Any],
        *,
        context: GenerationContext | None = None,
    ) -> GenerationProgress:
        """Generate the current section from ``form_data`` and move to the next one.

        The form is stored as a draft before the service is called, so a
        failure leaves the section ``Drafted`` with the typed values intact
        and every earlier record untouched.
        """

        section = self._template.section(section_index)
        with self._single_flight(document_id, section_index):
            progress = await self._load(document_id) or await self.start(document_id)
            if progress.is_complete:
                raise ValueError(f"Generation for {document_id!r} is already complete")
            if section_index != progress.current_section_index:
                raise ValueError(
                    f"Section {section_index} is not current (current is {progress.current_section_index})"
                )
            section.validate_form(form_data)
            if progress.section_status(section.id) in (SectionStatus.NOT_STARTED, SectionStatus.DRAFTED):
                progress = progress.with_record(section.id, SectionRecord.drafted(form_data))
                await self._persist(document_id, progress)

            token = self._token(document_id)
            content = await self._generate(document_id, section_index, section, form_data, progress, context)
            if not self._is_current(token):
                return self._progress.get(document_id, progress)

            latest = self._progress.get(document_id, progress)
            record = SectionRecord.generated(form_data, content)
            if latest.current_section_index == section_index and not latest.is_complete:
                updated = latest.with_completed(section.id, record)
            else:
                updated = latest.with_record(section.id, record)
            await self._commit(document_id, section_index, section, updated, regenerated=False)
            return updated

    async def regenerate(
        self,
        document_id: str,
        section_index: int,
        *,
        context: GenerationContext | None = None,
    ) -> GenerationProgress:
        """Re-run one generated section from its stored form data.

        Only that section's record changes; the current index and every other
        record stay as they were.
        """

        section = self._template.section(section_index)
        with self._single_flight(document_id, section_index):
            progress = await self._load(document_id)
            record = progress.record(section.id) if progress else None
            if progress is None or record is None or record.generated_content is None:
                raise ValueError(f"Section {section.id!r} has no generated content to regenerate")
            stored_form = dict(record.form_data)

            token = self._token(document_id)
            content = await self._generate(document_id, section_index, section, stored_form, progress, context)
            if not self._is_current(token):
                return self._progress.get(document_id, progress)

            latest = self._progress.get(document_id, progress)
            updated = latest.with_record(section.id, SectionRecord.generated(stored_form, content))
            await self._commit(document_id, section_index, section, updated, regenerated=True)
            return updated

    async def skip(self, document_id: str, section_index: int) -> GenerationProgress:
        """Complete the current section empty without calling the service."""

        section = self._template.section(section_index)
        with self._single_flight(document_id, section_index):
            progress = await self._load(document_id) or await self.start(document_id)
            if progress.is_complete or section_index != progress.current_section_index:
                raise ValueError(f"Section {section_index} cannot be skipped now")
            updated = progress.with_completed(section.id, SectionRecord.skipped_section())
            await self._persist(document_id, updated)
            LOGGER.info("Skipped section %s of %s", section.id, document_id)
            if updated.is_complete:
                self._set_state(document_id, WorkflowState.COMPLETED)
            return updated

    async def mark_modified(self, document_id: str, section_id: str, content: str) -> bool:
        """Record a user edit of a generated section; returns True when the flag changed."""

        progress = await self._load(document_id)
        if progress is None:
            return False
        updated = progress.mark_modified(section_id, content)
        if updated is progress:
            return False
        await self._persist(document_id, updated)
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _generate(
        self,
        document_id: str,
        section_index: int,
        section: SectionDefinition,
        form_data: Mapping[str, Any],
        progress: GenerationProgress,
        context: GenerationContext | None,
    ) -> str:
        context = context or GenerationContext()
        messages = section_messages(
            self._template,
            section_index,
            form_data,
            previous_content=compose_document(progress, self._template, until_index=section_index),
            brand_voice=context.brand_voice if progress.apply_brand_voice else None,
            persona=context.persona,
        )
        LOGGER.debug("Generating section %s for %s", section.id, document_id)
        try:
            if self._timeout is None:
                return await self._generator.generate(messages)
            return await asyncio.wait_for(self._generator.generate(messages), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            failure = GenerationFailure(
                message="Generation timed out", details={"timeout": self._timeout}, timed_out=True
            )
            self._report_failure(document_id, section_index, section, failure)
            raise failure from exc
        except GenerationFailure as exc:
            self._report_failure(document_id, section_index, section, exc)
            raise

    async def _commit(
        self,
        document_id: str,
        section_index: int,
        section: SectionDefinition,
        progress: GenerationProgress,
        *,
        regenerated: bool,
    ) -> None:
        await self._persist(document_id, progress)
        record = progress.record(section.id)
        LOGGER.info(
            "%s section %s for %s: %s",
            "Regenerated" if regenerated else "Generated",
            section.id,
            document_id,
            summarize(record.generated_content or "", 60) if record else "",
        )
        if self._apply_content is not None:
            current = self._read_content(document_id) if self._read_content is not None else None
            if current is None:
                content = compose_document(progress, self._template)
            else:
                content = splice_section(current, progress, self._template, section)
            self._apply_content(document_id, content)
        if self._bus is not None:
            self._bus.publish(
                SectionGenerated(
                    document_id=document_id,
                    section_id=section.id,
                    section_index=section_index,
                    regenerated=regenerated,
                )
            )
        if progress.is_complete and self._states.get(document_id) is not WorkflowState.COMPLETED:
            self._set_state(document_id, WorkflowState.COMPLETED)

    async def _load(self, document_id: str, *, refresh: bool = False) -> GenerationProgress | None:
        if not refresh and document_id in self._progress:
            return self._progress[document_id]
        await self._hydration.await_hydration()
        outcome = await self._gateway.load(PROGRESS, document_id)
        if outcome.record is None:
            self._progress.pop(document_id, None)
            self._mirror(document_id, None)
            return None
        try:
            progress = GenerationProgress.from_dict(outcome.record.payload)
        except ValueError as exc:
            LOGGER.warning("Ignoring unreadable progress for %s: %s", document_id, exc)
            return None
        if progress.template_id != self._template.id:
            LOGGER.warning(
                "Progress for %s belongs to template %s, not %s",
                document_id,
                progress.template_id,
                self._template.id,
            )
            return None
        self._progress[document_id] = progress
        self._states[document_id] = progress.state
        self._mirror(document_id, progress)
        return progress

    async def _persist(self, document_id: str, progress: GenerationProgress) -> None:
        self._progress[document_id] = progress
        self._mirror(document_id, progress)
        outcome = await self._gateway.save(
            PROGRESS, document_id, PersistedRecord(payload=progress.to_dict())
        )
        if outcome.location is StorageLocation.FAILED:
            LOGGER.error("Progress for %s kept in memory only: %s", document_id, outcome.error)

    def _mirror(self, document_id: str, progress: GenerationProgress | None) -> None:
        if self._mirror_progress is not None:
            self._mirror_progress(document_id, progress)

    def _restore_for(self, document_id: str, progress: GenerationProgress, section_index: int) -> FormRestore:
        section = self._template.section(section_index)
        record = progress.record(section.id)
        return FormRestore(
            document_id=document_id,
            section_index=section_index,
            section_id=section.id,
            form_data=dict(record.form_data) if record else {},
            status=progress.section_status(section.id),
            generated_content=record.generated_content if record else None,
        )

    def _token(self, document_id: str) -> _CallToken:
        return _CallToken(document_id=document_id, epoch=self._epochs.get(document_id, 0))

    def _is_current(self, token: _CallToken) -> bool:
        if self._epochs.get(token.document_id, 0) != token.epoch:
            LOGGER.info("Discarding generation result for %s: run was reset", token.document_id)
            return False
        if self._active_document is not None and self._active_document() != token.document_id:
            LOGGER.info("Discarding generation result for %s: document no longer active", token.document_id)
            return False
        return True

    def _single_flight(self, document_id: str, section_index: int) -> _InFlightGuard:
        return _InFlightGuard(self._in_flight, (document_id, section_index))

    def _report_failure(
        self,
        document_id: str,
        section_index: int,
        section: SectionDefinition,
        error: CopydeskError,
    ) -> None:
        LOGGER.warning("Section %s of %s failed: %s", section.id, document_id, error)
        if self._bus is not None:
            self._bus.publish(
                SectionGenerationFailed(
                    document_id=document_id,
                    section_id=section.id,
                    section_index=section_index,
                    error_code=error.error_code,
                    message=error.message,
                )
            )

    def _set_state(self, document_id: str, state: WorkflowState) -> None:
        self._states[document_id] = state
        if self._bus is not None:
            self._bus.publish(GenerationStateChanged(document_id=document_id, state=state.value))


class _InFlightGuard:
    """Context manager enforcing one outstanding call per key."""

    __slots__ = ("_registry", "_key")

    def __init__(self, registry: set[tuple[str, int]], key: tuple[str, int]) -> None:
        self._registry = registry
        self._key = key

    def __enter__(self) -> None:
        if self._key in self._registry:
            raise SectionBusy(details={"document_id": self._key[0], "section_index": self._key[1]})
        self._registry.add(self._key)

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._registry.discard(self._key)
        return False


__all__ = [
    "FormRestore",
    "GenerationContext",
    "GenerationProgressMachine",
    "RestoreForm",
]
