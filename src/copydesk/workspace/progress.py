"""Persisted state of a multi-section generation workflow."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from ..editor.document_model import utcnow
from ..templates.schema import SectionDefinition, TemplateDefinition
from ..utils.text import compute_text_digest


class SectionStatus(str, Enum):
    NOT_STARTED = "not_started"
    DRAFTED = "drafted"
    GENERATED = "generated"
    MODIFIED = "modified"
    REGENERATING = "regenerating"
    SKIPPED = "skipped"


class WorkflowState(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


def _timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True, slots=True)
class SectionRecord:
    """Persisted unit of progress for one section.

    ``form_data`` is what the user entered; ``generated_content`` is ``None``
    until generation succeeds, which is what distinguishes a drafted section
    from a generated one.
    """

    form_data: Mapping[str, str] = field(default_factory=dict)
    generated_content: str | None = None
    completed_at: datetime | None = None
    was_modified: bool = False
    content_hash: str | None = None
    skipped: bool = False

    @classmethod
    def drafted(cls, form_data: Mapping[str, Any]) -> SectionRecord:
        return cls(form_data=_clean_form(form_data))

    @classmethod
    def generated(cls, form_data: Mapping[str, Any], content: str) -> SectionRecord:
        return cls(
            form_data=_clean_form(form_data),
            generated_content=content,
            completed_at=utcnow(),
            content_hash=compute_text_digest(content),
        )

    @classmethod
    def skipped_section(cls) -> SectionRecord:
        return cls(completed_at=utcnow(), skipped=True)

    @property
    def status(self) -> SectionStatus:
        if self.skipped:
            return SectionStatus.SKIPPED
        if self.generated_content is None:
            return SectionStatus.DRAFTED
        if self.was_modified:
            return SectionStatus.MODIFIED
        return SectionStatus.GENERATED

    def to_dict(self) -> dict[str, Any]:
        return {
            "formData": dict(self.form_data),
            "generatedContent": self.generated_content,
            "completedAt": _iso(self.completed_at),
            "wasModified": self.was_modified,
            "contentHash": self.content_hash,
            "skipped": self.skipped,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> SectionRecord:
        if not isinstance(payload, Mapping):
            raise ValueError("Section record must be a mapping")
        form = payload.get("formData") or {}
        if not isinstance(form, Mapping):
            raise ValueError("Section formData must be a mapping")
        content = payload.get("generatedContent")
        return cls(
            form_data=_clean_form(form),
            generated_content=content if isinstance(content, str) else None,
            completed_at=_timestamp(payload.get("completedAt")),
            was_modified=bool(payload.get("wasModified", False)),
            content_hash=payload.get("contentHash") or None,
            skipped=bool(payload.get("skipped", False)),
        )


@dataclass(slots=True)
class GenerationProgress:
    """Whole-record state of one document's generation workflow.

    Every mutation helper returns a new object; the machine persists the
    result as a single write so readers never see a half-applied step.
    """

    template_id: str
    total_sections: int
    current_section_index: int = 0
    section_data: dict[str, SectionRecord] = field(default_factory=dict)
    completed_sections: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    is_complete: bool = False
    apply_brand_voice: bool = False
    persona_id: str | None = None

    @classmethod
    def start(cls, template: TemplateDefinition, **options: Any) -> GenerationProgress:
        return cls(template_id=template.id, total_sections=template.section_count, **options)

    @property
    def state(self) -> WorkflowState:
        return WorkflowState.COMPLETED if self.is_complete else WorkflowState.ACTIVE

    def record(self, section_id: str) -> SectionRecord | None:
        return self.section_data.get(section_id)

    def section_status(self, section_id: str) -> SectionStatus:
        record = self.section_data.get(section_id)
        return record.status if record is not None else SectionStatus.NOT_STARTED

    def with_record(self, section_id: str, record: SectionRecord) -> GenerationProgress:
        """Return a copy with only ``section_id``'s record replaced."""

        data = dict(self.section_data)
        data[section_id] = record
        return replace(self, section_data=data, completed_sections=list(self.completed_sections))

    def with_completed(self, section_id: str, record: SectionRecord) -> GenerationProgress:
        """Return a copy with ``section_id`` completed and the index advanced."""

        updated = self.with_record(section_id, record)
        if section_id not in updated.completed_sections:
            updated.completed_sections.append(section_id)
        next_index = self.current_section_index + 1
        if next_index >= self.total_sections:
            updated.current_section_index = self.total_sections - 1
            updated.is_complete = True
            updated.completed_at = utcnow()
        else:
            updated.current_section_index = next_index
        return updated

    def mark_modified(self, section_id: str, content: str) -> GenerationProgress:
        """Flag ``section_id`` as edited when ``content`` no longer matches its hash."""

        record = self.section_data.get(section_id)
        if record is None or record.generated_content is None:
            return self
        was_modified = compute_text_digest(content) != record.content_hash
        if was_modified == record.was_modified:
            return self
        return self.with_record(section_id, replace(record, was_modified=was_modified))

    def to_dict(self) -> dict[str, Any]:
        return {
            "templateId": self.template_id,
            "totalSections": self.total_sections,
            "currentSectionIndex": self.current_section_index,
            "sectionData": {key: value.to_dict() for key, value in self.section_data.items()},
            "completedSections": list(self.completed_sections),
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "isComplete": self.is_complete,
            "applyBrandVoice": self.apply_brand_voice,
            "selectedPersonaId": self.persona_id,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> GenerationProgress:
        """Rebuild progress; raises ``ValueError`` when the payload is malformed."""

        template_id = payload.get("templateId")
        total = payload.get("totalSections")
        if not isinstance(template_id, str) or not template_id:
            raise ValueError("Progress payload requires a templateId")
        if not isinstance(total, int) or total < 1:
            raise ValueError("Progress payload requires a positive totalSections")
        raw_sections = payload.get("sectionData") or {}
        if not isinstance(raw_sections, Mapping):
            raise ValueError("Progress sectionData must be a mapping")
        index = payload.get("currentSectionIndex", 0)
        index = index if isinstance(index, int) else 0
        completed = payload.get("completedSections") or []
        return cls(
            template_id=template_id,
            total_sections=total,
            current_section_index=min(max(index, 0), total - 1),
            section_data={str(key): SectionRecord.from_dict(value) for key, value in raw_sections.items()},
            completed_sections=[str(item) for item in completed] if isinstance(completed, list) else [],
            started_at=_timestamp(payload.get("startedAt")) or utcnow(),
            completed_at=_timestamp(payload.get("completedAt")),
            is_complete=bool(payload.get("isComplete", False)),
            apply_brand_voice=bool(payload.get("applyBrandVoice", False)),
            persona_id=payload.get("selectedPersonaId") or None,
        )


def compose_document(
    progress: GenerationProgress,
    template: TemplateDefinition,
    *,
    until_index: int | None = None,
) -> str:
    """Join generated sections in template order, each under its own heading.

    ``until_index`` limits the output to sections before that index, which is
    the context handed to the next generation call.
    """

    parts: list[str] = []
    for index, section in enumerate(template.sections):
        if until_index is not None and index >= until_index:
            break
        record = progress.section_data.get(section.id)
        if record is None or not record.generated_content:
            continue
        parts.append(_section_block(section.name, record.generated_content))
    return template.separator.join(parts)


def splice_section(
    current: str,
    progress: GenerationProgress,
    template: TemplateDefinition,
    section: SectionDefinition,
) -> str:
    """Swap ``section``'s block inside ``current`` and leave every other block untouched.

    Blocks are found by their ``<h2>`` heading. Text before the first heading
    stays in front; text the user added after a block stays with that block.
    A missing block is inserted in template order. Without a separator there
    is no way to delimit blocks, so the whole document is recomposed.
    """

    separator = template.separator
    if not separator:
        return compose_document(progress, template)
    headings = {_section_block(entry.name, "").rstrip("\n"): entry.id for entry in template.sections}
    preamble: list[str] = []
    blocks: dict[str, str] = {}
    last_id: str | None = None
    for chunk in current.split(separator) if current else []:
        chunk_id = headings.get(chunk.split("\n", 1)[0])
        if chunk_id is None or chunk_id in blocks:
            if last_id is None:
                preamble.append(chunk)
            else:
                blocks[last_id] = separator.join((blocks[last_id], chunk))
            continue
        blocks[chunk_id] = chunk
        last_id = chunk_id

    record = progress.section_data.get(section.id)
    if record is not None and record.generated_content:
        blocks[section.id] = _section_block(section.name, record.generated_content)
    else:
        blocks.pop(section.id, None)
    ordered = [blocks[entry.id] for entry in template.sections if entry.id in blocks]
    return separator.join(preamble + ordered)


def _section_block(name: str, content: str) -> str:
    return f"<h2>{name}</h2>\n{content}"


def _clean_form(form_data: Mapping[str, Any]) -> dict[str, str]:
    return {str(key): "" if value is None else str(value) for key, value in form_data.items()}


__all__ = [
    "GenerationProgress",
    "SectionRecord",
    "SectionStatus",
    "WorkflowState",
    "compose_document",
    "splice_section",
]
