"""Dataclasses representing documents and editor selections."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from ..core.ranges import TextRange
from ..utils.text import word_count

DEFAULT_TITLE = "Untitled Document"


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return utcnow()


@dataclass(slots=True)
class DocumentMetadata:
    """Derived statistics kept alongside the document content."""

    word_count: int = 0
    char_count: int = 0
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"wordCount": self.word_count, "charCount": self.char_count, "tags": list(self.tags)}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> DocumentMetadata:
        if not isinstance(payload, Mapping):
            return cls()
        tags = payload.get("tags")
        return cls(
            word_count=int(payload.get("wordCount", 0) or 0),
            char_count=int(payload.get("charCount", 0) or 0),
            tags=[str(tag) for tag in tags] if isinstance(tags, list) else [],
        )


@dataclass(slots=True)
class Document:
    """A rich-text document owned by a project.

    ``content`` is the editing component's opaque payload (HTML for the
    default component). ``generation_progress`` is persisted as a separate
    record; the session copies it here whenever the generation machine
    loads, saves or discards progress for the active document.
    """

    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    title: str = DEFAULT_TITLE
    content: str = ""
    project_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    modified_at: datetime = field(default_factory=utcnow)
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)
    generation_progress: dict[str, Any] | None = None

    def update_content(self, content: str) -> None:
        """Replace the content and refresh derived metadata."""

        self.content = content
        self.modified_at = utcnow()
        self.metadata.word_count = word_count(content)
        self.metadata.char_count = len(content)

    def rename(self, title: str) -> None:
        self.title = title.strip() or DEFAULT_TITLE
        self.modified_at = utcnow()

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "projectId": self.project_id,
            "createdAt": self.created_at.isoformat(),
            "modifiedAt": self.modified_at.isoformat(),
            "metadata": self.metadata.to_dict(),
        }
        if self.generation_progress is not None:
            payload["generationProgress"] = self.generation_progress
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Document:
        """Rebuild a document from its persisted payload.

        Raises ``ValueError`` when the payload lacks an id; other fields fall
        back to defaults.
        """

        doc_id = payload.get("id")
        if not isinstance(doc_id, str) or not doc_id:
            raise ValueError("Document payload requires an id")
        content = payload.get("content")
        progress = payload.get("generationProgress")
        return cls(
            id=doc_id,
            title=str(payload.get("title") or DEFAULT_TITLE),
            content=content if isinstance(content, str) else "",
            project_id=payload.get("projectId") or None,
            created_at=_parse_timestamp(payload.get("createdAt")),
            modified_at=_parse_timestamp(payload.get("modifiedAt")),
            metadata=DocumentMetadata.from_dict(payload.get("metadata")),
            generation_progress=dict(progress) if isinstance(progress, Mapping) else None,
        )


@dataclass(slots=True, frozen=True)
class Selection:
    """Text captured from the editor together with the range it spans.

    ``content_length`` records the length of the whole content at capture
    time so a later replace can tell whether the document changed shape.
    """

    text: str
    range: TextRange
    content_length: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "range": self.range.to_dict()}


__all__ = ["DEFAULT_TITLE", "Document", "DocumentMetadata", "Selection", "utcnow"]
