"""Tagged schema for multi-section generation templates."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

from ..services.errors import TemplateValidationError

FieldType = Literal["text", "textarea", "select", "number"]
FIELD_TYPES: tuple[str, ...] = ("text", "textarea", "select", "number")
DEFAULT_SEPARATOR = "\n\n"


@dataclass(frozen=True, slots=True)
class ConditionalOn:
    """Field visibility rule: shown only when another field has one of ``values``."""

    field_id: str
    values: tuple[str, ...]

    def is_met(self, form_data: Mapping[str, Any]) -> bool:
        return str(form_data.get(self.field_id, "")) in self.values


@dataclass(frozen=True, slots=True)
class FieldDefinition:
    """A single input in a section form."""

    id: str
    label: str
    type: FieldType = "text"
    required: bool = False
    max_length: int | None = None
    options: tuple[str, ...] = ()
    placeholder: str = ""
    helper_text: str = ""
    conditional_on: ConditionalOn | None = None

    def is_active(self, form_data: Mapping[str, Any]) -> bool:
        return self.conditional_on is None or self.conditional_on.is_met(form_data)

    def is_missing(self, form_data: Mapping[str, Any]) -> bool:
        if not self.required or not self.is_active(form_data):
            return False
        value = form_data.get(self.id)
        return value is None or not str(value).strip()


@dataclass(frozen=True, slots=True)
class SectionDefinition:
    """One step of a template, with its ordered form fields."""

    id: str
    name: str
    description: str = ""
    instructions: str = ""
    fields: tuple[FieldDefinition, ...] = ()

    def field(self, field_id: str) -> FieldDefinition | None:
        return next((item for item in self.fields if item.id == field_id), None)

    def missing_required(self, form_data: Mapping[str, Any]) -> tuple[str, ...]:
        """Return ids of required, currently-visible fields left blank."""

        return tuple(item.id for item in self.fields if item.is_missing(form_data))

    def validate_form(self, form_data: Mapping[str, Any]) -> None:
        """Raise :class:`TemplateValidationError` when required inputs are missing."""

        missing = self.missing_required(form_data)
        if not missing:
            return
        labels = [self.field(field_id).label for field_id in missing]  # type: ignore[union-attr]
        raise TemplateValidationError(
            message=f"Please fill in: {', '.join(labels)}",
            details={"section_id": self.id},
            suggestion="Complete the required fields and try again",
            missing_fields=missing,
        )


@dataclass(frozen=True, slots=True)
class TemplateDefinition:
    """Ordered list of sections; the order is fixed for the template's lifetime."""

    id: str
    name: str
    sections: tuple[SectionDefinition, ...]
    description: str = ""
    category: str = ""
    separator: str = DEFAULT_SEPARATOR
    system_prompt_prefix: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def section_count(self) -> int:
        return len(self.sections)

    def section(self, index: int) -> SectionDefinition:
        if not 0 <= index < len(self.sections):
            raise IndexError(f"Section index {index} is out of range for template {self.id!r}")
        return self.sections[index]

    def index_of(self, section_id: str) -> int:
        for index, section in enumerate(self.sections):
            if section.id == section_id:
                return index
        raise KeyError(section_id)

    def get_section(self, section_id: str) -> SectionDefinition | None:
        return next((item for item in self.sections if item.id == section_id), None)


__all__ = [
    "ConditionalOn",
    "DEFAULT_SEPARATOR",
    "FIELD_TYPES",
    "FieldDefinition",
    "FieldType",
    "SectionDefinition",
    "TemplateDefinition",
]
