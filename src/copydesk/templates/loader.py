"""Load template definitions from YAML and validate them once."""

from __future__ import annotations

import logging
from importlib import resources
from pathlib import Path
from typing import Any, Mapping

from jsonschema import Draft7Validator
from ruamel.yaml import YAML
from ruamel.yaml.error import MarkedYAMLError

from ..services.errors import TemplateValidationError
from .schema import (
    DEFAULT_SEPARATOR,
    FIELD_TYPES,
    ConditionalOn,
    FieldDefinition,
    SectionDefinition,
    TemplateDefinition,
)

LOGGER = logging.getLogger(__name__)
MAX_SCHEMA_ERRORS = 25
BUILTIN_TEMPLATES: Mapping[str, str] = {
    "brochure-multi-section": "brochure.yaml",
}

_FIELD_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["id", "label"],
    "additionalProperties": False,
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "label": {"type": "string", "minLength": 1},
        "type": {"enum": list(FIELD_TYPES)},
        "required": {"type": "boolean"},
        "max_length": {"type": "integer", "minimum": 1},
        "options": {"type": "array", "items": {"type": "string"}},
        "placeholder": {"type": "string"},
        "helper_text": {"type": "string"},
        "conditional_on": {
            "type": "object",
            "required": ["field_id"],
            "additionalProperties": False,
            "properties": {
                "field_id": {"type": "string", "minLength": 1},
                "value": {"type": "string"},
                "values": {"type": "array", "items": {"type": "string"}, "minItems": 1},
            },
            "oneOf": [{"required": ["value"]}, {"required": ["values"]}],
        },
    },
}

TEMPLATE_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["id", "name", "sections"],
    "additionalProperties": False,
    "properties": {
        "id": {"type": "string", "pattern": "^[a-z0-9][a-z0-9_-]*$"},
        "name": {"type": "string", "minLength": 1},
        "description": {"type": "string"},
        "category": {"type": "string"},
        "separator": {"type": "string"},
        "system_prompt_prefix": {"type": "string"},
        "metadata": {"type": "object"},
        "sections": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["id", "name", "fields"],
                "additionalProperties": False,
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "name": {"type": "string", "minLength": 1},
                    "description": {"type": "string"},
                    "instructions": {"type": "string"},
                    "fields": {"type": "array", "items": _FIELD_SCHEMA},
                },
            },
        },
    },
}

_TEMPLATE_VALIDATOR = Draft7Validator(TEMPLATE_SCHEMA)


def load_template(source: str | Path | Mapping[str, Any]) -> TemplateDefinition:
    """Return a validated template from a YAML path, YAML text or mapping."""

    if isinstance(source, Mapping):
        return build_template(source)
    if isinstance(source, Path):
        return build_template(_parse_yaml(source.read_text(encoding="utf-8"), origin=str(source)))
    return build_template(_parse_yaml(source, origin="<string>"))


def load_builtin_template(template_id: str = "brochure-multi-section") -> TemplateDefinition:
    filename = BUILTIN_TEMPLATES.get(template_id)
    if filename is None:
        raise KeyError(f"Unknown built-in template {template_id!r}")
    text = resources.files(__package__).joinpath(filename).read_text(encoding="utf-8")
    return build_template(_parse_yaml(text, origin=filename))


def build_template(data: Mapping[str, Any]) -> TemplateDefinition:
    """Validate ``data`` against :data:`TEMPLATE_SCHEMA` and convert it."""

    problems: list[str] = []
    for issue in _TEMPLATE_VALIDATOR.iter_errors(dict(data)):
        path = "/".join(str(part) for part in issue.absolute_path)
        problems.append(f"{path}: {issue.message}" if path else issue.message)
        if len(problems) >= MAX_SCHEMA_ERRORS:
            problems.append("Too many validation errors; stopping early.")
            break
    if not problems:
        problems = _semantic_problems(data)
    if problems:
        LOGGER.warning("Template %r failed validation: %s", data.get("id"), problems)
        raise TemplateValidationError(
            message="Template definition is invalid",
            details={"template_id": data.get("id"), "problems": problems},
        )

    sections = tuple(_build_section(raw) for raw in data["sections"])
    template = TemplateDefinition(
        id=data["id"],
        name=data["name"],
        sections=sections,
        description=data.get("description", ""),
        category=data.get("category", ""),
        separator=data.get("separator", DEFAULT_SEPARATOR),
        system_prompt_prefix=data.get("system_prompt_prefix", ""),
        metadata=dict(data.get("metadata") or {}),
    )
    LOGGER.debug("Loaded template %s with %d sections", template.id, template.section_count)
    return template


def _parse_yaml(text: str, *, origin: str) -> Mapping[str, Any]:
    parser = YAML(typ="safe")
    parser.allow_duplicate_keys = False
    try:
        data = parser.load(text)
    except MarkedYAMLError as exc:
        mark = exc.problem_mark or exc.context_mark
        line = mark.line + 1 if mark is not None else None
        raise TemplateValidationError(
            message="Template YAML could not be parsed",
            details={"origin": origin, "line": line, "reason": exc.problem or str(exc)},
        ) from exc
    if not isinstance(data, Mapping):
        raise TemplateValidationError(
            message="Template YAML must contain a mapping",
            details={"origin": origin},
        )
    return data


def _semantic_problems(data: Mapping[str, Any]) -> list[str]:
    problems: list[str] = []
    seen_sections: set[str] = set()
    for section in data["sections"]:
        section_id = section["id"]
        if section_id in seen_sections:
            problems.append(f"duplicate section id {section_id!r}")
        seen_sections.add(section_id)
        field_ids: set[str] = set()
        for raw in section["fields"]:
            if raw["id"] in field_ids:
                problems.append(f"{section_id}: duplicate field id {raw['id']!r}")
            field_ids.add(raw["id"])
            if raw.get("type") == "select" and not raw.get("options"):
                problems.append(f"{section_id}/{raw['id']}: select fields need options")
        for raw in section["fields"]:
            condition = raw.get("conditional_on")
            if condition and condition["field_id"] not in field_ids:
                problems.append(
                    f"{section_id}/{raw['id']}: conditional_on references unknown field "
                    f"{condition['field_id']!r}"
                )
    return problems


def _build_section(raw: Mapping[str, Any]) -> SectionDefinition:
    return SectionDefinition(
        id=raw["id"],
        name=raw["name"],
        description=raw.get("description", ""),
        instructions=(raw.get("instructions") or "").strip(),
        fields=tuple(_build_field(item) for item in raw["fields"]),
    )


def _build_field(raw: Mapping[str, Any]) -> FieldDefinition:
    condition = raw.get("conditional_on")
    conditional_on = None
    if condition:
        values = condition.get("values") or [condition["value"]]
        conditional_on = ConditionalOn(field_id=condition["field_id"], values=tuple(values))
    return FieldDefinition(
        id=raw["id"],
        label=raw["label"],
        type=raw.get("type", "text"),
        required=bool(raw.get("required", False)),
        max_length=raw.get("max_length"),
        options=tuple(raw.get("options") or ()),
        placeholder=raw.get("placeholder", ""),
        helper_text=raw.get("helper_text", ""),
        conditional_on=conditional_on,
    )


__all__ = [
    "BUILTIN_TEMPLATES",
    "TEMPLATE_SCHEMA",
    "build_template",
    "load_builtin_template",
    "load_template",
]
