"""Multi-section template definitions."""

from .loader import TEMPLATE_SCHEMA, build_template, load_builtin_template, load_template
from .schema import (
    ConditionalOn,
    FieldDefinition,
    SectionDefinition,
    TemplateDefinition,
)

__all__ = [
    "ConditionalOn",
    "FieldDefinition",
    "SectionDefinition",
    "TEMPLATE_SCHEMA",
    "TemplateDefinition",
    "build_template",
    "load_builtin_template",
    "load_template",
]
