"""Tests for template loading and form validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from helpers import BROCHURE_FORMS

from copydesk.services.errors import TemplateValidationError
from copydesk.templates.loader import build_template, load_builtin_template, load_template
from copydesk.templates.schema import TemplateDefinition

_MINIMAL_YAML = """
id: two-step
name: Two Step
sections:
  - id: intro
    name: Intro
    fields:
      - id: headline
        label: Headline
        required: true
  - id: body
    name: Body
    fields: []
"""


def test_builtin_brochure_has_six_ordered_sections(brochure: TemplateDefinition) -> None:
    assert brochure.id == "brochure-multi-section"
    assert [section.id for section in brochure.sections] == [
        "cover",
        "hero",
        "solutions",
        "proof",
        "cta",
        "other",
    ]
    assert "brochure-section-break" in brochure.separator
    assert brochure.system_prompt_prefix.startswith("You are an expert B2B copywriter")
    assert brochure.section(0).field("coverTone").options == ("Professional", "Bold", "Friendly", "Authoritative")


def test_builtin_forms_are_complete(brochure: TemplateDefinition) -> None:
    for section in brochure.sections:
        section.validate_form(BROCHURE_FORMS[section.id])


def test_load_template_accepts_yaml_text_and_path(tmp_path: Path) -> None:
    from_text = load_template(_MINIMAL_YAML)
    path = tmp_path / "two_step.yaml"
    path.write_text(_MINIMAL_YAML, encoding="utf-8")

    from_path = load_template(path)

    assert from_text == from_path
    assert from_text.section_count == 2
    assert from_text.separator == "\n\n"


def test_section_lookup_helpers(brochure: TemplateDefinition) -> None:
    assert brochure.index_of("proof") == 3
    assert brochure.get_section("cta").name == "Call-to-Action"
    assert brochure.get_section("missing") is None
    with pytest.raises(IndexError):
        brochure.section(6)
    with pytest.raises(KeyError):
        brochure.index_of("missing")


def test_validate_form_lists_missing_labels(brochure: TemplateDefinition) -> None:
    cover = brochure.get_section("cover")

    with pytest.raises(TemplateValidationError) as excinfo:
        cover.validate_form({"brochureTitle": "  ", "coverTone": "Bold"})

    assert excinfo.value.missing_fields == ("brochureTitle", "companyName")
    assert "Brochure Title" in excinfo.value.message


def test_conditional_fields_follow_their_trigger(brochure: TemplateDefinition) -> None:
    proof = brochure.get_section("proof")

    case_study = {"includeCaseStudy": "Yes - Full case study"}
    other_proof = {"includeCaseStudy": "No - Other proof type"}

    assert proof.missing_required(case_study) == ("clientName", "result")
    assert proof.missing_required(other_proof) == ("proofType",)
    assert proof.missing_required({}) == ("includeCaseStudy",)


def test_schema_errors_are_collected() -> None:
    with pytest.raises(TemplateValidationError) as excinfo:
        build_template({"id": "Bad Id", "name": "", "sections": []})

    problems = excinfo.value.details["problems"]
    assert len(problems) >= 3


def test_semantic_problems_are_reported() -> None:
    data = {
        "id": "broken",
        "name": "Broken",
        "sections": [
            {
                "id": "a",
                "name": "A",
                "fields": [
                    {"id": "choice", "label": "Choice", "type": "select"},
                    {"id": "choice", "label": "Again"},
                    {
                        "id": "detail",
                        "label": "Detail",
                        "conditional_on": {"field_id": "ghost", "value": "x"},
                    },
                ],
            },
            {"id": "a", "name": "Duplicate", "fields": []},
        ],
    }

    with pytest.raises(TemplateValidationError) as excinfo:
        build_template(data)

    problems = " | ".join(excinfo.value.details["problems"])
    assert "duplicate section id 'a'" in problems
    assert "duplicate field id 'choice'" in problems
    assert "select fields need options" in problems
    assert "unknown field 'ghost'" in problems


def test_malformed_yaml_reports_line() -> None:
    with pytest.raises(TemplateValidationError) as excinfo:
        load_template("id: x\nname: [unclosed\n")

    assert excinfo.value.details["line"] is not None


def test_unknown_builtin_template() -> None:
    with pytest.raises(KeyError):
        load_builtin_template("does-not-exist")
