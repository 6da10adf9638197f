"""Tests for section and selection-tool prompt builders."""

from __future__ import annotations

import json

import pytest

from helpers import BROCHURE_FORMS

from copydesk.ai.prompts import (
    SECTION_SYSTEM_MESSAGE,
    BrandVoice,
    Persona,
    build_section_prompt,
    section_messages,
    selection_messages,
)
from copydesk.templates.schema import TemplateDefinition


def test_first_section_prompt_establishes_tone(brochure: TemplateDefinition) -> None:
    prompt = build_section_prompt(brochure, 0, BROCHURE_FORMS["cover"])

    assert prompt.startswith(brochure.system_prompt_prefix)
    assert "This is the FIRST section" in prompt
    assert "=== PREVIOUS CONTENT ===" not in prompt
    assert "=== SECTION: COVER/TITLE ===" in prompt
    inputs = prompt.split("=== FORM INPUTS ===\n", 1)[1].split("\n\n", 1)[0]
    assert json.loads(inputs) == BROCHURE_FORMS["cover"]


def test_later_section_includes_previous_content(brochure: TemplateDefinition) -> None:
    prompt = build_section_prompt(
        brochure,
        1,
        BROCHURE_FORMS["hero"],
        previous_content="<h2>Cover/Title</h2>\n<p>Ship faster</p>",
    )

    assert "=== PREVIOUS CONTENT ===\n<h2>Cover/Title</h2>\n<p>Ship faster</p>" in prompt
    assert "FIRST section" not in prompt
    assert prompt.index("PREVIOUS CONTENT") < prompt.index("=== SECTION: HERO/INTRODUCTION/BENEFITS ===")


def test_brand_voice_and_persona_are_ordered(brochure: TemplateDefinition) -> None:
    voice = BrandVoice.from_dict(
        {"brandName": "Acme", "brandTone": "Confident", "forbiddenWords": ["synergy"], "brand_values": ["Speed"]}
    )
    persona = Persona(id="p-1", name="Platform Lead", pain_points="Slow releases")

    prompt = build_section_prompt(brochure, 2, BROCHURE_FORMS["solutions"], brand_voice=voice, persona=persona)

    assert "Brand: Acme" in prompt
    assert "Forbidden Words: synergy" in prompt
    assert "Brand Values: Speed" in prompt
    assert "Target Persona: Platform Lead" in prompt
    assert prompt.index("BRAND VOICE") < prompt.index("TARGET PERSONA") < prompt.index("=== SECTION:")


def test_section_messages_shape(brochure: TemplateDefinition) -> None:
    messages = section_messages(brochure, 0, BROCHURE_FORMS["cover"])

    assert [message["role"] for message in messages] == ["system", "user"]
    assert messages[0]["content"] == SECTION_SYSTEM_MESSAGE


def test_selection_messages_for_tone_shift() -> None:
    messages = selection_messages("tone_shift", "<p>Buy now</p>", tone="Friendly")

    assert "Friendly tone" in messages[1]["content"]
    assert "ORIGINAL COPY:\n<p>Buy now</p>" in messages[1]["content"]
    assert "HTML" in messages[0]["content"]


def test_selection_messages_reject_unknown_tool_and_tone() -> None:
    with pytest.raises(KeyError):
        selection_messages("summarize", "text")
    with pytest.raises(ValueError):
        selection_messages("tone_shift", "text", tone="sarcastic")
    assert "Shorten" in selection_messages("shorten", "text")[1]["content"]
