"""Prompt builders for section generation and selection tools."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping

from ..templates.schema import TemplateDefinition

Message = dict[str, str]

SECTION_SYSTEM_MESSAGE = """You are an expert B2B copywriter creating brochure content.

OUTPUT FORMAT RULES:
1. Output ONLY valid HTML using: <h2>, <h3>, <p>, <ul>, <li>, <strong>, <em>
2. Each paragraph MUST be wrapped in <p> tags
3. Use <ul><li> for bullet lists
4. Use <strong> for key phrases to emphasize
5. Do NOT include section headers/titles - those are added separately
6. Do NOT include markdown syntax - HTML only
7. Output ONLY the content, no preamble or explanation
8. Keep copy concise and benefit-focused

Generate professional, engaging brochure copy that converts."""

_HTML_RULES = """Use only these tags: <h2>, <h3>, <p>, <ul>, <li>, <strong>, <em>.
Preserve the original structure (headings stay headings, bullets stay bullets).
Output ONLY HTML, no markdown, no preamble."""

TONE_DESCRIPTIONS: Mapping[str, str] = {
    "professional": "Professional tone: formal, polished, business-appropriate, authoritative",
    "casual": "Casual tone: conversational, friendly, relaxed, approachable",
    "urgent": "Urgent tone: time-sensitive, compelling, action-oriented",
    "friendly": "Friendly tone: warm, personable, welcoming, builds rapport",
    "techy": "Technical, precise tone: specific metrics, accurate terminology, no jargon for its own sake",
    "playful": "Playful tone: energetic, light humor, creative analogies, still on message",
}

SELECTION_TOOLS: Mapping[str, str] = {
    "tone_shift": "You are an expert copywriter. Rewrite copy in the requested tone while keeping its meaning.",
    "expand": "You are an expert copywriter. Expand copy with detail, examples and benefits while keeping its message and tone.",
    "shorten": "You are an expert copywriter. Cut copy to roughly half its length while keeping the core message.",
}


@dataclass(slots=True)
class BrandVoice:
    """Brand guidelines applied to generated copy."""

    brand_name: str
    brand_tone: str = ""
    approved_phrases: list[str] = field(default_factory=list)
    forbidden_words: list[str] = field(default_factory=list)
    brand_values: list[str] = field(default_factory=list)
    mission_statement: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BrandVoice:
        return cls(
            brand_name=str(data.get("brandName") or data.get("brand_name") or ""),
            brand_tone=str(data.get("brandTone") or data.get("brand_tone") or ""),
            approved_phrases=list(data.get("approvedPhrases") or data.get("approved_phrases") or []),
            forbidden_words=list(data.get("forbiddenWords") or data.get("forbidden_words") or []),
            brand_values=list(data.get("brandValues") or data.get("brand_values") or []),
            mission_statement=str(data.get("missionStatement") or data.get("mission_statement") or ""),
        )


@dataclass(slots=True)
class Persona:
    """Target reader profile."""

    id: str
    name: str
    demographics: str = ""
    psychographics: str = ""
    pain_points: str = ""
    language_patterns: str = ""
    goals: str = ""


def brand_voice_instructions(brand_voice: BrandVoice) -> str:
    return (
        f"Brand: {brand_voice.brand_name}\n"
        f"Tone: {brand_voice.brand_tone}\n"
        f"Approved Phrases: {', '.join(brand_voice.approved_phrases)}\n"
        f"Forbidden Words: {', '.join(brand_voice.forbidden_words)}\n"
        f"Brand Values: {', '.join(brand_voice.brand_values)}\n"
        f"Mission: {brand_voice.mission_statement}\n\n"
        "Apply these brand guidelines to all copy generated."
    )


def persona_instructions(persona: Persona) -> str:
    return (
        f"Target Persona: {persona.name}\n"
        f"Demographics: {persona.demographics}\n"
        f"Psychographics: {persona.psychographics}\n"
        f"Pain Points: {persona.pain_points}\n"
        f"Language Patterns: {persona.language_patterns}\n"
        f"Goals: {persona.goals}\n\n"
        "Write specifically for this persona's context and use language that resonates with them."
    )


def build_section_prompt(
    template: TemplateDefinition,
    section_index: int,
    form_data: Mapping[str, Any],
    *,
    previous_content: str = "",
    brand_voice: BrandVoice | None = None,
    persona: Persona | None = None,
) -> str:
    """Compose the user prompt for one template section.

    Earlier sections' generated copy is included verbatim so the new
    section continues their tone; the first section gets an instruction to
    establish it instead.
    """

    section = template.section(section_index)
    parts = [template.system_prompt_prefix.strip()]
    if previous_content.strip():
        parts.append(
            "=== PREVIOUS CONTENT ===\n"
            f"{previous_content}\n"
            "=== END PREVIOUS CONTENT ===\n\n"
            "Your new section MUST:\n"
            "- Flow naturally from the content above\n"
            "- Maintain consistent tone and messaging\n"
            "- Reference and build upon key themes\n"
            "- Not repeat information already covered"
        )
    else:
        parts.append(
            "This is the FIRST section. Establish the tone and core messaging "
            "that subsequent sections will follow."
        )
    if brand_voice is not None:
        parts.append(f"=== BRAND VOICE GUIDELINES ===\n{brand_voice_instructions(brand_voice)}")
    if persona is not None:
        parts.append(f"=== TARGET PERSONA ===\n{persona_instructions(persona)}")
    instructions = section.instructions or "Generate professional copy for this section."
    parts.append(
        f"=== SECTION: {section.name.upper()} ===\n"
        f"{instructions}\n\n"
        "=== FORM INPUTS ===\n"
        f"{json.dumps(dict(form_data), indent=2, ensure_ascii=False)}\n\n"
        "Generate compelling copy for this section that:\n"
        f"1. Achieves the specific goals of a {section.name} section\n"
        "2. Uses professional, benefit-focused language\n"
        "3. Flows naturally if following previous content\n\n"
        "OUTPUT ONLY THE HTML CONTENT. No preamble, no explanations."
    )
    return "\n\n".join(part for part in parts if part)


def section_messages(
    template: TemplateDefinition,
    section_index: int,
    form_data: Mapping[str, Any],
    **kwargs: Any,
) -> list[Message]:
    prompt = build_section_prompt(template, section_index, form_data, **kwargs)
    return [
        {"role": "system", "content": SECTION_SYSTEM_MESSAGE},
        {"role": "user", "content": prompt},
    ]


def selection_messages(tool_id: str, text: str, *, tone: str | None = None) -> list[Message]:
    """Messages for a rewrite tool applied to the selected ``text``."""

    system = SELECTION_TOOLS.get(tool_id)
    if system is None:
        raise KeyError(f"Unknown selection tool {tool_id!r}")
    if tool_id == "tone_shift":
        description = TONE_DESCRIPTIONS.get((tone or "").lower())
        if description is None:
            raise ValueError(f"Tone must be one of: {', '.join(TONE_DESCRIPTIONS)}")
        request = f"Rewrite the following copy in a {tone} tone.\n\nTARGET TONE: {description}"
    elif tool_id == "expand":
        request = "Expand the following copy with supporting detail."
    else:
        request = "Shorten the following copy to its essential message."
    return [
        {"role": "system", "content": f"{system}\n\n{_HTML_RULES}"},
        {"role": "user", "content": f"{request}\n\nORIGINAL COPY:\n{text}\n\nREWRITTEN COPY (HTML only):"},
    ]



__all__ = [
    "BrandVoice",
    "Message",
    "Persona",
    "SECTION_SYSTEM_MESSAGE",
    "SELECTION_TOOLS",
    "TONE_DESCRIPTIONS",
    "brand_voice_instructions",
    "build_section_prompt",
    "persona_instructions",
    "section_messages",
    "selection_messages",
]
