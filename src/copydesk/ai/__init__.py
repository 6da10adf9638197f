"""Generation client and prompt builders."""

from .client import ClientSettings, GenerationClient, Generator
from .prompts import BrandVoice, Persona, build_section_prompt, section_messages, selection_messages

__all__ = [
    "BrandVoice",
    "ClientSettings",
    "GenerationClient",
    "Generator",
    "Persona",
    "build_section_prompt",
    "section_messages",
    "selection_messages",
]
