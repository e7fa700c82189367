"""Agents for the Clinician Assistant."""

from .extractor import IntentExtractor
from .composer import ResponseComposer
from .llm_composer import LLMResponder

__all__ = [
    "IntentExtractor",
    "ResponseComposer",
    "LLMResponder",
]
