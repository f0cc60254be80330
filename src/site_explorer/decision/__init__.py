"""
Decision service module for the Site Explorer.

Provides the decision contract, its request/response models, an
Anthropic-backed client, a scripted replay client, and extraction
summary formatters.
"""

from site_explorer.decision.models import (
    DecisionRequest,
    DecisionResponse,
    ObjectiveCheck,
    ToolParameters,
    clean_json_text,
    parse_decision,
)
from site_explorer.decision.base import DecisionClient
from site_explorer.decision.formatting import (
    DecisionServiceFormatter,
    ExtractionFormatter,
    MarkdownExtractionFormatter,
)
from site_explorer.decision.scripted import ScriptedDecisionClient
from site_explorer.decision.anthropic_client import AnthropicDecisionClient

__all__ = [
    "DecisionRequest",
    "DecisionResponse",
    "ObjectiveCheck",
    "ToolParameters",
    "clean_json_text",
    "parse_decision",
    "DecisionClient",
    "DecisionServiceFormatter",
    "ExtractionFormatter",
    "MarkdownExtractionFormatter",
    "ScriptedDecisionClient",
    "AnthropicDecisionClient",
]
