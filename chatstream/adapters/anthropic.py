"""
AnthropicAdapter - Claude.

Anthropic exposes no discovery endpoint usable with a plain API key, so the
catalog serves a fixed list. Completions use the OpenAI-compatible shape.
"""

from typing import Optional

from chatstream.adapters.base import ProviderFamily
from chatstream.adapters.openai_compat import OpenAICompatibleAdapter
from chatstream.adapters.schema import PreparedRequest
from chatstream.config import ProviderProfile

CLAUDE_MODELS: list[str] = [
    "claude-3-5-sonnet-20241022",
    "claude-3-5-haiku-20241022",
    "claude-3-opus-20240229",
    "claude-3-sonnet-20240229",
    "claude-3-haiku-20240307",
]


class AnthropicAdapter(OpenAICompatibleAdapter):
    family = ProviderFamily.ANTHROPIC

    def build_models_request(self, profile: ProviderProfile) -> Optional[PreparedRequest]:
        return None

    def static_models(self) -> list[str]:
        return list(CLAUDE_MODELS)
