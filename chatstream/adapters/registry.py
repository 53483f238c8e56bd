"""
Adapter lookup keyed by provider family.

Provider keys map onto a closed ProviderFamily enum; each family maps onto
one shared adapter instance. Unknown or custom keys resolve to the
OpenAI-compatible family.
"""

from typing import Union

from chatstream.adapters.anthropic import AnthropicAdapter
from chatstream.adapters.azure import AzureAdapter
from chatstream.adapters.base import ProviderAdapter, ProviderFamily
from chatstream.adapters.gemini import GeminiAdapter
from chatstream.adapters.ollama import OllamaAdapter
from chatstream.adapters.openai_compat import OpenAICompatibleAdapter
from chatstream.adapters.openrouter import OpenRouterAdapter
from chatstream.config import ProviderKey, ProviderProfile, provider_key_value

PROVIDER_FAMILIES: dict[str, ProviderFamily] = {
    ProviderKey.AZURE.value: ProviderFamily.AZURE,
    ProviderKey.OPENROUTER.value: ProviderFamily.OPENROUTER,
    ProviderKey.GEMINI.value: ProviderFamily.GEMINI,
    ProviderKey.OLLAMA.value: ProviderFamily.OLLAMA,
    ProviderKey.CLAUDE.value: ProviderFamily.ANTHROPIC,
}

ADAPTERS: dict[ProviderFamily, ProviderAdapter] = {
    ProviderFamily.OPENAI_COMPATIBLE: OpenAICompatibleAdapter(),
    ProviderFamily.AZURE: AzureAdapter(),
    ProviderFamily.OPENROUTER: OpenRouterAdapter(),
    ProviderFamily.GEMINI: GeminiAdapter(),
    ProviderFamily.OLLAMA: OllamaAdapter(),
    ProviderFamily.ANTHROPIC: AnthropicAdapter(),
}


def family_for(provider: Union[str, ProviderKey]) -> ProviderFamily:
    return PROVIDER_FAMILIES.get(provider_key_value(provider), ProviderFamily.OPENAI_COMPATIBLE)


def get_adapter(target: Union[ProviderProfile, str, ProviderKey]) -> ProviderAdapter:
    """Return the adapter for a profile or provider key."""
    provider = target.provider if isinstance(target, ProviderProfile) else target
    return ADAPTERS[family_for(provider)]
