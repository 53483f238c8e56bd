"""OpenRouterAdapter - OpenAI-compatible, with a fixed discovery endpoint."""

from typing import Optional

from chatstream.adapters.base import ProviderFamily
from chatstream.adapters.openai_compat import OpenAICompatibleAdapter
from chatstream.adapters.schema import PreparedRequest
from chatstream.adapters.urls import OPENROUTER_API_BASE, MODELS_PATH
from chatstream.config import APP_NAME, APP_URL, ProviderProfile

OPENROUTER_MODELS_URL = OPENROUTER_API_BASE + MODELS_PATH


class OpenRouterAdapter(OpenAICompatibleAdapter):
    family = ProviderFamily.OPENROUTER

    def build_models_request(self, profile: ProviderProfile) -> Optional[PreparedRequest]:
        headers = {"HTTP-Referer": APP_URL, "X-Title": APP_NAME}
        if profile.api_key:
            headers["Authorization"] = f"Bearer {profile.api_key}"
        return PreparedRequest(method="GET", url=OPENROUTER_MODELS_URL, headers=headers)
