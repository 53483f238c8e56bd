"""
OllamaAdapter - local Ollama server.

Completions use Ollama's OpenAI-compatible /v1 endpoint. Discovery uses the
native GET /api/tags, which returns {"models": [{"name": "llama3:8b", ...}]}.
"""

from typing import Any, Optional

from chatstream.adapters.base import ProviderFamily
from chatstream.adapters.openai_compat import OpenAICompatibleAdapter
from chatstream.adapters.schema import PreparedRequest
from chatstream.config import ProviderKey, ProviderProfile, get_default_host


class OllamaAdapter(OpenAICompatibleAdapter):
    family = ProviderFamily.OLLAMA

    def build_models_request(self, profile: ProviderProfile) -> Optional[PreparedRequest]:
        root = (profile.base_url or get_default_host(ProviderKey.OLLAMA)).strip().rstrip("/")
        if root.endswith("/v1"):
            root = root[: -len("/v1")]
        return PreparedRequest(method="GET", url=f"{root}/api/tags")

    def parse_models_response(self, data: Any) -> list[str]:
        if not isinstance(data, dict) or not isinstance(data.get("models"), list):
            return []
        return [
            entry["name"]
            for entry in data["models"]
            if isinstance(entry, dict) and isinstance(entry.get("name"), str) and entry["name"]
        ]
