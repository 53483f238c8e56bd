"""
GeminiAdapter - Google Gemini.

Completions go through the OpenAI-compatible shape (base URL / path override
pointing at Google's compatibility endpoint). Only model discovery is native:
GET /v1beta/models?key=... returning {"models": [{"name": "models/<id>", ...}]}.
"""

from typing import Any, Optional

from chatstream.adapters.base import ProviderFamily
from chatstream.adapters.openai_compat import OpenAICompatibleAdapter
from chatstream.adapters.schema import PreparedRequest
from chatstream.config import ProviderKey, ProviderProfile, get_default_host

MODEL_NAME_PREFIX = "models/"
GENERATE_CONTENT = "generateContent"


def _gemini_root(base_url: Optional[str]) -> str:
    root = (base_url or get_default_host(ProviderKey.GEMINI)).strip().rstrip("/")
    # Accept a base that already points at an API version
    for suffix in ("/v1beta/openai", "/v1beta", "/v1"):
        if root.endswith(suffix):
            root = root[: -len(suffix)]
            break
    return root


class GeminiAdapter(OpenAICompatibleAdapter):
    family = ProviderFamily.GEMINI

    def build_models_request(self, profile: ProviderProfile) -> Optional[PreparedRequest]:
        return PreparedRequest(
            method="GET",
            url=f"{_gemini_root(profile.base_url)}/v1beta/models",
            params={"key": profile.api_key or ""},
        )

    def parse_models_response(self, data: Any) -> list[str]:
        """
        Strip the "models/" prefix and keep only generative models.

        An entry without supportedGenerationMethods is kept; an entry whose
        list lacks generateContent (embeddings, AQA, ...) is dropped.
        """
        if not isinstance(data, dict) or not isinstance(data.get("models"), list):
            return []

        model_ids = []
        for entry in data["models"]:
            if not isinstance(entry, dict):
                continue
            name = entry.get("name")
            if not isinstance(name, str) or not name:
                continue
            if name.startswith(MODEL_NAME_PREFIX):
                name = name[len(MODEL_NAME_PREFIX):]
            if "supportedGenerationMethods" in entry:
                methods = entry.get("supportedGenerationMethods") or []
                if GENERATE_CONTENT not in methods:
                    continue
            model_ids.append(name)
        return model_ids
