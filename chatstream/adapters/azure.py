"""
AzureAdapter - Azure OpenAI deployments.

Same body and stream shape as OpenAI; only the endpoint differs:
{endpoint}/openai/deployments/{deployment}/chat/completions?api-version=...
"""

from typing import Optional

from chatstream.adapters.base import ProviderFamily
from chatstream.adapters.openai_compat import OpenAICompatibleAdapter
from chatstream.adapters.schema import PreparedRequest
from chatstream.config import DEFAULT_AZURE_API_VERSION, ProviderProfile


class AzureAdapter(OpenAICompatibleAdapter):
    family = ProviderFamily.AZURE

    def completion_url(self, profile: ProviderProfile) -> str:
        endpoint = (profile.azure_endpoint or "").strip().rstrip("/")
        deployment = profile.azure_deployment or ""
        # Missing deployment details: treat as a plain OpenAI-compatible host
        if not endpoint or not deployment:
            return super().completion_url(profile)
        api_version = profile.azure_api_version or DEFAULT_AZURE_API_VERSION
        return (
            f"{endpoint}/openai/deployments/{deployment}"
            f"/chat/completions?api-version={api_version}"
        )

    def build_models_request(self, profile: ProviderProfile) -> Optional[PreparedRequest]:
        """Deployments are configured, not discovered."""
        return None

    def static_models(self) -> list[str]:
        return []
