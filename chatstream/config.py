"""
Configuration constants and Pydantic models for chatstream.

Holds the provider enumeration, per-provider default tables, environment
getters and the record types shared by storage, adapters and orchestration.
"""

import logging
import os
import time
import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# DEFAULTS
# ─────────────────────────────────────────────────────────────────────

APP_NAME: str = "chatstream"
APP_URL: str = "https://github.com/chatstream/chatstream"

DEFAULT_REQUEST_TIMEOUT_SECONDS: float = 60.0
DEFAULT_MODELS_TIMEOUT_SECONDS: float = 30.0
DEFAULT_MAX_CONTEXT_MESSAGES: int = 20
DEFAULT_AZURE_API_VERSION: str = "2024-02-15-preview"
DEFAULT_DATABASE_PATH: str = "chatstream.db"
DEFAULT_CONVERSATION_NAME: str = "New Chat"


class ProviderKey(str, Enum):
    """Fixed provider enumeration. Profiles may also use opaque custom keys."""
    OPENAI = "openai"
    CLAUDE = "claude"
    GEMINI = "gemini"
    AZURE = "azure"
    DEEPSEEK = "deepseek"
    SILICONFLOW = "siliconflow"
    OLLAMA = "ollama"
    GROQ = "groq"
    MISTRAL = "mistral-ai"
    LMSTUDIO = "lm-studio"
    PERPLEXITY = "perplexity"
    XAI = "xAI"
    OPENROUTER = "openrouter"
    CUSTOM = "custom"


class ApiMode(str, Enum):
    """Request/response envelope used by an OpenAI-compatible deployment."""
    CHAT = "chat"
    RESPONSES = "responses"


DEFAULT_HOSTS: dict[str, str] = {
    ProviderKey.OPENAI.value: "https://api.openai.com",
    ProviderKey.CLAUDE.value: "https://api.anthropic.com",
    ProviderKey.GEMINI.value: "https://generativelanguage.googleapis.com",
    ProviderKey.DEEPSEEK.value: "https://api.deepseek.com",
    ProviderKey.SILICONFLOW.value: "https://api.siliconflow.cn",
    ProviderKey.GROQ.value: "https://api.groq.com/openai",
    ProviderKey.MISTRAL.value: "https://api.mistral.ai",
    ProviderKey.PERPLEXITY.value: "https://api.perplexity.ai",
    ProviderKey.XAI.value: "https://api.x.ai",
    ProviderKey.OPENROUTER.value: "https://openrouter.ai/api",
    ProviderKey.OLLAMA.value: "http://localhost:11434",
    ProviderKey.LMSTUDIO.value: "http://localhost:1234",
}

DEFAULT_DISPLAY_NAMES: dict[str, str] = {
    ProviderKey.OPENAI.value: "OpenAI",
    ProviderKey.CLAUDE.value: "Claude",
    ProviderKey.GEMINI.value: "Gemini",
    ProviderKey.AZURE.value: "Azure OpenAI",
    ProviderKey.DEEPSEEK.value: "DeepSeek",
    ProviderKey.SILICONFLOW.value: "SiliconFlow",
    ProviderKey.OLLAMA.value: "Ollama",
    ProviderKey.GROQ.value: "Groq",
    ProviderKey.MISTRAL.value: "Mistral AI",
    ProviderKey.LMSTUDIO.value: "LM Studio",
    ProviderKey.PERPLEXITY.value: "Perplexity",
    ProviderKey.XAI.value: "xAI",
    ProviderKey.OPENROUTER.value: "OpenRouter",
    ProviderKey.CUSTOM.value: "Custom",
}

LOCAL_PROVIDERS: frozenset[str] = frozenset({
    ProviderKey.OLLAMA.value,
    ProviderKey.LMSTUDIO.value,
})


def provider_key_value(provider) -> str:
    """Return the raw string for a ProviderKey member or an opaque custom key."""
    if isinstance(provider, ProviderKey):
        return provider.value
    return str(provider)


def get_default_host(provider) -> str:
    """Default base URL for a provider, or "" when none is known."""
    return DEFAULT_HOSTS.get(provider_key_value(provider), "")


def get_default_display_name(provider) -> str:
    """Default display name for a provider; unknown keys display as themselves."""
    key = provider_key_value(provider)
    return DEFAULT_DISPLAY_NAMES.get(key, key)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_id() -> str:
    return str(uuid.uuid4())


# ─────────────────────────────────────────────────────────────────────
# ENVIRONMENT LOADING
# ─────────────────────────────────────────────────────────────────────

def get_request_timeout() -> float:
    """
    Get the completion request timeout in seconds.

    Set CHATSTREAM_TIMEOUT_SECONDS in .env (default: 60).
    """
    try:
        return float(os.environ.get("CHATSTREAM_TIMEOUT_SECONDS", DEFAULT_REQUEST_TIMEOUT_SECONDS))
    except ValueError:
        return DEFAULT_REQUEST_TIMEOUT_SECONDS


def get_models_timeout() -> float:
    """
    Get the model discovery timeout in seconds.

    Set CHATSTREAM_MODELS_TIMEOUT_SECONDS in .env (default: 30).
    """
    try:
        return float(os.environ.get("CHATSTREAM_MODELS_TIMEOUT_SECONDS", DEFAULT_MODELS_TIMEOUT_SECONDS))
    except ValueError:
        return DEFAULT_MODELS_TIMEOUT_SECONDS


def get_database_path() -> str:
    """Get the SQLite database path from CHATSTREAM_DB or default."""
    return os.environ.get("CHATSTREAM_DB", DEFAULT_DATABASE_PATH)


def _env_prefix(provider: str) -> str:
    return "CHATSTREAM_" + provider.upper().replace("-", "_")


def load_profiles_from_env() -> dict[str, "ProviderProfile"]:
    """
    Load provider profiles from environment variables.

    For every known provider key looks for CHATSTREAM_<KEY>_API_KEY,
    CHATSTREAM_<KEY>_BASE_URL, CHATSTREAM_<KEY>_PATH and CHATSTREAM_<KEY>_MODE
    (e.g. CHATSTREAM_MISTRAL_AI_API_KEY). Azure additionally reads
    CHATSTREAM_AZURE_ENDPOINT, CHATSTREAM_AZURE_DEPLOYMENT and
    CHATSTREAM_AZURE_API_VERSION.

    Only providers with at least one variable set are returned.
    """
    profiles = {}
    for key in ProviderKey:
        prefix = _env_prefix(key.value)
        api_key = os.environ.get(f"{prefix}_API_KEY")
        base_url = os.environ.get(f"{prefix}_BASE_URL")
        api_path = os.environ.get(f"{prefix}_PATH")
        mode = os.environ.get(f"{prefix}_MODE")
        azure_endpoint = os.environ.get(f"{prefix}_ENDPOINT") if key == ProviderKey.AZURE else None

        if not any([api_key, base_url, api_path, mode, azure_endpoint]):
            continue

        profile = ProviderProfile.create_default(key.value)
        if api_key:
            profile.api_key = api_key.strip()
        if base_url:
            profile.base_url = base_url.strip()
        if api_path:
            profile.api_path = api_path.strip()
        if mode:
            try:
                profile.api_mode = ApiMode(mode.strip().lower())
            except ValueError:
                logger.warning(f"Ignoring invalid {prefix}_MODE={mode!r} (expected chat or responses)")
        if key == ProviderKey.AZURE:
            profile.azure_endpoint = azure_endpoint
            profile.azure_deployment = os.environ.get(f"{prefix}_DEPLOYMENT")
            profile.azure_api_version = os.environ.get(
                f"{prefix}_API_VERSION", DEFAULT_AZURE_API_VERSION
            )
        profiles[key.value] = profile
    return profiles


# ─────────────────────────────────────────────────────────────────────
# DATA MODELS
# ─────────────────────────────────────────────────────────────────────

class ProviderProfile(BaseModel):
    """Connection parameters for one backend."""
    provider: str
    display_name: Optional[str] = None
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    api_path: Optional[str] = None
    api_mode: ApiMode = ApiMode.CHAT
    # Azure only
    azure_endpoint: Optional[str] = None
    azure_deployment: Optional[str] = None
    azure_api_version: Optional[str] = None
    # Previously discovered models, used as the fallback list
    cached_models: list[str] = Field(default_factory=list)
    enabled: bool = True
    updated_at: int = Field(default_factory=_now_ms)

    @classmethod
    def create_default(cls, provider) -> "ProviderProfile":
        """Profile created at first use: default display name and host."""
        key = provider_key_value(provider)
        profile = cls(
            provider=key,
            display_name=get_default_display_name(key),
            base_url=get_default_host(key) or None,
        )
        if key == ProviderKey.AZURE.value:
            profile.azure_api_version = DEFAULT_AZURE_API_VERSION
        return profile

    @property
    def is_azure(self) -> bool:
        return self.provider == ProviderKey.AZURE.value

    @property
    def is_local(self) -> bool:
        return self.provider in LOCAL_PROVIDERS

    @property
    def is_configured(self) -> bool:
        """Credential present, plus a base URL (or an Azure endpoint)."""
        if not self.api_key:
            return False
        if self.is_azure:
            return bool(self.azure_endpoint)
        return bool(self.base_url)

    @property
    def resolved_base_url(self) -> str:
        """Configured base URL, or the provider default when absent."""
        return self.base_url or get_default_host(self.provider)

    def snapshot(self) -> "ProviderProfile":
        """Independent copy used for the lifetime of one request."""
        return self.model_copy(deep=True)

    def touch(self) -> None:
        self.updated_at = _now_ms()


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class TokenUsage(BaseModel):
    """Token accounting reported by the provider."""
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class Conversation(BaseModel):
    """A chat session. Provider + model select the adapter and profile."""
    id: str = Field(default_factory=_new_id)
    name: str = DEFAULT_CONVERSATION_NAME
    provider: str = ProviderKey.OPENAI.value
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    max_context_messages: Optional[int] = None
    streaming: bool = True
    starred: bool = False
    hidden: bool = False
    created_at: int = Field(default_factory=_now_ms)
    updated_at: int = Field(default_factory=_now_ms)

    @property
    def context_limit(self) -> int:
        if self.max_context_messages is None:
            return DEFAULT_MAX_CONTEXT_MESSAGES
        return max(0, self.max_context_messages)


class Turn(BaseModel):
    """A single message within a conversation."""
    id: str = Field(default_factory=_new_id)
    conversation_id: str
    role: Role
    content: str = ""
    generating: bool = False
    error: Optional[str] = None
    error_code: Optional[int] = None
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    created_at: int = Field(default_factory=_now_ms)
    updated_at: int = Field(default_factory=_now_ms)

    @property
    def has_error(self) -> bool:
        return bool(self.error)

    @property
    def is_dialogue(self) -> bool:
        """User or assistant turn (eligible for the context window)."""
        return self.role in (Role.USER, Role.ASSISTANT)
