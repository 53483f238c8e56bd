"""
Base URL normalization for OpenAI-compatible endpoints.

Users paste hosts in every shape: with or without scheme, with trailing
slashes, with or without /v1, sometimes the full completion URL. These
helpers map all of them onto one canonical endpoint.
"""

from typing import Optional

from chatstream.config import ApiMode

DEFAULT_HOST = "https://api.openai.com/v1"
CHAT_PATH = "/chat/completions"
RESPONSES_PATH = "/responses"
MODELS_PATH = "/models"

OPENROUTER_API_BASE = "https://openrouter.ai/api/v1"
OPENROUTER_HOST = "openrouter.ai"

# host suffix -> canonical base
_CANONICAL_HOSTS = [
    (("://api.openai.com", "://api.openai.com/v1"), "https://api.openai.com/v1"),
    (("://openrouter.ai", "://openrouter.ai/api", "://openrouter.ai/api/v1"), OPENROUTER_API_BASE),
    (("://api.x.ai", "://api.x.ai/v1"), "https://api.x.ai/v1"),
]


def default_path_for_mode(mode: ApiMode) -> str:
    return RESPONSES_PATH if mode == ApiMode.RESPONSES else CHAT_PATH


def _clean_host(host: str) -> str:
    host = host.strip()
    if not host.startswith(("http://", "https://")):
        host = "https://" + host
    return host.rstrip("/")


def _clean_path(path: Optional[str]) -> Optional[str]:
    if path is None:
        return None
    path = path.strip()
    if not path:
        return None
    if not path.startswith("/"):
        path = "/" + path
    return path


def normalize_api_url(
    host: Optional[str],
    path: Optional[str] = None,
    mode: ApiMode = ApiMode.CHAT,
) -> tuple[str, str]:
    """
    Normalize a configured host and optional path override.

    Returns:
        (base, path) where base + path is the completion endpoint.
    """
    default_path = default_path_for_mode(mode)
    if not host or not host.strip():
        return DEFAULT_HOST, _clean_path(path) or default_path

    host = _clean_host(host)
    path = _clean_path(path)

    # Full endpoint pasted into the host field
    for suffix in (CHAT_PATH, RESPONSES_PATH):
        if host.endswith(suffix):
            host = host[: -len(suffix)]
            if path is None and suffix == default_path:
                path = suffix
            break

    for suffixes, canonical in _CANONICAL_HOSTS:
        if host.endswith(suffixes):
            return canonical, path or default_path

    # An explicit path is used verbatim, no /v1 injection
    if path:
        return host, path

    if "/v1" not in host:
        host = host + "/v1"
    return host, default_path


def completion_url(
    host: Optional[str],
    path: Optional[str] = None,
    mode: ApiMode = ApiMode.CHAT,
) -> str:
    base, api_path = normalize_api_url(host, path, mode)
    return base + api_path


def models_url(host: Optional[str]) -> str:
    """Model listing endpoint for an OpenAI-compatible host."""
    if not host or not host.strip():
        return DEFAULT_HOST + MODELS_PATH

    host = _clean_host(host)
    for suffix in (CHAT_PATH, RESPONSES_PATH):
        if host.endswith(suffix):
            host = host[: -len(suffix)]
            break

    for suffixes, canonical in _CANONICAL_HOSTS:
        if host.endswith(suffixes):
            return canonical + MODELS_PATH

    if "/v1" not in host:
        host = host + "/v1"
    return host + MODELS_PATH


def is_openrouter(url: str) -> bool:
    return OPENROUTER_HOST in url
