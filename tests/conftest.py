"""Shared test fixtures for chatstream tests."""

import pytest

from chatstream.config import ProviderProfile
from chatstream.storage import MemoryConversationStore, MemoryProfileStore


# ─────────────────────────────────────────────────────────────────────
# MOCK DATA
# ─────────────────────────────────────────────────────────────────────

MOCK_HOST = "http://llm.test"
MOCK_COMPLETION_URL = f"{MOCK_HOST}/v1/chat/completions"
MOCK_MODELS_URL = f"{MOCK_HOST}/v1/models"
MOCK_API_KEY = "sk-test-123"
MOCK_MODEL = "gpt-test"

MOCK_COMPLETION_RESPONSE = {
    "id": "chatcmpl-123",
    "object": "chat.completion",
    "model": MOCK_MODEL,
    "choices": [
        {
            "index": 0,
            "message": {"role": "assistant", "content": "The capital of France is Paris."},
            "finish_reason": "stop",
        }
    ],
    "usage": {"prompt_tokens": 10, "completion_tokens": 8, "total_tokens": 18},
}

MOCK_STREAMING_LINES = [
    'data: {"id":"chatcmpl-123","choices":[{"index":0,"delta":{"role":"assistant","content":""},"finish_reason":null}]}',
    'data: {"id":"chatcmpl-123","choices":[{"index":0,"delta":{"content":"The capital"},"finish_reason":null}]}',
    'data: {"id":"chatcmpl-123","choices":[{"index":0,"delta":{"content":" is Paris."},"finish_reason":null}]}',
    'data: {"id":"chatcmpl-123","choices":[{"index":0,"delta":{},"finish_reason":"stop"}]}',
    'data: {"id":"chatcmpl-123","choices":[],"usage":{"prompt_tokens":10,"completion_tokens":4,"total_tokens":14}}',
    'data: [DONE]',
]


def sse_body(lines: list[str]) -> str:
    """Join data lines with the blank-line separators of an SSE stream."""
    return "".join(f"{line}\n\n" for line in lines)


# ─────────────────────────────────────────────────────────────────────
# FIXTURES
# ─────────────────────────────────────────────────────────────────────


@pytest.fixture
def sse():
    """SSE body builder."""
    return sse_body


@pytest.fixture
def streaming_lines() -> list[str]:
    return list(MOCK_STREAMING_LINES)


@pytest.fixture
def completion_response() -> dict:
    return dict(MOCK_COMPLETION_RESPONSE)


@pytest.fixture
def openai_profile() -> ProviderProfile:
    """Configured OpenAI-compatible profile pointing at the mock host."""
    return ProviderProfile(provider="custom", api_key=MOCK_API_KEY, base_url=MOCK_HOST)


@pytest.fixture
def conversation_store() -> MemoryConversationStore:
    return MemoryConversationStore()


@pytest.fixture
def profile_store(openai_profile) -> MemoryProfileStore:
    return MemoryProfileStore({openai_profile.provider: openai_profile})


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep CHATSTREAM_* variables from the developer's shell out of tests."""
    import os

    for key in list(os.environ):
        if key.startswith("CHATSTREAM_"):
            monkeypatch.delenv(key, raising=False)
