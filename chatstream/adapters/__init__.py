"""
Provider adapters.

Provider-agnostic architecture: Protocol defines WHAT, implementations define HOW.
"""

from .base import ProviderAdapter, ProviderFamily
from .openai_compat import OpenAICompatibleAdapter
from .registry import family_for, get_adapter
from .schema import (
    ChunkDelta,
    CompletionParams,
    CompletionRequest,
    CompletionResult,
    ContextMessage,
    PreparedRequest,
)

__all__ = [
    "ProviderAdapter",
    "ProviderFamily",
    "OpenAICompatibleAdapter",
    "family_for",
    "get_adapter",
    "ChunkDelta",
    "CompletionParams",
    "CompletionRequest",
    "CompletionResult",
    "ContextMessage",
    "PreparedRequest",
]
