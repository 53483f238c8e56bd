"""
ProviderAdapter Protocol - defines the contract for provider wire formats.

This is the WHAT (interface), not the HOW (implementation).
See openai_compat.py for the reference implementation; the other adapters
override only what differs for their family.
"""

from enum import Enum
from typing import Any, Optional, Protocol

from chatstream.adapters.schema import (
    ChunkDelta,
    CompletionParams,
    CompletionResult,
    ContextMessage,
    PreparedRequest,
)
from chatstream.config import ProviderProfile


class ProviderFamily(str, Enum):
    """Closed set of wire-protocol shapes. One adapter per member."""
    OPENAI_COMPATIBLE = "openai-compatible"
    AZURE = "azure"
    OPENROUTER = "openrouter"
    GEMINI = "gemini"
    OLLAMA = "ollama"
    ANTHROPIC = "anthropic"


class ProviderAdapter(Protocol):
    """
    Contract for provider request/response adaptation.

    Implementations are stateless: every method is a pure function of its
    arguments, so one instance is shared by all concurrent requests.
    """

    family: ProviderFamily

    def build_completion_request(
        self,
        profile: ProviderProfile,
        messages: list[ContextMessage],
        params: CompletionParams,
    ) -> PreparedRequest:
        """
        Build URL, headers and JSON body for a chat completion.

        Args:
            profile: Provider connection parameters
            messages: Context window, oldest first, new user turn last
            params: Model id, sampling parameters, stream flag
        """
        ...

    def parse_streaming_chunk(self, line: str) -> Optional[ChunkDelta]:
        """
        Decode one line of an SSE response.

        Returns:
            None for lines that are not `data: ` lines,
            ChunkDelta(done=True) for the [DONE] sentinel,
            otherwise the decoded delta.

        Raises:
            DecodeError if the payload is not a JSON object
        """
        ...

    def parse_non_streaming_response(self, body: Any) -> CompletionResult:
        """
        Decode a buffered response body.

        Raises:
            InvalidResponseError if no choice/message is present
        """
        ...

    def build_models_request(self, profile: ProviderProfile) -> Optional[PreparedRequest]:
        """Discovery request, or None when the provider has no endpoint."""
        ...

    def parse_models_response(self, data: Any) -> list[str]:
        """Flatten a discovery response to model ids. Unknown shapes give []."""
        ...

    def static_models(self) -> list[str]:
        """Known model ids used when discovery is unavailable."""
        ...
