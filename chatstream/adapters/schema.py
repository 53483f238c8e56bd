from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from chatstream.config import ProviderProfile, TokenUsage


class ContextMessage(BaseModel):
    """One (role, text) entry of the outbound context window."""
    role: str
    content: str


class CompletionParams(BaseModel):
    """Sampling parameters and transport mode for one completion call."""
    model: str
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    stream: bool = True


class CompletionRequest(BaseModel):
    """
    Standardized request object handed to the streaming client.

    `profile` is a snapshot taken when the request was built; later edits to
    the stored profile do not reach an already-started call.
    """
    profile: ProviderProfile
    messages: List[ContextMessage]
    params: CompletionParams

    @property
    def stream(self) -> bool:
        return self.params.stream


class PreparedRequest(BaseModel):
    """Provider-specific wire request: URL, headers and JSON body."""
    method: str = "POST"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[Dict[str, Any]] = None
    params: Dict[str, str] = Field(default_factory=dict)


class ChunkDelta(BaseModel):
    """
    Decoded content of one SSE data line.

    Every field is independently optional: a chunk may carry only text,
    only a finish reason, or only usage. `done` marks the [DONE] sentinel.
    """
    text: Optional[str] = None
    finish_reason: Optional[str] = None
    usage: Optional[TokenUsage] = None
    done: bool = False


class CompletionResult(BaseModel):
    """Decoded non-streaming response."""
    text: str
    finish_reason: Optional[str] = None
    usage: Optional[TokenUsage] = None
