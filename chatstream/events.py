"""
Events delivered by the streaming client and the orchestrator.

Ordering contract: at most one Started, zero or more Chunk, then exactly one
of Completed / Failed. A cancelled generation ends with Failed(cancelled=True).
"""

from dataclasses import dataclass
from typing import Optional, Union

from chatstream.config import TokenUsage


@dataclass(frozen=True)
class Started:
    turn_id: Optional[str] = None


@dataclass(frozen=True)
class Chunk:
    text: str


@dataclass(frozen=True)
class Completed:
    text: str
    finish_reason: Optional[str] = None
    usage: Optional[TokenUsage] = None


@dataclass(frozen=True)
class Failed:
    message: str
    code: Optional[int] = None
    cancelled: bool = False
    # Text accumulated before the failure
    partial_text: str = ""


StreamEvent = Union[Started, Chunk, Completed, Failed]


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, (Completed, Failed))
