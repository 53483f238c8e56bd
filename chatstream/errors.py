"""
Error taxonomy for chatstream.

ConfigurationError   - detected before any network call, never retried
TransportError       - connect failure, timeout, aborted read
ProtocolError        - non-2xx HTTP status, carries status code and body
DecodeError          - malformed JSON or an unexpected response shape
"""

from typing import Optional


class ChatStreamError(Exception):
    """Base error. `code` is an HTTP status or None."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigurationError(ChatStreamError):
    pass


class ProviderNotConfiguredError(ConfigurationError):
    def __init__(self, provider: str):
        super().__init__(f"Provider not configured: {provider}")
        self.provider = provider


class ModelNotSetError(ConfigurationError):
    def __init__(self, conversation_id: str):
        super().__init__(f"No model selected for conversation {conversation_id}")
        self.conversation_id = conversation_id


class ConversationNotFoundError(ConfigurationError):
    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class TransportError(ChatStreamError):
    pass


class ProtocolError(ChatStreamError):
    """Non-2xx response. Message keeps the body verbatim for display."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"API error: {status_code} - {body}", code=status_code)
        self.status_code = status_code
        self.body = body


class DecodeError(ChatStreamError):
    pass


class InvalidResponseError(DecodeError):
    pass


class GenerationInProgressError(ChatStreamError):
    """A conversation already has a turn being generated."""

    def __init__(self, conversation_id: str):
        super().__init__(
            f"Conversation {conversation_id} already has a generation in progress"
        )
        self.conversation_id = conversation_id


class GenerationCancelledError(ChatStreamError):
    def __init__(self, message: str = "Generation cancelled"):
        super().__init__(message)
