"""Tests for the error taxonomy and event values."""

import dataclasses

import pytest

from chatstream.errors import (
    ChatStreamError,
    ConfigurationError,
    ConversationNotFoundError,
    DecodeError,
    GenerationInProgressError,
    InvalidResponseError,
    ModelNotSetError,
    ProtocolError,
    ProviderNotConfiguredError,
)
from chatstream.events import Chunk, Completed, Failed, Started, is_terminal


class TestErrors:
    """Error hierarchy and messages."""

    @pytest.mark.parametrize("error", [
        ProviderNotConfiguredError("openai"),
        ModelNotSetError("c1"),
        ConversationNotFoundError("c1"),
    ])
    def test_configuration_errors(self, error):
        assert isinstance(error, ConfigurationError)
        assert error.code is None

    def test_protocol_error_keeps_body(self):
        error = ProtocolError(404, '{"error":"model not found"}')
        assert error.message == 'API error: 404 - {"error":"model not found"}'
        assert error.code == 404
        assert error.body == '{"error":"model not found"}'

    def test_invalid_response_is_decode_error(self):
        assert issubclass(InvalidResponseError, DecodeError)

    def test_in_progress_names_conversation(self):
        error = GenerationInProgressError("c9")
        assert isinstance(error, ChatStreamError)
        assert "c9" in str(error)


class TestEvents:
    """Event values are immutable; only Completed and Failed are terminal."""

    def test_terminal(self):
        assert is_terminal(Completed(text="x"))
        assert is_terminal(Failed(message="x"))
        assert not is_terminal(Started())
        assert not is_terminal(Chunk("x"))

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            Chunk("x").text = "y"
