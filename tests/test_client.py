"""Tests for StreamingCompletionClient - the per-call streaming state machine."""

import asyncio
import json

import httpx
import pytest
import respx

from chatstream.adapters.schema import CompletionParams, CompletionRequest, ContextMessage
from chatstream.client import StreamingCompletionClient, StreamState
from chatstream.config import ApiMode, ProviderProfile, TokenUsage
from chatstream.events import Chunk, Completed, Failed, Started


URL = "http://llm.test/v1/chat/completions"
SSE_HEADERS = {"content-type": "text/event-stream"}


def _request(profile, stream=True):
    return CompletionRequest(
        profile=profile,
        messages=[ContextMessage(role="user", content="Hi")],
        params=CompletionParams(model="gpt-test", stream=stream),
    )


async def _collect(client, request):
    events = []

    async def on_event(event):
        events.append(event)

    terminal = await client.run(request, on_event)
    return events, terminal


def _texts(events):
    return [e.text for e in events if isinstance(e, Chunk)]


# ─────────────────────────────────────────────────────────────────────
# STREAMING
# ─────────────────────────────────────────────────────────────────────


class TestStreaming:
    """SSE decoding through the full client."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_two_chunks_then_done(self, openai_profile, sse):
        respx.post(URL).mock(return_value=httpx.Response(200, headers=SSE_HEADERS, content=sse([
            'data: {"choices":[{"delta":{"content":"Hi"}}]}',
            'data: {"choices":[{"delta":{"content":" there"}}]}',
            "data: [DONE]",
        ])))
        client = StreamingCompletionClient(timeout_seconds=5)

        events, terminal = await _collect(client, _request(openai_profile))

        assert isinstance(events[0], Started)
        assert _texts(events) == ["Hi", " there"]
        assert events[-1] is terminal
        assert isinstance(terminal, Completed)
        assert terminal.text == "Hi there"
        assert client.state == StreamState.COMPLETED

    @respx.mock
    @pytest.mark.asyncio
    async def test_malformed_line_skipped(self, openai_profile, sse):
        respx.post(URL).mock(return_value=httpx.Response(200, headers=SSE_HEADERS, content=sse([
            "data: {bad json",
            'data: {"choices":[{"delta":{"content":"ok"}}]}',
            "data: [DONE]",
        ])))

        events, terminal = await _collect(StreamingCompletionClient(timeout_seconds=5), _request(openai_profile))

        assert _texts(events) == ["ok"]
        assert isinstance(terminal, Completed)
        assert terminal.text == "ok"

    @respx.mock
    @pytest.mark.asyncio
    async def test_finish_reason_and_usage_on_separate_chunks(self, openai_profile, sse, streaming_lines):
        respx.post(URL).mock(return_value=httpx.Response(200, headers=SSE_HEADERS, content=sse(streaming_lines)))

        events, terminal = await _collect(StreamingCompletionClient(timeout_seconds=5), _request(openai_profile))

        assert terminal.text == "The capital is Paris."
        assert terminal.finish_reason == "stop"
        assert terminal.usage == TokenUsage(input_tokens=10, output_tokens=4, total_tokens=14)

    @respx.mock
    @pytest.mark.asyncio
    async def test_last_finish_reason_wins(self, openai_profile, sse):
        respx.post(URL).mock(return_value=httpx.Response(200, headers=SSE_HEADERS, content=sse([
            'data: {"choices":[{"delta":{"content":"a"},"finish_reason":"stop"}]}',
            'data: {"choices":[{"delta":{},"finish_reason":"length"}]}',
            'data: {"choices":[{"delta":{}}]}',
        ])))

        _, terminal = await _collect(StreamingCompletionClient(timeout_seconds=5), _request(openai_profile))

        assert terminal.finish_reason == "length"

    @respx.mock
    @pytest.mark.asyncio
    async def test_clean_end_without_done(self, openai_profile, sse):
        respx.post(URL).mock(return_value=httpx.Response(200, headers=SSE_HEADERS, content=sse([
            'data: {"choices":[{"delta":{"content":"partial"}}]}',
        ])))

        _, terminal = await _collect(StreamingCompletionClient(timeout_seconds=5), _request(openai_profile))

        assert isinstance(terminal, Completed)
        assert terminal.text == "partial"

    @respx.mock
    @pytest.mark.asyncio
    async def test_lines_after_done_ignored(self, openai_profile, sse):
        respx.post(URL).mock(return_value=httpx.Response(200, headers=SSE_HEADERS, content=sse([
            'data: {"choices":[{"delta":{"content":"a"}}]}',
            "data: [DONE]",
            'data: {"choices":[{"delta":{"content":"b"}}]}',
        ])))

        events, terminal = await _collect(StreamingCompletionClient(timeout_seconds=5), _request(openai_profile))

        assert _texts(events) == ["a"]

    @respx.mock
    @pytest.mark.asyncio
    async def test_responses_mode_stream(self, sse):
        profile = ProviderProfile(
            provider="custom", api_key="sk", base_url="http://llm.test", api_mode=ApiMode.RESPONSES,
        )
        route = respx.post("http://llm.test/v1/responses").mock(
            return_value=httpx.Response(200, headers=SSE_HEADERS, content=sse([
                "data: " + json.dumps({"type": "response.created", "response": {}}),
                "data: " + json.dumps({"type": "response.output_text.delta", "delta": "Hel"}),
                "data: " + json.dumps({"type": "response.output_text.delta", "delta": "lo"}),
                "data: " + json.dumps({
                    "type": "response.completed",
                    "response": {"status": "completed", "usage": {"input_tokens": 2, "output_tokens": 2}},
                }),
            ]))
        )

        events, terminal = await _collect(StreamingCompletionClient(timeout_seconds=5), _request(profile))

        body = json.loads(route.calls.last.request.content)
        assert "input" in body
        assert _texts(events) == ["Hel", "lo"]
        assert terminal.finish_reason == "completed"
        assert terminal.usage.total_tokens == 4

    @respx.mock
    @pytest.mark.asyncio
    async def test_request_carries_bearer_and_body(self, openai_profile, sse):
        route = respx.post(URL).mock(return_value=httpx.Response(200, headers=SSE_HEADERS, content=sse(["data: [DONE]"])))

        await _collect(StreamingCompletionClient(timeout_seconds=5), _request(openai_profile))

        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer sk-test-123"
        body = json.loads(request.content)
        assert body["model"] == "gpt-test"
        assert body["stream"] is True
        assert body["messages"] == [{"role": "user", "content": "Hi"}]


# ─────────────────────────────────────────────────────────────────────
# BUFFERED RESPONSES
# ─────────────────────────────────────────────────────────────────────


class TestBuffered:
    """Non-streaming requests and JSON answers to streaming requests."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_non_streaming_single_chunk(self, openai_profile, completion_response):
        route = respx.post(URL).mock(return_value=httpx.Response(200, json=completion_response))

        events, terminal = await _collect(
            StreamingCompletionClient(timeout_seconds=5), _request(openai_profile, stream=False)
        )

        assert json.loads(route.calls.last.request.content)["stream"] is False
        assert _texts(events) == ["The capital of France is Paris."]
        assert terminal.finish_reason == "stop"
        assert terminal.usage.total_tokens == 18

    @respx.mock
    @pytest.mark.asyncio
    async def test_json_answer_to_streaming_request(self, openai_profile, completion_response):
        respx.post(URL).mock(return_value=httpx.Response(200, json=completion_response))

        _, terminal = await _collect(StreamingCompletionClient(timeout_seconds=5), _request(openai_profile))

        assert isinstance(terminal, Completed)
        assert terminal.text == "The capital of France is Paris."

    @respx.mock
    @pytest.mark.asyncio
    async def test_buffered_without_message_fails(self, openai_profile):
        respx.post(URL).mock(return_value=httpx.Response(200, json={"choices": []}))

        _, terminal = await _collect(
            StreamingCompletionClient(timeout_seconds=5), _request(openai_profile, stream=False)
        )

        assert isinstance(terminal, Failed)
        assert not terminal.cancelled


# ─────────────────────────────────────────────────────────────────────
# FAILURES
# ─────────────────────────────────────────────────────────────────────


class TestFailures:
    """Terminal Failed events."""

    @pytest.mark.asyncio
    async def test_unconfigured_profile_makes_no_request(self):
        profile = ProviderProfile(provider="openai")
        client = StreamingCompletionClient(timeout_seconds=5)

        with respx.mock(assert_all_called=False) as router:
            events, terminal = await _collect(client, _request(profile))

        assert len(router.calls) == 0
        assert events == [terminal]
        assert isinstance(terminal, Failed)
        assert "not configured" in terminal.message
        assert client.state == StreamState.FAILED

    @respx.mock
    @pytest.mark.asyncio
    async def test_http_error_carries_status_and_body(self, openai_profile):
        respx.post(URL).mock(return_value=httpx.Response(401, text='{"error":"invalid key"}'))

        events, terminal = await _collect(StreamingCompletionClient(timeout_seconds=5), _request(openai_profile))

        assert isinstance(terminal, Failed)
        assert terminal.code == 401
        assert terminal.message == 'API error: 401 - {"error":"invalid key"}'
        assert _texts(events) == []

    @respx.mock
    @pytest.mark.asyncio
    async def test_redirect_is_not_a_success(self, openai_profile):
        respx.post(URL).mock(return_value=httpx.Response(
            302,
            headers={"content-type": "text/html", "location": "https://llm.test/v1/chat/completions"},
            text="<html>Moved</html>",
        ))
        client = StreamingCompletionClient(timeout_seconds=5)

        events, terminal = await _collect(client, _request(openai_profile))

        assert isinstance(terminal, Failed)
        assert terminal.code == 302
        assert terminal.message == "API error: 302 - <html>Moved</html>"
        assert not any(isinstance(e, Completed) for e in events)
        assert client.state == StreamState.FAILED

    @respx.mock
    @pytest.mark.asyncio
    async def test_connect_error(self, openai_profile):
        respx.post(URL).mock(side_effect=httpx.ConnectError("refused"))

        _, terminal = await _collect(StreamingCompletionClient(timeout_seconds=5), _request(openai_profile))

        assert isinstance(terminal, Failed)
        assert terminal.message.startswith("Network error")
        assert terminal.code is None

    @respx.mock
    @pytest.mark.asyncio
    async def test_timeout(self, openai_profile):
        respx.post(URL).mock(side_effect=httpx.ReadTimeout("slow"))

        _, terminal = await _collect(StreamingCompletionClient(timeout_seconds=5), _request(openai_profile))

        assert terminal.message.startswith("Request timed out")

    @respx.mock
    @pytest.mark.asyncio
    async def test_empty_body(self, openai_profile):
        respx.post(URL).mock(return_value=httpx.Response(200, headers=SSE_HEADERS, content=b""))

        _, terminal = await _collect(StreamingCompletionClient(timeout_seconds=5), _request(openai_profile))

        assert isinstance(terminal, Failed)
        assert terminal.message == "Empty response"


# ─────────────────────────────────────────────────────────────────────
# LIFECYCLE / CANCELLATION
# ─────────────────────────────────────────────────────────────────────


def _blocking_transport(first_line: bytes, release: asyncio.Event) -> httpx.MockTransport:
    """Transport whose stream sends one line and then waits for `release`."""

    async def body():
        yield first_line
        await release.wait()
        yield b"data: [DONE]\n\n"

    async def handler(request):
        return httpx.Response(200, headers=SSE_HEADERS, content=body())

    return httpx.MockTransport(handler)


class TestCancellation:
    """cancel() semantics."""

    @pytest.mark.asyncio
    async def test_cancel_after_first_chunk(self, openai_profile):
        release = asyncio.Event()
        transport = _blocking_transport(b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n', release)
        events = []
        got_chunk = asyncio.Event()

        async def on_event(event):
            events.append(event)
            if isinstance(event, Chunk):
                got_chunk.set()

        async with httpx.AsyncClient(transport=transport) as http_client:
            client = StreamingCompletionClient(timeout_seconds=5, http_client=http_client)
            client.start(_request(openai_profile), on_event)
            await asyncio.wait_for(got_chunk.wait(), timeout=5)

            assert client.cancel() is True
            terminal = await asyncio.wait_for(client.wait(), timeout=5)

        assert isinstance(terminal, Failed)
        assert terminal.cancelled
        assert terminal.partial_text == "Hi"
        assert client.state == StreamState.CANCELLED
        assert _texts(events) == ["Hi"]
        assert events[-1] is terminal
        # Already terminal: no-op
        assert client.cancel() is False
        assert client.terminal_event is terminal

    @pytest.mark.asyncio
    async def test_cancel_before_task_runs(self, openai_profile):
        events = []

        async def on_event(event):
            events.append(event)

        with respx.mock(assert_all_called=False) as router:
            client = StreamingCompletionClient(timeout_seconds=5)
            client.start(_request(openai_profile), on_event)
            assert client.cancel() is True
            assert client.cancel() is False
            terminal = await client.wait()

        assert len(router.calls) == 0
        assert events == [terminal]
        assert terminal.cancelled

    @respx.mock
    @pytest.mark.asyncio
    async def test_cancel_after_completion_is_noop(self, openai_profile, sse):
        respx.post(URL).mock(return_value=httpx.Response(200, headers=SSE_HEADERS, content=sse(["data: [DONE]"])))
        client = StreamingCompletionClient(timeout_seconds=5)

        _, terminal = await _collect(client, _request(openai_profile))

        assert client.cancel() is False
        assert client.state == StreamState.COMPLETED
        assert client.terminal_event is terminal

    @respx.mock
    @pytest.mark.asyncio
    async def test_start_twice_is_an_error(self, openai_profile, sse):
        respx.post(URL).mock(return_value=httpx.Response(200, headers=SSE_HEADERS, content=sse(["data: [DONE]"])))

        async def on_event(event):
            pass

        client = StreamingCompletionClient(timeout_seconds=5)
        client.start(_request(openai_profile), on_event)
        with pytest.raises(RuntimeError):
            client.start(_request(openai_profile), on_event)
        await client.wait()

    @pytest.mark.asyncio
    async def test_wait_before_start_is_an_error(self):
        with pytest.raises(RuntimeError):
            await StreamingCompletionClient(timeout_seconds=5).wait()
