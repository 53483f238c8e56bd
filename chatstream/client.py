"""
StreamingCompletionClient - one chat-completion call, from request to
terminal event.

States:
    IDLE -> REQUESTING -> STREAMING -> COMPLETED | FAILED | CANCELLED

Terminal states are final. Events are delivered to a single async sink in
order: Started, Chunk*, then exactly one of Completed / Failed. Cancellation
is reported as Failed(cancelled=True); nothing but that terminal event is
delivered once cancel() has been called.

Usage:
    client = StreamingCompletionClient()
    client.start(request, on_event)
    ...
    client.cancel()
    terminal = await client.wait()
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

import httpx

from chatstream.adapters.base import ProviderAdapter
from chatstream.adapters.registry import get_adapter
from chatstream.adapters.schema import CompletionRequest, PreparedRequest
from chatstream.config import TokenUsage, get_request_timeout
from chatstream.errors import (
    ChatStreamError,
    DecodeError,
    InvalidResponseError,
    ProtocolError,
    ProviderNotConfiguredError,
    TransportError,
)
from chatstream.events import Chunk, Completed, Failed, Started, StreamEvent

logger = logging.getLogger(__name__)

EventSink = Callable[[StreamEvent], Awaitable[None]]

CANCELLED_MESSAGE = "Generation cancelled"


class StreamState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({StreamState.COMPLETED, StreamState.FAILED, StreamState.CANCELLED})


class StreamingCompletionClient:
    """
    Owns exactly one in-flight completion call.

    Instances are single-use: start() may be called once. Finish reason and
    usage keep the last value observed on any chunk, since providers send
    them on separate chunks.

    Args:
        timeout_seconds: Transport timeout (defaults to env configuration)
        http_client: Optional shared httpx.AsyncClient
    """

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._timeout = timeout_seconds if timeout_seconds is not None else get_request_timeout()
        self._http_client = http_client
        self._state = StreamState.IDLE
        self._task: Optional[asyncio.Task] = None
        self._sink: Optional[EventSink] = None
        self._running = False
        self._cancel_requested = False
        self._parts: list[str] = []
        self._finish_reason: Optional[str] = None
        self._usage: Optional[TokenUsage] = None
        self._terminal: Optional[StreamEvent] = None

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def text(self) -> str:
        """Text delivered so far."""
        return "".join(self._parts)

    @property
    def terminal_event(self) -> Optional[StreamEvent]:
        return self._terminal

    # ─────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────

    def start(self, request: CompletionRequest, on_event: EventSink) -> asyncio.Task:
        """Schedule the call on the running loop and return its task."""
        if self._task is not None:
            raise RuntimeError("StreamingCompletionClient.start() called twice")
        self._sink = on_event
        self._task = asyncio.create_task(self._run(request))
        return self._task

    async def wait(self) -> StreamEvent:
        """Wait for the terminal event. Cancelling the waiter leaves the call running."""
        if self._task is None:
            raise RuntimeError("StreamingCompletionClient.wait() before start()")
        await asyncio.shield(self._task)
        return self._terminal

    async def run(self, request: CompletionRequest, on_event: EventSink) -> StreamEvent:
        self.start(request, on_event)
        return await self.wait()

    def cancel(self) -> bool:
        """
        Abort the call.

        Returns False (and does nothing) when the call already reached a
        terminal state or cancel() was already requested.
        """
        if self._state in TERMINAL_STATES or self._cancel_requested:
            return False
        self._cancel_requested = True
        logger.debug("Cancellation requested")
        # A task that has not started yet observes the flag on entry
        if self._task is not None and self._running and not self._task.done():
            self._task.cancel()
        return True

    async def _run(self, request: CompletionRequest) -> None:
        self._running = True
        try:
            if self._cancel_requested:
                await self._finish_cancelled()
                return
            await self._execute(request)
        except asyncio.CancelledError:
            await self._finish_cancelled()
        except ChatStreamError as e:
            await self._finish_failed(e)
        except Exception as e:
            logger.exception("Unexpected error during completion")
            await self._finish_failed(ChatStreamError(f"Unexpected error: {e}"))

    # ─────────────────────────────────────────────────────────────────
    # Network exchange
    # ─────────────────────────────────────────────────────────────────

    async def _execute(self, request: CompletionRequest) -> None:
        profile = request.profile
        if not profile.is_configured:
            raise ProviderNotConfiguredError(profile.provider)

        adapter = get_adapter(profile)
        prepared = adapter.build_completion_request(profile, request.messages, request.params)

        self._state = StreamState.REQUESTING
        await self._emit(Started())
        logger.debug(
            f"{prepared.method} {prepared.url} model={request.params.model} "
            f"stream={request.stream}"
        )

        try:
            if self._http_client is not None:
                await self._exchange(self._http_client, adapter, prepared, request.stream)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    await self._exchange(client, adapter, prepared, request.stream)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Network error: {e}") from e

        await self._finish_completed()

    async def _exchange(
        self,
        client: httpx.AsyncClient,
        adapter: ProviderAdapter,
        prepared: PreparedRequest,
        stream: bool,
    ) -> None:
        async with client.stream(
            prepared.method,
            prepared.url,
            headers=prepared.headers,
            json=prepared.body,
            params=prepared.params or None,
            timeout=self._timeout,
        ) as response:
            if not response.is_success:
                error_body = await response.aread()
                body_text = error_body.decode("utf-8", errors="replace")
                logger.error(f"API error: {response.status_code} - {body_text[:500]}")
                raise ProtocolError(response.status_code, body_text)

            self._state = StreamState.STREAMING
            content_type = response.headers.get("content-type", "")
            if stream and "application/json" not in content_type:
                await self._consume_sse(adapter, response)
            else:
                # Buffered JSON: non-streaming request, or a server that ignored stream=true
                await self._consume_buffered(adapter, response)

    async def _consume_sse(self, adapter: ProviderAdapter, response: httpx.Response) -> None:
        received = False
        async for line in response.aiter_lines():
            if not line.strip():
                continue
            received = True
            try:
                delta = adapter.parse_streaming_chunk(line)
            except DecodeError as e:
                # One bad line never aborts the stream
                logger.warning(f"Skipping malformed stream line: {e.message}")
                continue
            if delta is None:
                continue
            if delta.done:
                break
            if delta.finish_reason:
                self._finish_reason = delta.finish_reason
            if delta.usage is not None:
                self._usage = delta.usage
            if delta.text:
                await self._emit_chunk(delta.text)

        if not received:
            raise InvalidResponseError("Empty response")

    async def _consume_buffered(self, adapter: ProviderAdapter, response: httpx.Response) -> None:
        body = await response.aread()
        if not body.strip():
            raise InvalidResponseError("Empty response")
        result = adapter.parse_non_streaming_response(body)
        self._finish_reason = result.finish_reason
        self._usage = result.usage
        if result.text:
            await self._emit_chunk(result.text)

    # ─────────────────────────────────────────────────────────────────
    # Event delivery
    # ─────────────────────────────────────────────────────────────────

    async def _emit(self, event: StreamEvent) -> None:
        if self._sink is not None:
            await self._sink(event)

    async def _emit_chunk(self, text: str) -> None:
        if self._cancel_requested:
            return
        self._parts.append(text)
        await self._emit(Chunk(text))

    async def _finish_completed(self) -> None:
        if self._cancel_requested:
            await self._finish_cancelled()
            return
        self._state = StreamState.COMPLETED
        self._terminal = Completed(
            text=self.text,
            finish_reason=self._finish_reason,
            usage=self._usage,
        )
        logger.debug(f"Completed: {len(self.text)} chars, finish_reason={self._finish_reason}")
        await self._emit(self._terminal)

    async def _finish_failed(self, error: ChatStreamError) -> None:
        if self._cancel_requested:
            await self._finish_cancelled()
            return
        self._state = StreamState.FAILED
        self._terminal = Failed(message=error.message, code=error.code, partial_text=self.text)
        logger.warning(f"Completion failed: {error.message}")
        await self._emit(self._terminal)

    async def _finish_cancelled(self) -> None:
        self._state = StreamState.CANCELLED
        self._terminal = Failed(
            message=CANCELLED_MESSAGE,
            cancelled=True,
            partial_text=self.text,
        )
        logger.info(f"Completion cancelled after {len(self.text)} chars")
        await self._emit(self._terminal)
