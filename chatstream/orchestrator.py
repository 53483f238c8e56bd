"""
ConversationOrchestrator - one user message in, one persisted exchange out.

Flow of send():
    1. Validate conversation, model and profile (fail fast, nothing persisted)
    2. Insert the finalized user turn, touch the conversation
    3. Insert the assistant placeholder (generating=True)
    4. Build the context window from prior turns
    5. Start a StreamingCompletionClient; every chunk is appended to the
       placeholder in storage before it is re-emitted, the terminal event
       finalizes the turn

All storage calls run on one dedicated worker thread, so the persistence
steps of a conversation are strictly ordered. Events reach the caller
through the Generation handle's queue on the caller's event loop.

Usage:
    orchestrator = ConversationOrchestrator(store, profiles)
    generation = await orchestrator.send(conversation_id, "Hello")
    async for event in generation:
        ...
"""

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import AsyncIterator, Callable, Optional

import httpx

from chatstream.adapters.schema import CompletionParams, CompletionRequest, ContextMessage
from chatstream.client import StreamingCompletionClient
from chatstream.config import (
    DEFAULT_CONVERSATION_NAME,
    Conversation,
    ProviderProfile,
    Role,
    Turn,
)
from chatstream.errors import (
    ChatStreamError,
    ConversationNotFoundError,
    GenerationCancelledError,
    GenerationInProgressError,
    ModelNotSetError,
    ProviderNotConfiguredError,
)
from chatstream.events import Chunk, Completed, Failed, Started, StreamEvent, is_terminal
from chatstream.storage import ConversationStore, ProfileStore

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Generation interrupted"


def build_context_messages(
    history: list[Turn],
    limit: int,
    system_prompt: Optional[str],
    api_text: str,
) -> list[ContextMessage]:
    """
    Build the outbound context window.

    Args:
        history: Prior turns of the conversation, oldest first
        limit: Maximum number of prior turns to include (0 = none)
        system_prompt: Prepended as its own entry when non-blank
        api_text: Content of the new user entry, appended last

    Only user/assistant turns without an error are eligible; the `limit`
    most recent eligible turns are kept in chronological order.
    """
    messages = []
    if system_prompt and system_prompt.strip():
        messages.append(ContextMessage(role=Role.SYSTEM.value, content=system_prompt))

    if limit > 0:
        eligible = [
            turn for turn in history
            if turn.is_dialogue and not turn.has_error and not turn.generating
        ]
        for turn in eligible[-limit:]:
            messages.append(ContextMessage(role=Role(turn.role).value, content=turn.content))

    messages.append(ContextMessage(role=Role.USER.value, content=api_text))
    return messages


class Generation:
    """
    Handle for one in-flight assistant turn.

    Iterate it for the ordered events (Started, Chunk*, then Completed or
    Failed); await result() for the terminal event only.
    """

    def __init__(self, conversation_id: str, user_turn_id: str, turn_id: str):
        self.conversation_id = conversation_id
        self.user_turn_id = user_turn_id
        self.turn_id = turn_id
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue()
        self._terminal: asyncio.Future = asyncio.get_running_loop().create_future()
        self._client: Optional[StreamingCompletionClient] = None

    @property
    def done(self) -> bool:
        return self._terminal.done()

    def cancel(self) -> bool:
        """Cancel the underlying call. False when already finished or cancelled."""
        if self.done or self._client is None:
            return False
        return self._client.cancel()

    async def result(self) -> StreamEvent:
        return await asyncio.shield(self._terminal)

    async def text(self) -> str:
        """Final text of a completed generation; raises when it failed or was cancelled."""
        event = await self.result()
        if isinstance(event, Completed):
            return event.text
        if event.cancelled:
            raise GenerationCancelledError(event.message)
        raise ChatStreamError(event.message, event.code)

    async def __aiter__(self) -> AsyncIterator[StreamEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if is_terminal(event):
                return

    def _deliver(self, event: StreamEvent) -> None:
        if self.done:
            return
        self._queue.put_nowait(event)
        if is_terminal(event):
            self._terminal.set_result(event)


class ConversationOrchestrator:
    """
    Turns user messages into persisted, streamed exchanges.

    Args:
        store: Conversation/turn storage
        profiles: Provider profile lookup
        http_client: Optional shared httpx.AsyncClient for completion calls
        timeout_seconds: Transport timeout passed to each client
        client_factory: Builds a StreamingCompletionClient per send
    """

    def __init__(
        self,
        store: ConversationStore,
        profiles: ProfileStore,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: Optional[float] = None,
        client_factory: Optional[Callable[[], StreamingCompletionClient]] = None,
    ):
        self.store = store
        self.profiles = profiles
        self._client_factory = client_factory or (
            lambda: StreamingCompletionClient(timeout_seconds=timeout_seconds, http_client=http_client)
        )
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="chatstream-store")
        # conversation_id -> Generation; None while send() is still preparing
        self._live: dict[str, Optional[Generation]] = {}
        self._closed = False

    async def _io(self, fn, *args):
        """Run a blocking storage call on the worker thread."""
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._worker, functools.partial(fn, *args))
        # A cancelled caller must not cancel a write that is already queued
        return await asyncio.shield(future)

    # ─────────────────────────────────────────────────────────────────
    # Conversations
    # ─────────────────────────────────────────────────────────────────

    async def create_conversation(
        self,
        provider: str,
        model: Optional[str] = None,
        name: Optional[str] = None,
        **params,
    ) -> Conversation:
        """Create and persist a conversation. Extra kwargs set Conversation fields."""
        conversation = Conversation(
            name=name or DEFAULT_CONVERSATION_NAME,
            provider=provider,
            model=model,
            **params,
        )
        await self._io(self.store.insert_conversation, conversation)
        logger.debug(f"Created conversation {conversation.id} ({provider}/{model})")
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation:
        conversation = await self._io(self.store.get_conversation, conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def list_turns(self, conversation_id: str) -> list[Turn]:
        return await self._io(self.store.list_turns, conversation_id)

    async def clear_conversation(self, conversation_id: str) -> None:
        """Delete every turn of a conversation, keeping its settings."""
        if conversation_id in self._live:
            raise GenerationInProgressError(conversation_id)
        await self.get_conversation(conversation_id)
        await self._io(self.store.delete_turns, conversation_id)
        await self._io(self.store.touch_conversation, conversation_id)

    async def delete_conversation(self, conversation_id: str) -> None:
        """Cancel any live generation, then delete the conversation and its turns."""
        generation = self._live.get(conversation_id)
        if generation is not None:
            generation.cancel()
            await generation.result()
        await self._io(self.store.delete_conversation, conversation_id)
        logger.info(f"Deleted conversation {conversation_id}")

    async def recover_interrupted(self) -> int:
        """
        Mark turns left generating by a previous process as failed.

        Partial content is kept. Returns the number of turns recovered.
        """
        stale = [
            turn for turn in await self._io(self.store.generating_turns, None)
            if turn.conversation_id not in self._live
        ]
        for turn in stale:
            await self._io(self.store.set_error, turn.id, INTERRUPTED_MESSAGE, None)
        if stale:
            logger.warning(f"Recovered {len(stale)} interrupted generation(s)")
        return len(stale)

    # ─────────────────────────────────────────────────────────────────
    # Sending
    # ─────────────────────────────────────────────────────────────────

    def is_generating(self, conversation_id: str) -> bool:
        return conversation_id in self._live

    async def send(
        self,
        conversation_id: str,
        display_text: str,
        api_text: Optional[str] = None,
        override_system_prompt: Optional[str] = None,
    ) -> Generation:
        """
        Send a user message and start generating the reply.

        Args:
            conversation_id: Target conversation
            display_text: Stored as the user turn's content
            api_text: Sent to the provider instead of display_text (e.g. with
                injected attachment content); defaults to display_text
            override_system_prompt: Replaces the stored system prompt when non-blank

        Raises:
            ConversationNotFoundError, ModelNotSetError,
            ProviderNotConfiguredError: nothing is persisted
            GenerationInProgressError: the conversation is already generating
        """
        if self._closed:
            raise RuntimeError("ConversationOrchestrator is closed")
        # Reserved before the first await so a concurrent send() sees it
        if conversation_id in self._live:
            raise GenerationInProgressError(conversation_id)
        self._live[conversation_id] = None

        try:
            conversation, profile, messages, user_turn, assistant_turn = await self._io(
                self._prepare,
                conversation_id,
                display_text,
                api_text if api_text is not None else display_text,
                override_system_prompt,
            )
        except BaseException:
            self._live.pop(conversation_id, None)
            raise

        request = CompletionRequest(
            profile=profile,
            messages=messages,
            params=CompletionParams(
                model=conversation.model,
                temperature=conversation.temperature,
                top_p=conversation.top_p,
                max_tokens=conversation.max_tokens,
                stream=conversation.streaming,
            ),
        )
        generation = Generation(conversation_id, user_turn.id, assistant_turn.id)
        client = self._client_factory()
        generation._client = client
        self._live[conversation_id] = generation

        logger.info(
            f"Sending to {profile.provider}/{conversation.model}: conversation {conversation_id}, "
            f"{len(messages)} context messages"
        )
        task = client.start(request, functools.partial(self._on_event, generation))
        task.add_done_callback(functools.partial(self._on_task_done, generation, client))
        return generation

    def _prepare(
        self,
        conversation_id: str,
        display_text: str,
        api_text: str,
        override_system_prompt: Optional[str],
    ) -> tuple[Conversation, ProviderProfile, list[ContextMessage], Turn, Turn]:
        """Validation and initial persistence. Runs on the worker thread."""
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        if not conversation.model:
            raise ModelNotSetError(conversation_id)
        profile = self.profiles.get_profile(conversation.provider).snapshot()
        if not profile.is_configured:
            raise ProviderNotConfiguredError(conversation.provider)
        if self.store.generating_turns(conversation_id):
            raise GenerationInProgressError(conversation_id)

        # Prior turns are read before the new pair is inserted
        history = self._history_window(conversation_id, conversation.context_limit)
        system_prompt = override_system_prompt
        if not (system_prompt and system_prompt.strip()):
            system_prompt = conversation.system_prompt
        messages = build_context_messages(history, conversation.context_limit, system_prompt, api_text)

        user_turn = Turn(
            conversation_id=conversation_id,
            role=Role.USER,
            content=display_text,
        )
        self.store.insert_turn(user_turn)
        self.store.touch_conversation(conversation_id)

        assistant_turn = Turn(
            conversation_id=conversation_id,
            role=Role.ASSISTANT,
            generating=True,
            provider=conversation.provider,
            model=conversation.model,
        )
        self.store.insert_turn(assistant_turn)
        return conversation, profile, messages, user_turn, assistant_turn

    def _history_window(self, conversation_id: str, limit: int) -> list[Turn]:
        """
        Most recent turns, oldest first, holding at least `limit` eligible ones.

        Turns carrying an error do not count toward the limit, so the window
        widens until enough eligible turns are read or the history runs out.
        """
        if limit <= 0:
            return []
        fetch = limit
        while True:
            rows = self.store.recent_turns(conversation_id, fetch)
            eligible = sum(
                1 for turn in rows
                if turn.is_dialogue and not turn.has_error and not turn.generating
            )
            if eligible >= limit or len(rows) < fetch:
                return list(reversed(rows))
            fetch *= 2

    # ─────────────────────────────────────────────────────────────────
    # Event handling
    # ─────────────────────────────────────────────────────────────────

    async def _on_event(self, generation: Generation, event: StreamEvent) -> None:
        if generation.done:
            return
        if isinstance(event, Started):
            generation._deliver(Started(turn_id=generation.turn_id))
        elif isinstance(event, Chunk):
            await self._io(self.store.append_turn_content, generation.turn_id, event.text, None)
            generation._deliver(event)
        elif isinstance(event, Completed):
            await self._finish(generation, event)
        elif isinstance(event, Failed):
            await self._finish(generation, event)

    async def _finish(self, generation: Generation, event: StreamEvent) -> None:
        try:
            if isinstance(event, Completed):
                await self._io(self._persist_completed, generation.turn_id, generation.conversation_id, event)
                logger.info(
                    f"Completed turn {generation.turn_id}: {len(event.text)} chars, "
                    f"finish_reason={event.finish_reason}"
                )
            else:
                await self._io(self._persist_failed, generation.turn_id, event)
                if event.cancelled:
                    logger.warning(f"Cancelled turn {generation.turn_id} after {len(event.partial_text)} chars")
                else:
                    logger.warning(f"Failed turn {generation.turn_id}: {event.message}")
        except Exception as e:
            logger.exception(f"Could not finalize turn {generation.turn_id}")
            text = event.text if isinstance(event, Completed) else event.partial_text
            event = Failed(message=f"Storage error: {e}", partial_text=text)
        finally:
            self._release(generation)
        generation._deliver(event)

    def _persist_completed(self, turn_id: str, conversation_id: str, event: Completed) -> None:
        self.store.update_turn_content(turn_id, event.text)
        self.store.set_generating(turn_id, False)
        self.store.update_finish_reason(turn_id, event.finish_reason)
        self.store.update_token_usage(turn_id, event.usage)
        self.store.touch_conversation(conversation_id)

    def _persist_failed(self, turn_id: str, event: Failed) -> None:
        # partial_text covers a chunk whose append was interrupted by cancel()
        self.store.update_turn_content(turn_id, event.partial_text)
        self.store.set_error(turn_id, event.message, event.code)

    def _release(self, generation: Generation) -> None:
        if self._live.get(generation.conversation_id) is generation:
            del self._live[generation.conversation_id]

    def _on_task_done(self, generation: Generation, client: StreamingCompletionClient, task: asyncio.Task) -> None:
        self._release(generation)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Generation task for turn {generation.turn_id} raised: {task.exception()!r}")
        if not generation.done:
            logger.error(f"Generation for turn {generation.turn_id} ended without a terminal event")
            generation._deliver(Failed(message="Generation aborted", partial_text=client.text))

    # ─────────────────────────────────────────────────────────────────
    # Cancellation / shutdown
    # ─────────────────────────────────────────────────────────────────

    def cancel(self, conversation_id: str) -> bool:
        """Cancel the live generation of a conversation, if any."""
        generation = self._live.get(conversation_id)
        if generation is None:
            return False
        return generation.cancel()

    async def close(self) -> None:
        """Cancel live generations, wait for them to finalize, stop the worker."""
        if self._closed:
            return
        self._closed = True
        live = [g for g in self._live.values() if g is not None]
        for generation in live:
            generation.cancel()
        if live:
            await asyncio.gather(*(g.result() for g in live), return_exceptions=True)
        # Join the worker without blocking the event loop
        await asyncio.get_running_loop().run_in_executor(
            None, functools.partial(self._worker.shutdown, wait=True)
        )
