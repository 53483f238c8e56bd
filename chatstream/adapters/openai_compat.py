"""
OpenAICompatibleAdapter - the reference ProviderAdapter.

Covers OpenAI, Groq, Mistral, Perplexity, xAI, DeepSeek, SiliconFlow,
LM Studio and any custom endpoint that speaks the /chat/completions shape.
Also understands the "responses" envelope some deployments use instead.
"""

import json
import logging
from typing import Any, Optional

from chatstream.adapters.base import ProviderFamily
from chatstream.adapters.schema import (
    ChunkDelta,
    CompletionParams,
    CompletionResult,
    ContextMessage,
    PreparedRequest,
)
from chatstream.adapters.urls import completion_url, is_openrouter, models_url
from chatstream.config import APP_NAME, APP_URL, ApiMode, ProviderProfile, TokenUsage
from chatstream.errors import DecodeError, InvalidResponseError

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data: "
SSE_DONE = "[DONE]"


def parse_usage(data: Any) -> Optional[TokenUsage]:
    """
    Read a usage object in either spelling.

    Chat completions report prompt_tokens/completion_tokens, the responses
    envelope reports input_tokens/output_tokens. A missing total is summed.
    """
    if not isinstance(data, dict):
        return None
    input_tokens = data.get("prompt_tokens", data.get("input_tokens"))
    output_tokens = data.get("completion_tokens", data.get("output_tokens"))
    total_tokens = data.get("total_tokens")
    if input_tokens is None and output_tokens is None and total_tokens is None:
        return None
    if total_tokens is None and input_tokens is not None and output_tokens is not None:
        total_tokens = input_tokens + output_tokens
    return TokenUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=total_tokens,
    )


def _first_choice(data: dict) -> Optional[dict]:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    choice = choices[0]
    return choice if isinstance(choice, dict) else None


class OpenAICompatibleAdapter:
    """
    OpenAI-compatible implementation of the ProviderAdapter protocol.

    Subclasses override URL construction or model discovery; request bodies
    and stream decoding are shared by every family that reaches this code.
    """

    family = ProviderFamily.OPENAI_COMPATIBLE

    # ─────────────────────────────────────────────────────────────────
    # Completion requests
    # ─────────────────────────────────────────────────────────────────

    def completion_url(self, profile: ProviderProfile) -> str:
        return completion_url(profile.resolved_base_url, profile.api_path, profile.api_mode)

    def auth_headers(self, profile: ProviderProfile, url: str) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if profile.api_key:
            headers["Authorization"] = f"Bearer {profile.api_key}"
        # OpenRouter app identification
        if is_openrouter(url):
            headers["HTTP-Referer"] = APP_URL
            headers["X-Title"] = APP_NAME
        return headers

    def build_completion_request(
        self,
        profile: ProviderProfile,
        messages: list[ContextMessage],
        params: CompletionParams,
    ) -> PreparedRequest:
        url = self.completion_url(profile)
        return PreparedRequest(
            method="POST",
            url=url,
            headers=self.auth_headers(profile, url),
            body=self.build_body(profile.api_mode, messages, params),
        )

    def build_body(
        self,
        mode: ApiMode,
        messages: list[ContextMessage],
        params: CompletionParams,
    ) -> dict:
        entries = [{"role": m.role, "content": m.content} for m in messages]
        if mode == ApiMode.RESPONSES:
            body = {"model": params.model, "input": entries, "stream": params.stream}
            if params.max_tokens is not None:
                body["max_output_tokens"] = params.max_tokens
        else:
            body = {"model": params.model, "messages": entries, "stream": params.stream}
            if params.max_tokens is not None:
                body["max_tokens"] = params.max_tokens
        if params.temperature is not None:
            body["temperature"] = params.temperature
        if params.top_p is not None:
            body["top_p"] = params.top_p
        return body

    # ─────────────────────────────────────────────────────────────────
    # Response decoding
    # ─────────────────────────────────────────────────────────────────

    def parse_streaming_chunk(self, line: str) -> Optional[ChunkDelta]:
        if not line.startswith(SSE_DATA_PREFIX):
            return None
        data = line[len(SSE_DATA_PREFIX):].strip()
        if data == SSE_DONE:
            return ChunkDelta(done=True)
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError as e:
            raise DecodeError(f"Malformed stream chunk: {data[:200]}") from e
        if not isinstance(chunk, dict):
            raise DecodeError(f"Stream chunk is not an object: {data[:200]}")

        if "type" in chunk and "choices" not in chunk:
            return self._responses_event(chunk)

        delta = ChunkDelta(usage=parse_usage(chunk.get("usage")))
        choice = _first_choice(chunk)
        if choice is not None:
            content = None
            delta_obj = choice.get("delta")
            if isinstance(delta_obj, dict):
                content = delta_obj.get("content")
            elif isinstance(choice.get("message"), dict):
                content = choice["message"].get("content")
            if isinstance(content, str) and content:
                delta.text = content
            if choice.get("finish_reason"):
                delta.finish_reason = choice["finish_reason"]
        return delta

    def _responses_event(self, event: dict) -> ChunkDelta:
        event_type = event.get("type", "")
        if event_type == "response.output_text.delta":
            text = event.get("delta")
            return ChunkDelta(text=text if isinstance(text, str) and text else None)
        if event_type in ("response.completed", "response.incomplete"):
            response = event.get("response") or {}
            reason = response.get("status")
            details = response.get("incomplete_details")
            if isinstance(details, dict) and details.get("reason"):
                reason = details["reason"]
            return ChunkDelta(finish_reason=reason, usage=parse_usage(response.get("usage")))
        return ChunkDelta()

    def parse_non_streaming_response(self, body: Any) -> CompletionResult:
        if isinstance(body, (str, bytes)):
            try:
                body = json.loads(body)
            except json.JSONDecodeError as e:
                raise InvalidResponseError("Response body is not valid JSON") from e
        if not isinstance(body, dict):
            raise InvalidResponseError("Response body is not a JSON object")

        if "output" in body or "output_text" in body:
            return self._parse_responses_body(body)

        choice = _first_choice(body)
        message = choice.get("message") if choice else None
        if not isinstance(message, dict):
            raise InvalidResponseError("Response has no choices[0].message")
        return CompletionResult(
            text=message.get("content") or "",
            finish_reason=choice.get("finish_reason"),
            usage=parse_usage(body.get("usage")),
        )

    def _parse_responses_body(self, body: dict) -> CompletionResult:
        text = body.get("output_text")
        if not isinstance(text, str):
            parts = []
            for item in body.get("output") or []:
                if not isinstance(item, dict):
                    continue
                for content in item.get("content") or []:
                    if isinstance(content, dict) and isinstance(content.get("text"), str):
                        parts.append(content["text"])
            if not parts and not body.get("output"):
                raise InvalidResponseError("Response has no output")
            text = "".join(parts)
        return CompletionResult(
            text=text,
            finish_reason=body.get("status"),
            usage=parse_usage(body.get("usage")),
        )

    # ─────────────────────────────────────────────────────────────────
    # Model discovery
    # ─────────────────────────────────────────────────────────────────

    def build_models_request(self, profile: ProviderProfile) -> Optional[PreparedRequest]:
        url = models_url(profile.resolved_base_url)
        headers = {}
        if profile.api_key:
            headers["Authorization"] = f"Bearer {profile.api_key}"
        return PreparedRequest(method="GET", url=url, headers=headers)

    def parse_models_response(self, data: Any) -> list[str]:
        if not isinstance(data, dict):
            return []
        if isinstance(data.get("data"), list):
            entries, keys = data["data"], ("id",)
        elif isinstance(data.get("models"), list):
            entries, keys = data["models"], ("id", "name")
        else:
            logger.debug(f"Unrecognized model list shape: {list(data.keys())}")
            return []

        model_ids = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            for key in keys:
                value = entry.get(key)
                if isinstance(value, str) and value:
                    model_ids.append(value)
                    break
        return model_ids

    def static_models(self) -> list[str]:
        return []
