"""
ModelCatalog - discover the models a provider exposes.

Discovery outcomes are kept distinct:
- success with ids     -> list of ids
- success, zero ids    -> [] ("no models found", not an error)
- network/HTTP/decode  -> TransportError / ProtocolError / DecodeError

list_models_with_fallback() folds errors into a ModelListing so callers can
show cached choices instead of a failure.

Usage:
    catalog = ModelCatalog()
    models = await catalog.list_models(profile)
"""

import json
import logging
from typing import Optional

import httpx
from pydantic import BaseModel, Field

from chatstream.adapters.registry import get_adapter
from chatstream.config import ProviderProfile, get_models_timeout
from chatstream.errors import ChatStreamError, DecodeError, ProtocolError, TransportError

logger = logging.getLogger(__name__)


class ModelListing(BaseModel):
    """Result of a discovery attempt with fallback applied."""
    models: list[str] = Field(default_factory=list)
    from_fallback: bool = False
    error: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.models


def _dedupe(model_ids: list[str]) -> list[str]:
    seen = set()
    result = []
    for model_id in model_ids:
        if model_id not in seen:
            seen.add(model_id)
            result.append(model_id)
    return result


class ModelCatalog:
    """
    Fetches model lists through the provider's adapter.

    Args:
        timeout_seconds: Per-request timeout (defaults to env configuration)
        http_client: Optional shared httpx.AsyncClient; one is created per
            call when omitted
    """

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._timeout = timeout_seconds if timeout_seconds is not None else get_models_timeout()
        self._http_client = http_client

    async def list_models(self, profile: ProviderProfile) -> list[str]:
        """
        Return the model ids usable with `profile`, in provider order.

        Raises:
            TransportError: connect failure or timeout
            ProtocolError: non-2xx status
            DecodeError: body is not JSON
        """
        adapter = get_adapter(profile)
        request = adapter.build_models_request(profile)
        if request is None:
            return adapter.static_models()

        logger.debug(f"Fetching models for {profile.provider} from {request.url}")
        try:
            if self._http_client is not None:
                response = await self._http_client.request(
                    request.method, request.url,
                    headers=request.headers, params=request.params or None,
                    timeout=self._timeout,
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(
                        request.method, request.url,
                        headers=request.headers, params=request.params or None,
                    )
        except httpx.TimeoutException as e:
            raise TransportError(f"Timed out fetching models for {profile.provider}: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Network error fetching models for {profile.provider}: {e}") from e

        if not response.is_success:
            raise ProtocolError(response.status_code, response.text)

        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodeError(f"Model list for {profile.provider} is not valid JSON") from e

        models = _dedupe(adapter.parse_models_response(data))
        logger.debug(f"{profile.provider}: {len(models)} models")
        return models

    async def list_models_with_fallback(
        self,
        profile: ProviderProfile,
        cached: Optional[list[str]] = None,
    ) -> ModelListing:
        """
        Discover models, falling back to cached/default choices on error.

        Fallback order: `cached`, then the profile's cached_models, then the
        provider's static list.
        """
        try:
            models = await self.list_models(profile)
        except ChatStreamError as e:
            logger.warning(f"Model discovery failed for {profile.provider}: {e.message}")
            fallback = cached or profile.cached_models or get_adapter(profile).static_models()
            return ModelListing(models=list(fallback), from_fallback=True, error=e.message)
        return ModelListing(models=models)
