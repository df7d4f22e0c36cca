"""
OpenAI chat provider — any model on api.openai.com/v1/chat/completions.

The request body is exactly {model, messages}. The response body is decoded
as JSON and returned as-is, without going through the SDK's response model,
so the router hands back exactly what the provider sent.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
import openai

import config
from providers.base import ChatProvider, Message, UpstreamFailure

logger = logging.getLogger(__name__)


class OpenAICompatibleProvider(ChatProvider):
    """Shared plumbing for OpenAI-shaped chat-completion APIs."""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        default_headers: Optional[dict[str, str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            default_headers=default_headers,
            timeout=config.PROVIDER_TIMEOUT,
            max_retries=0,      # failures surface to the caller as-is
            http_client=http_client,
        )

    async def send(self, model: str, messages: list[Message]) -> Any:
        try:
            raw = await self._client.chat.completions.with_raw_response.create(
                model=model,
                messages=messages,
            )
        except openai.APIStatusError as exc:
            logger.warning("[%s] %s returned %d", self.name, model, exc.status_code)
            raise UpstreamFailure(
                self.name,
                f"{model} returned HTTP {exc.status_code}",
                status=exc.status_code,
                detail=exc.body,
            ) from exc
        except openai.APIError as exc:
            # Connection errors and timeouts
            logger.warning("[%s] %s request failed: %s", self.name, model, exc)
            raise UpstreamFailure(self.name, str(exc)) from exc

        response = raw.http_response
        try:
            return response.json()
        except ValueError as exc:
            logger.error("[%s] Non-JSON response (%d): %s", self.name, response.status_code, response.text[:300])
            raise UpstreamFailure(
                self.name,
                f"non-JSON response (HTTP {response.status_code})",
                status=response.status_code,
                detail=response.text[:300],
            ) from exc


class OpenAIProvider(OpenAICompatibleProvider):

    def __init__(self, api_key: str, http_client: Optional[httpx.AsyncClient] = None):
        self.name = "openai"
        super().__init__(api_key, http_client=http_client)
