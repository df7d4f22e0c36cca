"""
Workers AI chat provider — Cloudflare's managed inference runtime.

Calls the REST form of the runtime:
  POST https://api.cloudflare.com/client/v4/accounts/{account}/ai/run/{model}
  {"messages": [...]}

The response is Cloudflare's standard envelope:
  {"result": {...}, "success": true, "errors": [], "messages": []}
Only "result" is returned, matching what the runtime itself produces.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp

import config
from providers.base import ChatProvider, Message, UpstreamFailure

logger = logging.getLogger(__name__)

_CF_API_BASE = "https://api.cloudflare.com/client/v4"


class WorkersAIProvider(ChatProvider):

    def __init__(self, account_id: str, api_token: str):
        self.name = "workers-ai"
        self._account_id = account_id
        self._api_token = api_token

    def run_url(self, model: str) -> str:
        # Model ids contain slashes ("@cf/meta/llama-3-8b-instruct"); the path keeps them
        return f"{_CF_API_BASE}/accounts/{self._account_id}/ai/run/{model}"

    async def send(self, model: str, messages: list[Message]) -> Any:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.run_url(model),
                    json={"messages": messages},
                    headers={"Authorization": f"Bearer {self._api_token}"},
                    timeout=aiohttp.ClientTimeout(total=config.PROVIDER_TIMEOUT),
                ) as resp:
                    status = resp.status
                    raw = await resp.text()
        except aiohttp.ClientError as exc:
            logger.warning("[workers-ai] %s request failed: %s", model, exc)
            raise UpstreamFailure(self.name, str(exc)) from exc
        except asyncio.TimeoutError as exc:
            logger.warning("[workers-ai] %s timed out", model)
            raise UpstreamFailure(self.name, f"{model} timed out") from exc

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.error("[workers-ai] Non-JSON response (%d): %s", status, raw[:300])
            raise UpstreamFailure(
                self.name, f"non-JSON response (HTTP {status})", status=status, detail=raw[:300],
            ) from exc

        if not isinstance(data, dict):
            raise UpstreamFailure(self.name, "unexpected response shape", status=status, detail=data)

        if status >= 400 or not data.get("success", False):
            logger.warning("[workers-ai] %s returned %d: %s", model, status, data.get("errors"))
            raise UpstreamFailure(
                self.name, f"{model} returned HTTP {status}", status=status, detail=data.get("errors"),
            )

        return data.get("result")
