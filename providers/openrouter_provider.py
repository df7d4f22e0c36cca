"""
OpenRouter chat provider — access hundreds of AI models through one API.

OpenRouter (https://openrouter.ai) is an OpenAI-compatible gateway, so this
reuses the OpenAI SDK pointed at a different base URL.

OpenRouter model IDs look like: "openai/gpt-4o", "anthropic/claude-3-haiku",
"meta-llama/llama-3.1-70b-instruct", etc.
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from providers.openai_provider import OpenAICompatibleProvider

logger = logging.getLogger(__name__)

_OR_BASE_URL = "https://openrouter.ai/api/v1"


class OpenRouterProvider(OpenAICompatibleProvider):

    def __init__(self, api_key: str, http_client: Optional[httpx.AsyncClient] = None):
        self.name = "openrouter"
        super().__init__(
            api_key,
            base_url=_OR_BASE_URL,
            # Attribution headers shown on the OpenRouter dashboard
            default_headers={
                "HTTP-Referer": "https://shrty.dev",
                "X-Title":      "shrty",
            },
            http_client=http_client,
        )
