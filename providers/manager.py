"""
Provider Manager — builds the provider-tag → ChatProvider table.

Keys are read from key_store (DB → .env fallback). A provider whose
credentials are missing is simply left out of the table; agents bound to it
then fail with UnsupportedProvider instead of making an unauthenticated call.

Tags (stored on every agent record):
  workers-ai   — Cloudflare Workers AI (needs CLOUDFLARE_ACCOUNT_ID + cloudflare_api_token)
  openrouter   — OpenRouter             (needs openrouter_api_key)
  openai       — OpenAI                 (needs openai_api_key)
"""
from __future__ import annotations

import logging

import config
from providers.base import ChatProvider

logger = logging.getLogger(__name__)

PROVIDER_TAGS = ("workers-ai", "openrouter", "openai")

# Module-level cache — reset_providers() clears it after a key change
_providers: dict[str, ChatProvider] = {}


async def _build_providers() -> dict[str, ChatProvider]:
    """Instantiate every provider whose credentials are available."""
    import key_store
    providers: dict[str, ChatProvider] = {}

    # ── Workers AI ────────────────────────────────────────────────────────────
    cf_token = await key_store.get("cloudflare_api_token")
    if cf_token and config.CLOUDFLARE_ACCOUNT_ID:
        from providers.workers_ai_provider import WorkersAIProvider
        providers["workers-ai"] = WorkersAIProvider(config.CLOUDFLARE_ACCOUNT_ID, cf_token)
    elif cf_token:
        logger.info("Skipped provider workers-ai (CLOUDFLARE_ACCOUNT_ID not set)")

    # ── OpenRouter ────────────────────────────────────────────────────────────
    or_key = await key_store.get("openrouter_api_key")
    if or_key:
        from providers.openrouter_provider import OpenRouterProvider
        providers["openrouter"] = OpenRouterProvider(or_key)

    # ── OpenAI ────────────────────────────────────────────────────────────────
    openai_key = await key_store.get("openai_api_key")
    if openai_key:
        from providers.openai_provider import OpenAIProvider
        providers["openai"] = OpenAIProvider(openai_key)

    for tag in PROVIDER_TAGS:
        if tag in providers:
            logger.info("Loaded provider: %s", tag)
        else:
            logger.info("Provider %s unavailable (no credentials)", tag)

    if not providers:
        logger.warning("No chat providers configured — agent chat will be unavailable.")

    return providers


async def get_providers() -> dict[str, ChatProvider]:
    global _providers
    if not _providers:
        _providers = await _build_providers()
    return _providers


def reset_providers() -> None:
    """Forget the cached table so the next get_providers() re-reads keys."""
    global _providers
    _providers = {}
