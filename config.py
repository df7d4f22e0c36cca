"""
Central configuration — reads from .env file.

API keys are not read here: they go through key_store.py so a key stored in
the database wins over the .env value (see key_store for the name mapping).

Tests monkeypatch the module attributes below directly, so all code must read
config.X at call time rather than copying values at import.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# ── Auth ──────────────────────────────────────────────────────────────────────
# HMAC secret for the HS256 tokens guarding /api/*.
# Leave unset only in local development: every /api call will then be refused.
JWT_SECRET: str | None = os.getenv("JWT_SECRET") or None
JWT_ALGORITHM: str     = "HS256"

# ── HTTP server ───────────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8787"))

# ── Agents ────────────────────────────────────────────────────────────────────
# Deployed agents get https://agent-<id>.<CUSTOM_DOMAIN>
CUSTOM_DOMAIN: str | None = os.getenv("CUSTOM_DOMAIN", "").strip() or None
DEFAULT_AGENT_DOMAIN: str = "shrty.dev"

# Upper bound (seconds) on any single chat-provider or analytics call.
PROVIDER_TIMEOUT: float = float(os.getenv("PROVIDER_TIMEOUT", "60"))

# ── Cloudflare (Workers AI + Analytics Engine) ────────────────────────────────
# The API token itself is read via key_store("cloudflare_api_token").
CLOUDFLARE_ACCOUNT_ID: str | None = os.getenv("CLOUDFLARE_ACCOUNT_ID", "").strip() or None
