"""
Tests for key_store.py.

Covers:
  - get(): DB first → env var fallback → None
  - set(): saves to DB, overrides env
  - delete(): removes from DB, falls back to env
  - get_all_keys(): returns all known key names
  - mask(): various masking scenarios
"""
from __future__ import annotations

import pytest
import pytest_asyncio

import database as db
import key_store


@pytest_asyncio.fixture(autouse=True)
async def init_db(tmp_data_dir):
    await db.init_db()


# ── get() ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestGet:
    async def test_db_value_wins_over_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        await db.set_api_key("openai_api_key", "sk-db")
        result = await key_store.get("openai_api_key")
        assert result == "sk-db"

    async def test_env_var_used_as_fallback(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "or-from-env")
        result = await key_store.get("openrouter_api_key")
        assert result == "or-from-env"

    async def test_returns_none_when_not_set(self):
        result = await key_store.get("openai_api_key")
        assert result is None

    async def test_env_var_name_is_uppercased(self, monkeypatch):
        monkeypatch.setenv("CLOUDFLARE_API_TOKEN", "cf-token")
        result = await key_store.get("cloudflare_api_token")
        assert result == "cf-token"


# ── set() / delete() ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestSetAndDelete:
    async def test_saves_to_db(self):
        await key_store.set("openai_api_key", "sk-test", updated_by="ops")
        assert await db.get_api_key("openai_api_key") == "sk-test"

    async def test_overrides_env_value(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        await key_store.set("openai_api_key", "sk-db")
        assert await key_store.get("openai_api_key") == "sk-db"

    async def test_falls_back_to_env_after_delete(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env-fallback")
        await key_store.set("openai_api_key", "sk-db")
        await key_store.delete("openai_api_key")
        assert await key_store.get("openai_api_key") == "sk-env-fallback"


# ── get_all_keys() ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestGetAllKeys:
    async def test_returns_all_known_keys(self):
        keys = await key_store.get_all_keys()
        assert set(keys) == {"openai_api_key", "openrouter_api_key", "cloudflare_api_token"}

    async def test_set_key_appears_in_get_all(self):
        await key_store.set("openrouter_api_key", "or-all-test")
        keys = await key_store.get_all_keys()
        assert keys["openrouter_api_key"] == "or-all-test"


# ── mask() ────────────────────────────────────────────────────────────────────

class TestMask:
    def test_none_shows_not_set(self):
        assert key_store.mask(None) == "not set"

    def test_short_key_fully_hidden(self):
        assert key_store.mask("sk-ab") == "****"

    def test_long_key_shows_ends_only(self):
        result = key_store.mask("sk-1234567890abcdef")
        assert result.startswith("sk-1")
        assert result.endswith("cdef")
        assert "567890" not in result
