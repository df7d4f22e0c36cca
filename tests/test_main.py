"""
Tests for main.py's command line.

Covers:
  - argument parsing: serve by default, only known key names accepted
  - `keys set` / `keys delete` / `keys list` against the api_keys table,
    with values masked in the output
"""
from __future__ import annotations

import pytest

import database as db
import key_store


@pytest.fixture
def main_mod():
    # Imported late so its log file lands in the per-test DATA_DIR
    import main
    return main


class TestParseArgs:
    def test_no_command_means_serve(self, main_mod):
        assert main_mod.parse_args([]).command is None

    def test_set_arguments(self, main_mod):
        args = main_mod.parse_args(["keys", "set", "openai_api_key", "sk-1", "--by", "ops"])
        assert (args.command, args.action, args.name, args.value, args.by) == (
            "keys", "set", "openai_api_key", "sk-1", "ops",
        )

    def test_unknown_key_name_rejected(self, main_mod):
        with pytest.raises(SystemExit):
            main_mod.parse_args(["keys", "set", "aws_secret", "x"])

    def test_keys_needs_an_action(self, main_mod):
        with pytest.raises(SystemExit):
            main_mod.parse_args(["keys"])


@pytest.mark.asyncio
class TestKeysCommand:
    async def test_set_stores_key_and_prints_it_masked(self, main_mod, capsys):
        args = main_mod.parse_args(["keys", "set", "openai_api_key", "sk-1234567890abcdef"])
        await main_mod.manage_keys(args)

        assert await key_store.get("openai_api_key") == "sk-1234567890abcdef"
        out = capsys.readouterr().out
        assert "openai_api_key" in out
        assert "sk-1" in out
        assert "sk-1234567890abcdef" not in out
        assert "Restart the server" in out

    async def test_delete_falls_back_to_env(self, main_mod, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env-value-1234")
        await db.init_db()
        await key_store.set("openai_api_key", "sk-db-value-5678")

        await main_mod.manage_keys(main_mod.parse_args(["keys", "delete", "openai_api_key"]))

        assert await db.get_api_key("openai_api_key") is None
        assert await key_store.get("openai_api_key") == "sk-env-value-1234"

    async def test_list_shows_every_known_key(self, main_mod, capsys):
        await main_mod.manage_keys(main_mod.parse_args(["keys", "list"]))
        out = capsys.readouterr().out
        for name in key_store.KNOWN_KEYS:
            assert name in out
        assert "not set" in out
        assert "Restart the server" not in out
