"""
database.py — async SQLite persistence via aiosqlite.

Tables:
  kv_entries   — namespaced key → JSON string store (links, agents, gateways)
  link_clicks  — one row per redirect, used for the local analytics reports
  api_keys     — provider credentials that override .env values

The DB file is created automatically on first run.
"""
from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiosqlite

logger = logging.getLogger(__name__)

# Store the DB in a dedicated data/ directory so Docker volume mounts work
# correctly (mount ./data:/app/data) and the file survives container restarts.
_DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
_DATA_DIR.mkdir(parents=True, exist_ok=True)

DB_PATH = str(_DATA_DIR / "shrty.db")
_lock = asyncio.Lock()          # serialise schema creation


# ── Schema ────────────────────────────────────────────────────────────────────

_SCHEMA = """
-- Generic key/value namespaces ("urls", "agents")
CREATE TABLE IF NOT EXISTS kv_entries (
    namespace  TEXT NOT NULL,
    key        TEXT NOT NULL,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (namespace, key)
);

-- Per-click analytics for the redirect handler
CREATE TABLE IF NOT EXISTS link_clicks (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    slug       TEXT    NOT NULL,
    url        TEXT    NOT NULL DEFAULT '',
    clicked_at TEXT    NOT NULL,
    country    TEXT    NOT NULL DEFAULT '',
    city       TEXT    NOT NULL DEFAULT '',
    user_agent TEXT    NOT NULL DEFAULT '',
    referrer   TEXT    NOT NULL DEFAULT '',
    ip         TEXT    NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_link_clicks_slug ON link_clicks (slug);
CREATE INDEX IF NOT EXISTS idx_link_clicks_at   ON link_clicks (clicked_at);

-- API keys that override .env values
CREATE TABLE IF NOT EXISTS api_keys (
    key_name   TEXT PRIMARY KEY,
    key_value  TEXT NOT NULL,
    updated_by TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL
);
"""


async def init_db() -> None:
    """Create tables if they don't exist. Safe to call multiple times."""
    async with _lock:
        async with aiosqlite.connect(DB_PATH) as db:
            await db.executescript(_SCHEMA)
            await db.commit()
    logger.info("Database initialised at %s", DB_PATH)


# ── Key/value namespaces ──────────────────────────────────────────────────────

async def kv_get(namespace: str, key: str) -> Optional[str]:
    """Return the stored string for key, or None if absent."""
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute(
            "SELECT value FROM kv_entries WHERE namespace = ? AND key = ?",
            (namespace, key),
        ) as cur:
            row = await cur.fetchone()
            return row[0] if row else None


async def kv_put(namespace: str, key: str, value: str) -> None:
    """Insert or replace a value."""
    now = datetime.now(timezone.utc).isoformat()
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute(
            """INSERT INTO kv_entries (namespace, key, value, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(namespace, key) DO UPDATE SET
                 value=excluded.value,
                 updated_at=excluded.updated_at""",
            (namespace, key, value, now),
        )
        await db.commit()


async def kv_delete(namespace: str, key: str) -> bool:
    async with aiosqlite.connect(DB_PATH) as db:
        cur = await db.execute(
            "DELETE FROM kv_entries WHERE namespace = ? AND key = ?", (namespace, key)
        )
        await db.commit()
        return cur.rowcount > 0


async def kv_list(namespace: str, prefix: str = "") -> list[str]:
    """
    Return every key in namespace starting with prefix, in key order.
    substr() is used instead of LIKE so '%' and '_' in a prefix match literally.
    """
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute(
            """SELECT key FROM kv_entries
               WHERE namespace = ? AND substr(key, 1, ?) = ?
               ORDER BY key""",
            (namespace, len(prefix), prefix),
        ) as cur:
            rows = await cur.fetchall()
    return [r[0] for r in rows]


async def kv_count(namespace: str) -> int:
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute(
            "SELECT COUNT(*) FROM kv_entries WHERE namespace = ?", (namespace,)
        ) as cur:
            return (await cur.fetchone())[0]


# ── Click analytics ───────────────────────────────────────────────────────────

async def log_click(
    slug: str,
    url: str,
    country: str = "",
    city: str = "",
    user_agent: str = "",
    referrer: str = "",
    ip: str = "",
) -> None:
    """Record a click on a short link."""
    now = datetime.now(timezone.utc).isoformat()
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute(
            """INSERT INTO link_clicks
                 (slug, url, clicked_at, country, city, user_agent, referrer, ip)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (slug, url, now, country, city, user_agent[:512], referrer[:512], ip),
        )
        await db.commit()


async def get_clicks_by_country(slug: str) -> list[dict]:
    """Return [{"country": ..., "total": n}, ...] for slug, busiest first."""
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute(
            """SELECT country, COUNT(*) AS total
               FROM link_clicks WHERE slug = ?
               GROUP BY country ORDER BY total DESC, country""",
            (slug,),
        ) as cur:
            rows = await cur.fetchall()
    return [{"country": r[0], "total": r[1]} for r in rows]



# ── API key operations ────────────────────────────────────────────────────────

async def get_api_key(key_name: str) -> Optional[str]:
    """Return DB-stored value for key_name, or None if not set."""
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute(
            "SELECT key_value FROM api_keys WHERE key_name = ?", (key_name,)
        ) as cur:
            row = await cur.fetchone()
            return row[0] if row else None


async def set_api_key(key_name: str, key_value: str, updated_by: str = "") -> None:
    """Insert or replace an API key in the DB."""
    now = datetime.now(timezone.utc).isoformat()
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute(
            """INSERT INTO api_keys (key_name, key_value, updated_by, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(key_name) DO UPDATE SET
                 key_value=excluded.key_value,
                 updated_by=excluded.updated_by,
                 updated_at=excluded.updated_at""",
            (key_name, key_value, updated_by, now),
        )
        await db.commit()


async def delete_api_key(key_name: str) -> None:
    """Remove a key from DB (falls back to the .env value)."""
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute("DELETE FROM api_keys WHERE key_name = ?", (key_name,))
        await db.commit()
