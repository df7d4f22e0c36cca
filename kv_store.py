"""
kv_store.py — a key/value namespace over the kv_entries table.

Values are opaque strings (callers store JSON). The interface is the minimal
get / put / list / delete contract the link and agent code relies on:
  get(key)      → str | None
  put(key, val) → None
  list(prefix)  → [key, ...] in key order
"""
from __future__ import annotations

from typing import Optional

import database as db

URLS = "urls"
AGENTS = "agents"


class KVNamespace:
    """One named collection of string values."""

    def __init__(self, namespace: str):
        self.namespace = namespace

    async def get(self, key: str) -> Optional[str]:
        return await db.kv_get(self.namespace, key)

    async def put(self, key: str, value: str) -> None:
        await db.kv_put(self.namespace, key, value)

    async def list(self, prefix: str = "") -> list[str]:
        return await db.kv_list(self.namespace, prefix)

    async def delete(self, key: str) -> bool:
        return await db.kv_delete(self.namespace, key)

    async def count(self) -> int:
        return await db.kv_count(self.namespace)

    def __repr__(self) -> str:
        return f"KVNamespace({self.namespace!r})"
