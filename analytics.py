"""
analytics.py — click recording and per-country reports.

Every redirect is logged to the local link_clicks table. Reports come from
one of two places:
  1. Cloudflare Analytics Engine SQL API  (CLOUDFLARE_ACCOUNT_ID + cloudflare_api_token set)
  2. The local link_clicks table          (always available)

The external dataset is expected to follow the edge tracker's layout:
blob1 = slug, blob4 = country.
"""
from __future__ import annotations

import logging
from typing import Optional

import aiohttp

import config
import database as db
import key_store

logger = logging.getLogger(__name__)

_SQL_API = "https://api.cloudflare.com/client/v4/accounts/{account}/analytics_engine/sql"


class AnalyticsError(Exception):
    """The external analytics API refused or failed the query."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


# ── Recording ─────────────────────────────────────────────────────────────────

async def record_click(
    slug: str,
    url: str,
    country: str = "",
    city: str = "",
    user_agent: str = "",
    referrer: str = "",
    ip: str = "",
) -> None:
    """Log one click. Runs as a background task, so it logs its own failures."""
    try:
        await db.log_click(
            slug=slug,
            url=url,
            country=country,
            city=city,
            user_agent=user_agent,
            referrer=referrer,
            ip=ip,
        )
    except Exception as exc:
        logger.error("Failed to record click on %s: %s", slug, exc)


# ── Reports ───────────────────────────────────────────────────────────────────

def _quote(value: str) -> str:
    """Single-quote a string literal for the Analytics Engine SQL dialect."""
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def clicks_by_country_sql(slug: str) -> str:
    return (
        "SELECT blob4 AS country, COUNT() AS total "
        "FROM link_clicks "
        f"WHERE blob1 = {_quote(slug)} "
        "GROUP BY country"
    )


async def query_clicks(sql: str) -> list[dict]:
    """POST raw SQL to the Analytics Engine API and return its "data" rows."""
    token = await key_store.get("cloudflare_api_token")
    if not token or not config.CLOUDFLARE_ACCOUNT_ID:
        raise AnalyticsError("Cloudflare analytics is not configured")

    logger.debug("Analytics SQL: %s", sql)
    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                _SQL_API.format(account=config.CLOUDFLARE_ACCOUNT_ID),
                data=sql.encode("utf-8"),
                headers={"Authorization": f"Bearer {token}"},
                timeout=aiohttp.ClientTimeout(total=config.PROVIDER_TIMEOUT),
            ) as resp:
                if resp.status != 200:
                    body = (await resp.text())[:300]
                    logger.warning("Analytics API returned %d: %s", resp.status, body)
                    raise AnalyticsError(f"Analytics API returned {resp.status}", status=resp.status)
                payload = await resp.json(content_type=None)
    except aiohttp.ClientError as exc:
        logger.warning("Analytics API error: %s", exc)
        raise AnalyticsError(str(exc)) from exc
    except ValueError as exc:
        logger.warning("Analytics API returned a non-JSON body: %s", exc)
        raise AnalyticsError("Analytics API returned a non-JSON body", status=200) from exc

    return payload.get("data", []) if isinstance(payload, dict) else []


async def external_analytics_enabled() -> bool:
    return bool(config.CLOUDFLARE_ACCOUNT_ID and await key_store.get("cloudflare_api_token"))


async def clicks_by_country(slug: str) -> list[dict]:
    """[{"country": "US", "total": 12}, ...] for one slug."""
    if await external_analytics_enabled():
        return await query_clicks(clicks_by_country_sql(slug))
    return await db.get_clicks_by_country(slug)
