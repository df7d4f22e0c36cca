"""
Tests for analytics.py.

Covers:
  - record_click(): writes to the local table, never raises
  - clicks_by_country(): local fallback vs Cloudflare SQL API
  - SQL generation escapes quotes in slugs
  - query_clicks(): error statuses become AnalyticsError
"""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

import analytics
import config
import database as db


@pytest_asyncio.fixture(autouse=True)
async def init_db(tmp_data_dir):
    await db.init_db()


def mock_session(status: int, json_body=None, text: str = ""):
    mock_resp = MagicMock()
    mock_resp.status = status
    mock_resp.json = AsyncMock(return_value=json_body)
    mock_resp.text = AsyncMock(return_value=text)
    mock_resp.__aenter__ = AsyncMock(return_value=mock_resp)
    mock_resp.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.post = MagicMock(return_value=mock_resp)
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)
    return session


@pytest.fixture
def cloudflare(monkeypatch):
    monkeypatch.setattr(config, "CLOUDFLARE_ACCOUNT_ID", "acct-1")
    monkeypatch.setenv("CLOUDFLARE_API_TOKEN", "cf-token")


# ── record_click ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestRecordClick:
    async def test_writes_row(self):
        await analytics.record_click("abc", "https://e.com", country="FR")
        assert await db.get_clicks_by_country("abc") == [{"country": "FR", "total": 1}]

    async def test_db_failure_is_logged_not_raised(self, caplog):
        with patch("analytics.db.log_click", new_callable=AsyncMock, side_effect=RuntimeError("disk full")):
            await analytics.record_click("abc", "https://e.com")
        assert "disk full" in caplog.text


# ── SQL ───────────────────────────────────────────────────────────────────────

class TestSql:
    def test_plain_slug(self):
        sql = analytics.clicks_by_country_sql("docs")
        assert "WHERE blob1 = 'docs'" in sql
        assert "GROUP BY country" in sql

    def test_quotes_escaped(self):
        sql = analytics.clicks_by_country_sql("x' OR '1'='1")
        assert "blob1 = 'x\\' OR \\'1\\'=\\'1'" in sql


# ── clicks_by_country ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestClicksByCountry:
    async def test_local_when_cloudflare_not_configured(self):
        await db.log_click("abc", "https://e.com", country="US")
        with patch("analytics.aiohttp.ClientSession") as session_cls:
            rows = await analytics.clicks_by_country("abc")
        assert rows == [{"country": "US", "total": 1}]
        session_cls.assert_not_called()

    async def test_external_when_configured(self, cloudflare):
        session = mock_session(200, {"data": [{"country": "US", "total": "7"}], "rows": 1})
        with patch("analytics.aiohttp.ClientSession", return_value=session):
            rows = await analytics.clicks_by_country("abc")

        assert rows == [{"country": "US", "total": "7"}]
        args, kwargs = session.post.call_args
        assert args[0] == "https://api.cloudflare.com/client/v4/accounts/acct-1/analytics_engine/sql"
        assert kwargs["headers"]["Authorization"] == "Bearer cf-token"
        assert b"blob1 = 'abc'" in kwargs["data"]

    async def test_external_error_status(self, cloudflare):
        session = mock_session(403, text="forbidden")
        with patch("analytics.aiohttp.ClientSession", return_value=session):
            with pytest.raises(analytics.AnalyticsError) as exc_info:
                await analytics.clicks_by_country("abc")
        assert exc_info.value.status == 403

    async def test_external_non_json_body(self, cloudflare):
        session = mock_session(200)
        session.post.return_value.json = AsyncMock(
            side_effect=json.JSONDecodeError("Expecting value", "<html>", 0),
        )
        with patch("analytics.aiohttp.ClientSession", return_value=session):
            with pytest.raises(analytics.AnalyticsError, match="non-JSON"):
                await analytics.clicks_by_country("abc")

    async def test_query_without_configuration(self):
        with pytest.raises(analytics.AnalyticsError, match="not configured"):
            await analytics.query_clicks("SELECT 1")
