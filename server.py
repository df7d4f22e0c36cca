"""
server.py — the shrty HTTP service (aiohttp).

Endpoints:
  GET    /health                      → plain-text health check
  POST   /tmp/token                   → sign the posted JSON as a JWT
  POST   /api/url                     → create / override a shorty
  POST   /api/url/enhanced            → shorty with expiry, password, custom domain (plan-gated)
  POST   /api/report/{slug}           → clicks per country for a slug
  POST   /api/agents/deploy           → deploy an AI agent (pro and above)
  GET    /api/agents                  → the caller's agents
  GET    /api/agents/{agent_id}       → one agent
  DELETE /api/agents/{agent_id}       → deactivate one of the caller's agents
  POST   /api/agents/{agent_id}/chat  → chat with an agent, provider reply passed through
  GET    /{slug}                      → 302 redirect (logs click)

Everything under /api/ requires a bearer JWT (see auth.py).
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from aiohttp import web

import analytics
import auth
import config
import links
from agent_service import (
    AgentDeploymentConfig,
    AgentService,
    CorruptRecord,
    GatewayMissing,
    AgentNotFound,
    UnsupportedProvider,
)
from kv_store import AGENTS, URLS, KVNamespace
from plans import Feature, PlanRegistry, PlanRestriction
from providers.base import ChatProvider, UpstreamFailure

logger = logging.getLogger(__name__)

PLANS_KEY         = web.AppKey("plans", PlanRegistry)
AGENT_SERVICE_KEY = web.AppKey("agent_service", AgentService)
URLS_KEY          = web.AppKey("urls", KVNamespace)
CLICK_TASKS_KEY   = web.AppKey("click_tasks", set)


# ── Helpers ────────────────────────────────────────────────────────────────────

def _error(message: str, status: int, **extra: Any) -> web.Response:
    return web.json_response({"error": message, **extra}, status=status)


async def _json_body(request: web.Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Request body must be valid JSON"}),
            content_type="application/json",
        )


def _json_object(body: Any) -> dict:
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Request body must be a JSON object"}),
            content_type="application/json",
        )
    return body


# ── Token ──────────────────────────────────────────────────────────────────────

async def handle_token(request: web.Request) -> web.Response:
    payload = _json_object(await _json_body(request))
    try:
        token = auth.sign_token(payload)
    except auth.AuthError as exc:
        return _error(str(exc), 503)
    return web.json_response({"token": token})


# ── Links ──────────────────────────────────────────────────────────────────────

async def handle_add_url(request: web.Request) -> web.Response:
    payload = _json_object(await _json_body(request))
    try:
        result = await links.add_url(
            request.app[URLS_KEY],
            payload.get("slug"),
            payload.get("url"),
            payload.get("override", False),
        )
    except ValueError as exc:
        return _error(str(exc), 400)
    return web.json_response(result)


async def handle_add_enhanced_url(request: web.Request) -> web.Response:
    payload = _json_object(await _json_body(request))
    plans = request.app[PLANS_KEY]
    tier = auth.caller_tier(request)

    if payload.get("password") and not plans.can_use_feature(tier, Feature.PASSWORD_PROTECTION):
        return _error("Password protection requires Basic plan or higher", 403)
    if payload.get("customDomain") and not plans.can_use_feature(tier, Feature.CUSTOM_DOMAINS):
        return _error("Custom domains require Basic plan or higher", 403)

    try:
        result = await links.create_enhanced_url(
            request.app[URLS_KEY],
            payload.get("slug"),
            payload.get("url"),
            override=payload.get("override", False),
            expires_at=payload.get("expiresAt"),
            password=payload.get("password"),
            custom_domain=payload.get("customDomain"),
            user_id=payload.get("userId") or auth.caller_id(request),
        )
    except ValueError as exc:
        return _error(str(exc), 400)
    return web.json_response(result)


async def handle_report(request: web.Request) -> web.Response:
    slug = request.match_info["slug"]
    try:
        rows = await analytics.clicks_by_country(slug)
    except analytics.AnalyticsError as exc:
        return _error("Analytics query failed", 502, detail=str(exc))
    return web.json_response(rows)


# ── Agents ─────────────────────────────────────────────────────────────────────

async def handle_deploy_agent(request: web.Request) -> web.Response:
    tier = auth.caller_tier(request)
    try:
        request.app[PLANS_KEY].require(tier, Feature.AI_AGENT_DEPLOYMENT)
    except PlanRestriction:
        return _error(
            "AI Agent deployment requires Pro plan or higher", 403, upgradeUrl="/pricing",
        )

    user_id = auth.caller_id(request)
    if not user_id:
        return _error("User ID required", 401)

    try:
        cfg = AgentDeploymentConfig.from_dict(await _json_body(request))
    except ValueError as exc:
        return _error(str(exc), 400)

    try:
        agent = await request.app[AGENT_SERVICE_KEY].deploy_agent(cfg, user_id)
    except Exception:
        logger.exception("Agent deployment failed for user %s", user_id)
        return _error("Failed to deploy agent", 500)

    return web.json_response({
        "success":       True,
        "agent":         agent.to_dict(),
        "deploymentUrl": agent.deployment_url,
        "endpoint":      agent.endpoint,
    })


async def handle_list_agents(request: web.Request) -> web.Response:
    user_id = auth.caller_id(request)
    if not user_id:
        return _error("User ID required", 401)
    try:
        agents = await request.app[AGENT_SERVICE_KEY].get_user_agents(user_id)
    except CorruptRecord as exc:
        return _error(str(exc), 500)
    return web.json_response({"agents": [a.to_dict() for a in agents]})


async def handle_get_agent(request: web.Request) -> web.Response:
    agent_id = request.match_info["agent_id"]
    try:
        agent = await request.app[AGENT_SERVICE_KEY].get_agent(agent_id)
    except CorruptRecord as exc:
        return _error(str(exc), 500)
    if agent is None:
        return _error("Agent not found", 404)
    return web.json_response({"agent": agent.to_dict()})


async def handle_deactivate_agent(request: web.Request) -> web.Response:
    user_id = auth.caller_id(request)
    if not user_id:
        return _error("User ID required", 401)
    agent_id = request.match_info["agent_id"]
    try:
        agent = await request.app[AGENT_SERVICE_KEY].deactivate_agent(agent_id, user_id)
    except AgentNotFound:
        return _error("Agent not found", 404)
    except CorruptRecord as exc:
        return _error(str(exc), 500)
    return web.json_response({"success": True, "agent": agent.to_dict()})


async def handle_chat(request: web.Request) -> web.Response:
    agent_id = request.match_info["agent_id"]
    payload = _json_object(await _json_body(request))
    messages = payload.get("messages")
    if not isinstance(messages, list) or not all(isinstance(m, dict) for m in messages):
        return _error("messages must be a list of message objects", 400)

    try:
        response = await request.app[AGENT_SERVICE_KEY].chat_with_agent(agent_id, messages)
    except AgentNotFound as exc:
        return _error(str(exc), 404)
    except GatewayMissing as exc:
        return _error(str(exc), 409)
    except UnsupportedProvider as exc:
        return _error(str(exc), 400)
    except UpstreamFailure as exc:
        return _error("AI provider request failed", 502, upstream=exc.to_dict())
    except CorruptRecord as exc:
        return _error(str(exc), 500)
    return web.json_response(response)


# ── Redirect + health ─────────────────────────────────────────────────────────

async def handle_redirect(request: web.Request) -> web.Response:
    """Look up the slug, log the click, issue a 302 redirect."""
    slug = request.match_info["slug"]
    try:
        link = await links.resolve(
            request.app[URLS_KEY], slug, password=request.query.get("password"),
        )
    except links.LinkNotFound:
        logger.debug("Redirect miss: /%s", slug)
        raise web.HTTPNotFound(text="Link not found or expired.", content_type="text/plain")
    except links.LinkPasswordRequired:
        raise web.HTTPUnauthorized(
            text="This link is password protected. Retry with ?password=…",
            content_type="text/plain",
        )

    # Log click asynchronously (don't await — let redirect happen immediately).
    # The app holds a reference until the task finishes.
    task = asyncio.create_task(
        analytics.record_click(
            slug=slug,
            url=link.url,
            country=request.headers.get("CF-IPCountry", ""),
            city=request.headers.get("CF-IPCity", ""),
            user_agent=request.headers.get("User-Agent", ""),
            referrer=request.headers.get("Referer", ""),
            ip=request.headers.get("X-Real-IP") or request.remote or "",
        )
    )
    tasks = request.app[CLICK_TASKS_KEY]
    tasks.add(task)
    task.add_done_callback(tasks.discard)
    raise web.HTTPFound(location=link.url)


async def handle_health(request: web.Request) -> web.Response:
    """Health check — returns 200 OK. Use with uptime monitors."""
    total = await request.app[URLS_KEY].count()
    return web.Response(text=f"OK — {total} links stored", content_type="text/plain")


async def _drain_click_tasks(app: web.Application) -> None:
    """Let in-flight click writes finish before the server goes away."""
    tasks = app[CLICK_TASKS_KEY]
    if tasks:
        await asyncio.gather(*tasks)


# ── App factory ────────────────────────────────────────────────────────────────

def build_web_app(
    providers: Optional[dict[str, ChatProvider]] = None,
    plans: Optional[PlanRegistry] = None,
    agent_service: Optional[AgentService] = None,
) -> web.Application:
    app = web.Application(middlewares=[auth.jwt_middleware])
    app[PLANS_KEY] = plans or PlanRegistry()
    app[URLS_KEY] = KVNamespace(URLS)
    app[CLICK_TASKS_KEY] = set()
    app.on_cleanup.append(_drain_click_tasks)
    app[AGENT_SERVICE_KEY] = agent_service or AgentService(
        store=KVNamespace(AGENTS),
        providers=providers or {},
    )

    app.router.add_get("/health",                       handle_health)
    app.router.add_post("/tmp/token",                   handle_token)
    app.router.add_post("/api/url",                     handle_add_url)
    app.router.add_post("/api/url/enhanced",            handle_add_enhanced_url)
    app.router.add_post("/api/report/{slug}",           handle_report)
    app.router.add_post("/api/agents/deploy",           handle_deploy_agent)
    app.router.add_get("/api/agents",                   handle_list_agents)
    app.router.add_get("/api/agents/{agent_id}",        handle_get_agent)
    app.router.add_delete("/api/agents/{agent_id}",     handle_deactivate_agent)
    app.router.add_post("/api/agents/{agent_id}/chat",  handle_chat)
    app.router.add_get("/{slug}",                       handle_redirect)
    return app


async def start_server() -> web.AppRunner:
    """Start the web server. Returns runner so caller can shut it down cleanly."""
    from providers.manager import get_providers

    app    = build_web_app(providers=await get_providers())
    runner = web.AppRunner(app, access_log=logger)
    await runner.setup()
    site = web.TCPSite(runner, config.SERVER_HOST, config.SERVER_PORT)
    await site.start()
    logger.info(
        "🔗 shrty listening on %s:%d  (agent domain: %s)",
        config.SERVER_HOST,
        config.SERVER_PORT,
        config.CUSTOM_DOMAIN or config.DEFAULT_AGENT_DOMAIN,
    )
    return runner
