"""
auth.py — HS256 tokens for the /api/* routes.

  Authorization: Bearer <jwt>

Verified claims are stored on request["claims"]. The caller's tier and user
id come from the "tier" / "sub" claims when present, falling back to the
X-User-Tier / X-User-ID headers.
"""
from __future__ import annotations

import logging
from typing import Optional

import jwt
from aiohttp import web

import config
from plans import DEFAULT_TIER

logger = logging.getLogger(__name__)

PROTECTED_PREFIX = "/api/"


class AuthError(Exception):
    pass


def _secret() -> str:
    if not config.JWT_SECRET:
        raise AuthError("JWT_SECRET is not configured")
    return config.JWT_SECRET


def sign_token(payload: dict) -> str:
    return jwt.encode(payload, _secret(), algorithm=config.JWT_ALGORITHM)


def verify_token(token: str) -> dict:
    """Decode and verify token. Raises AuthError on any failure."""
    try:
        return jwt.decode(token, _secret(), algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError("Invalid token") from exc


def _bearer(request: web.Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


@web.middleware
async def jwt_middleware(request: web.Request, handler):
    if not request.path.startswith(PROTECTED_PREFIX):
        return await handler(request)

    token = _bearer(request)
    if token is None:
        return web.json_response({"error": "Unauthorized"}, status=401)
    try:
        request["claims"] = verify_token(token)
    except AuthError as exc:
        logger.info("Rejected %s %s: %s", request.method, request.path, exc)
        return web.json_response({"error": str(exc)}, status=401)
    return await handler(request)


def caller_tier(request: web.Request) -> str:
    claims = request.get("claims") or {}
    tier = claims.get("tier") or request.headers.get("X-User-Tier")
    return tier if isinstance(tier, str) and tier else DEFAULT_TIER


def caller_id(request: web.Request) -> Optional[str]:
    claims = request.get("claims") or {}
    user_id = claims.get("sub") or request.headers.get("X-User-ID")
    return str(user_id) if user_id else None
