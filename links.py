"""
links.py — short-link records.

Every link is stored as JSON in the "urls" namespace under its slug:
  {"url", "createdAt", "expiresAt", "passwordHash", "customDomain",
   "userId", "isActive"}

Passwords are kept as salted bcrypt hashes only. Click counts live in the
link_clicks table (see analytics.py), not on the record.
"""
from __future__ import annotations

import json
import logging
import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlparse

import bcrypt

from kv_store import KVNamespace

logger = logging.getLogger(__name__)

# Base-62 alphabet for slug generation
_ALPHABET = string.ascii_letters + string.digits   # a-z A-Z 0-9  (62 chars)
_SLUG_LEN = 7   # 62^7 = 3.5 trillion combinations

# bcrypt only looks at the first 72 bytes
_MAX_PASSWORD_BYTES = 72

_SLUG_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
# First path segments the router owns
RESERVED_SLUGS = frozenset({"api", "tmp", "health", "admin"})


class LinkNotFound(Exception):
    def __init__(self, slug: str):
        self.slug = slug
        super().__init__("Link not found or expired.")


class LinkPasswordRequired(Exception):
    def __init__(self, slug: str):
        self.slug = slug
        super().__init__("This link is password protected.")


@dataclass
class ShortLink:
    slug: str
    url: str
    created_at: str
    expires_at: Optional[str] = None
    password_hash: Optional[str] = None
    custom_domain: Optional[str] = None
    user_id: Optional[str] = None
    is_active: bool = True

    @property
    def is_protected(self) -> bool:
        return self.password_hash is not None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if not self.expires_at:
            return False
        return _parse_timestamp(self.expires_at) <= (now or datetime.now(timezone.utc))

    def check_password(self, password: Optional[str]) -> bool:
        if self.password_hash is None:
            return True
        if not password:
            return False
        return verify_password(password, self.password_hash)

    def to_record(self) -> dict:
        return {
            "url":          self.url,
            "createdAt":    self.created_at,
            "expiresAt":    self.expires_at,
            "passwordHash": self.password_hash,
            "customDomain": self.custom_domain,
            "userId":       self.user_id,
            "isActive":     self.is_active,
        }

    def to_public(self) -> dict:
        """Response form: never includes the password hash."""
        return {
            "slug":              self.slug,
            "url":               self.url,
            "shorty":            f"/{self.slug}",
            "createdAt":         self.created_at,
            "expiresAt":         self.expires_at,
            "passwordProtected": self.is_protected,
            "customDomain":      self.custom_domain,
            "userId":            self.user_id,
            "isActive":          self.is_active,
        }

    @classmethod
    def from_record(cls, slug: str, d: dict) -> "ShortLink":
        return cls(
            slug=slug,
            url=d["url"],
            created_at=d.get("createdAt", ""),
            expires_at=d.get("expiresAt"),
            password_hash=d.get("passwordHash"),
            custom_domain=d.get("customDomain"),
            user_id=d.get("userId"),
            is_active=bool(d.get("isActive", True)),
        )


# ── Helpers ───────────────────────────────────────────────────────────────────

def hash_password(password: str) -> str:
    """Hash a link password with bcrypt (salted, one hash per link)."""
    encoded = password.encode("utf-8")
    if len(encoded) > _MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {_MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(encoded, bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    encoded = password.encode("utf-8")
    if len(encoded) > _MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, password_hash.encode("utf-8"))
    except ValueError:
        logger.error("Stored password hash is not a bcrypt hash")
        return False


def coerce_bool(value: Any) -> bool:
    """Accept JSON booleans and the strings "true"/"1"/"yes" (any case)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return False


def _parse_timestamp(raw: str) -> datetime:
    ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def validate_url(url: Any) -> str:
    parsed = urlparse(url) if isinstance(url, str) else None
    if parsed is None or parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("url must be an absolute http(s) URL")
    return url


def validate_slug(slug: Any) -> str:
    if not isinstance(slug, str) or not _SLUG_RE.match(slug):
        raise ValueError("slug may only contain letters, digits, '-' and '_' (max 64)")
    if slug.lower() in RESERVED_SLUGS:
        raise ValueError(f"slug '{slug}' is reserved")
    return slug


async def generate_unique_slug(store: KVNamespace) -> str:
    """Generate a base-62 slug not already in the store."""
    for _ in range(10):   # retry loop in case of collision (extremely rare)
        slug = "".join(secrets.choice(_ALPHABET) for _ in range(_SLUG_LEN))
        if await store.get(slug) is None:
            return slug
    # Extremely unlikely to reach here, but use longer slug as last resort
    return "".join(secrets.choice(_ALPHABET) for _ in range(_SLUG_LEN + 3))


async def _load(store: KVNamespace, slug: str) -> Optional[ShortLink]:
    raw = await store.get(slug)
    if raw is None:
        return None
    try:
        return ShortLink.from_record(slug, json.loads(raw))
    except (json.JSONDecodeError, KeyError, TypeError) as exc:
        logger.error("Corrupt link record %s: %s", slug, exc)
        raise ValueError(f"Stored link {slug} is unreadable") from exc


# ── Public API ────────────────────────────────────────────────────────────────

async def add_url(
    store: KVNamespace,
    slug: Optional[str],
    url: str,
    override: Any = False,
) -> dict:
    """
    Point slug at url. An existing slug is only replaced when override is
    truthy; otherwise the current target is returned with an explanation.
    """
    validate_url(url)
    if not slug:
        slug = await generate_unique_slug(store)
    validate_slug(slug)

    existing = await _load(store, slug)
    if existing is not None:
        if coerce_bool(override):
            logger.info("Overriding shorty %s", slug)
        else:
            return {
                "slug":    slug,
                "url":     existing.url,
                "shorty":  f"/{slug}",
                "message": (
                    f"Did not update {slug} because it already was pointing to "
                    f"{existing.url} and override was set to {override}."
                ),
            }

    link = ShortLink(slug=slug, url=url, created_at=datetime.now(timezone.utc).isoformat())
    await store.put(slug, json.dumps(link.to_record()))
    logger.info("Shorty /%s → %s", slug, url[:80])
    return {"slug": slug, "url": url, "shorty": f"/{slug}"}


async def create_enhanced_url(
    store: KVNamespace,
    slug: Optional[str],
    url: str,
    *,
    override: Any = False,
    expires_at: Optional[str] = None,
    password: Optional[str] = None,
    custom_domain: Optional[str] = None,
    user_id: Optional[str] = None,
) -> dict:
    """Create a link with the premium options. Plan checks are the caller's job."""
    validate_url(url)
    if not slug:
        slug = await generate_unique_slug(store)
    validate_slug(slug)
    if expires_at is not None:
        try:
            _parse_timestamp(expires_at)
        except (TypeError, ValueError, AttributeError) as exc:
            raise ValueError("expiresAt must be an ISO-8601 timestamp") from exc
    if password is not None and not isinstance(password, str):
        raise ValueError("password must be a string")

    existing = await _load(store, slug)
    if existing is not None and not coerce_bool(override):
        return {
            "slug":    slug,
            "url":     existing.url,
            "shorty":  f"/{slug}",
            "message": f"Slug {slug} already exists. Set override to true to update.",
        }

    link = ShortLink(
        slug=slug,
        url=url,
        created_at=datetime.now(timezone.utc).isoformat(),
        expires_at=expires_at,
        password_hash=hash_password(password) if password else None,
        custom_domain=custom_domain,
        user_id=user_id,
    )
    await store.put(slug, json.dumps(link.to_record()))
    logger.info("Enhanced shorty /%s → %s (protected=%s)", slug, url[:80], link.is_protected)
    return link.to_public()


async def get_link(store: KVNamespace, slug: str) -> Optional[ShortLink]:
    """Return the stored link (active or not), or None."""
    return await _load(store, slug)


async def resolve(store: KVNamespace, slug: str, password: Optional[str] = None) -> ShortLink:
    """
    Return the link a redirect should follow.
    Raises LinkNotFound for missing, inactive or expired links and
    LinkPasswordRequired when the password is missing or wrong.
    """
    link = await _load(store, slug)
    if link is None or not link.is_active or link.is_expired():
        raise LinkNotFound(slug)
    if not link.check_password(password):
        raise LinkPasswordRequired(slug)
    return link
