"""
agent_service.py — deploy, look up and chat with AI agents.

Storage layout (one KVNamespace, two key prefixes):
  agent:<id>    full AIAgent record (JSON, camelCase keys)
  gateway:<id>  GatewayConfig — only what a chat turn needs (model, provider,
                system prompt), so the hot path never decodes the full agent

Every deployed agent gets both records, whatever its provider. The gateway
is written first, so a listed agent always has one.

Plan gating (aiAgentDeployment) is the router's job; this module trusts its
caller.
"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import config
from kv_store import KVNamespace
from providers.base import ChatProvider, Message

logger = logging.getLogger(__name__)

AGENT_PREFIX = "agent:"
GATEWAY_PREFIX = "gateway:"


# ── Errors ────────────────────────────────────────────────────────────────────

class AgentError(Exception):
    """Base class for agent failures that end a single request."""


class AgentNotFound(AgentError):
    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__("Agent not found or inactive")


class GatewayMissing(AgentError):
    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__("Agent gateway configuration not found")


class UnsupportedProvider(AgentError):
    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Unsupported AI provider: {provider}")


class CorruptRecord(AgentError):
    def __init__(self, key: str, reason: str):
        self.key = key
        super().__init__(f"Stored record {key} is unreadable: {reason}")


# ── Records ───────────────────────────────────────────────────────────────────

@dataclass
class AgentDeploymentConfig:
    name: str
    model: str
    provider: str
    description: str = ""
    system_prompt: str = ""
    custom_domain: Optional[str] = None         # accepted, not used yet
    rate_limits: Optional[dict] = None          # accepted, not enforced

    @classmethod
    def from_dict(cls, data: Any) -> "AgentDeploymentConfig":
        """Parse a request body. Raises ValueError on a malformed config."""
        if not isinstance(data, dict):
            raise ValueError("Agent config must be a JSON object")
        missing = [k for k in ("name", "model", "provider") if not data.get(k)]
        if missing:
            raise ValueError(f"Missing required field(s): {', '.join(missing)}")
        for key in ("name", "model", "provider", "description", "systemPrompt"):
            if key in data and not isinstance(data[key], str):
                raise ValueError(f"Field {key} must be a string")
        return cls(
            name=data["name"],
            model=data["model"],
            provider=data["provider"],
            description=data.get("description", ""),
            system_prompt=data.get("systemPrompt", ""),
            custom_domain=data.get("customDomain"),
            rate_limits=data.get("rateLimits"),
        )


@dataclass
class AIAgent:
    id: str
    name: str
    description: str
    model: str
    provider: str
    endpoint: str
    system_prompt: str
    is_active: bool
    user_id: str
    created_at: str
    deployment_url: str

    def to_dict(self) -> dict:
        return {
            "id":            self.id,
            "name":          self.name,
            "description":   self.description,
            "model":         self.model,
            "provider":      self.provider,
            "endpoint":      self.endpoint,
            "systemPrompt":  self.system_prompt,
            "isActive":      self.is_active,
            "userId":        self.user_id,
            "createdAt":     self.created_at,
            "deploymentUrl": self.deployment_url,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "AIAgent":
        return cls(
            id=d["id"],
            name=d["name"],
            description=d.get("description", ""),
            model=d["model"],
            provider=d["provider"],
            endpoint=d["endpoint"],
            system_prompt=d.get("systemPrompt", ""),
            is_active=bool(d["isActive"]),
            user_id=d["userId"],
            created_at=d["createdAt"],
            deployment_url=d["deploymentUrl"],
        )


@dataclass
class GatewayConfig:
    agent_id: str
    model: str
    provider: str
    system_prompt: str = ""

    def to_dict(self) -> dict:
        return {
            "agentId":      self.agent_id,
            "model":        self.model,
            "provider":     self.provider,
            "systemPrompt": self.system_prompt,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "GatewayConfig":
        return cls(
            agent_id=d["agentId"],
            model=d["model"],
            provider=d["provider"],
            system_prompt=d.get("systemPrompt", ""),
        )


def _decode(key: str, raw: str, factory):
    try:
        return factory(json.loads(raw))
    except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as exc:
        logger.error("Corrupt record at %s: %s", key, exc)
        raise CorruptRecord(key, str(exc)) from exc


# ── Service ───────────────────────────────────────────────────────────────────

@dataclass
class AgentService:
    store: KVNamespace
    providers: Mapping[str, ChatProvider] = field(default_factory=dict)
    domain: Optional[str] = None

    def deployment_url(self, agent_id: str) -> str:
        domain = self.domain or config.CUSTOM_DOMAIN or config.DEFAULT_AGENT_DOMAIN
        return f"https://agent-{agent_id}.{domain}"

    async def deploy_agent(self, cfg: AgentDeploymentConfig, owner_id: str) -> AIAgent:
        agent_id = str(uuid.uuid4())
        agent = AIAgent(
            id=agent_id,
            name=cfg.name,
            description=cfg.description,
            model=cfg.model,
            provider=cfg.provider,
            endpoint=f"/api/agents/{agent_id}/chat",
            system_prompt=cfg.system_prompt,
            is_active=True,
            user_id=owner_id,
            created_at=datetime.now(timezone.utc).isoformat(),
            deployment_url=self.deployment_url(agent_id),
        )
        gateway = GatewayConfig(
            agent_id=agent_id,
            model=cfg.model,
            provider=cfg.provider,
            system_prompt=cfg.system_prompt,
        )

        # Gateway first, so every listed agent has one
        await self.store.put(GATEWAY_PREFIX + agent_id, json.dumps(gateway.to_dict()))
        try:
            await self.store.put(AGENT_PREFIX + agent_id, json.dumps(agent.to_dict()))
        except Exception:
            logger.error("Storing agent %s failed; removing its gateway record", agent_id)
            await self.store.delete(GATEWAY_PREFIX + agent_id)
            raise

        logger.info("Deployed agent %s (%s/%s) for user %s", agent_id, cfg.provider, cfg.model, owner_id)
        return agent

    async def get_agent(self, agent_id: str) -> Optional[AIAgent]:
        """Return the stored agent, or None if there is no such id."""
        key = AGENT_PREFIX + agent_id
        raw = await self.store.get(key)
        if raw is None:
            return None
        return _decode(key, raw, AIAgent.from_dict)

    async def get_user_agents(self, owner_id: str) -> list[AIAgent]:
        """
        All agents owned by owner_id, in store listing order.
        This scans every agent record, so it costs O(total agents).
        """
        agents: list[AIAgent] = []
        for key in await self.store.list(AGENT_PREFIX):
            raw = await self.store.get(key)
            if raw is None:
                continue    # deleted between list() and get()
            agent = _decode(key, raw, AIAgent.from_dict)
            if agent.user_id == owner_id:
                agents.append(agent)
        return agents

    async def deactivate_agent(self, agent_id: str, owner_id: str) -> AIAgent:
        """Clear is_active. Other users' agents are reported as not found."""
        agent = await self.get_agent(agent_id)
        if agent is None or agent.user_id != owner_id:
            raise AgentNotFound(agent_id)
        if agent.is_active:
            agent = replace(agent, is_active=False)
            await self.store.put(AGENT_PREFIX + agent_id, json.dumps(agent.to_dict()))
            logger.info("Deactivated agent %s", agent_id)
        return agent

    async def chat_with_agent(self, agent_id: str, messages: list[Message]) -> Any:
        agent = await self.get_agent(agent_id)
        if agent is None or not agent.is_active:
            raise AgentNotFound(agent_id)

        key = GATEWAY_PREFIX + agent_id
        raw = await self.store.get(key)
        if raw is None:
            raise GatewayMissing(agent_id)
        gateway = _decode(key, raw, GatewayConfig.from_dict)

        provider = self.providers.get(agent.provider)
        if provider is None:
            raise UnsupportedProvider(agent.provider)

        full_messages = [{"role": "system", "content": gateway.system_prompt}, *messages]
        logger.debug("Chat agent=%s provider=%s turns=%d", agent_id, agent.provider, len(full_messages))
        return await provider.send(gateway.model, full_messages)
