"""
Shared types and base class for all chat providers.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

logger = logging.getLogger(__name__)

Message = dict[str, Any]        # {"role": "...", "content": "..."}


class UpstreamFailure(Exception):
    """
    A provider call failed: network error, non-JSON body, or an error status.
    status/detail carry whatever the upstream told us so the router can pass
    it on instead of collapsing it into a generic message.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        status: Optional[int] = None,
        detail: Any = None,
    ):
        self.provider = provider
        self.status = status
        self.detail = detail
        super().__init__(f"[{provider}] {message}")

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "status":   self.status,
            "detail":   self.detail,
        }


# ── Abstract base ──────────────────────────────────────────────────────────────

class ChatProvider(ABC):
    """Base class all chat backends must implement."""

    name: str           # provider tag stored on agents, e.g. "openai"

    @abstractmethod
    async def send(self, model: str, messages: list[Message]) -> Any:
        """Run one chat completion. Returns the provider's response body."""
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
