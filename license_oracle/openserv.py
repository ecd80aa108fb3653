"""
OpenServ platform client — agents, chat send, chat feed.

Raw responses vary in shape (a bare list vs. {"agents": [...]}, "message" vs.
"content"), so everything is normalised into the models here and nowhere else.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from .exceptions import AgentPlatformError
from .models import AgentDescriptor, AgentMessage

logger = logging.getLogger(__name__)


class OpenServClient:
    """Async REST client for one OpenServ API key."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openserv.ai",
        timeout: float = 30.0,
        http: httpx.AsyncClient | None = None,
    ):
        self._http = http or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"x-openserv-key": api_key, "Content-Type": "application/json"},
            timeout=timeout,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise AgentPlatformError(f"{method} {path} failed: {e}", details={"path": path}) from e

        if response.status_code >= 400:
            raise AgentPlatformError(
                f"{method} {path} returned HTTP {response.status_code}",
                details={"path": path, "status_code": response.status_code, "body": response.text[:200]},
            )
        if not response.content:
            return {}
        return response.json()

    async def list_agents(self, workspace_id: int) -> list[AgentDescriptor]:
        payload = await self._request("GET", f"/workspaces/{workspace_id}/agents")
        return parse_agents(payload)

    async def send_message(self, workspace_id: int, agent_id: int, text: str) -> dict:
        logger.info("Sending chat message to agent %d in workspace %d", agent_id, workspace_id)
        payload = await self._request(
            "POST",
            f"/workspaces/{workspace_id}/agent-chat/{agent_id}/message",
            json={"message": text},
        )
        return payload if isinstance(payload, dict) else {"data": payload}

    async def list_messages(self, workspace_id: int, agent_id: int) -> list[AgentMessage]:
        payload = await self._request("GET", f"/workspaces/{workspace_id}/agent-chat/{agent_id}/messages")
        messages = parse_messages(payload)
        logger.debug("Retrieved %d chat messages for agent %d", len(messages), agent_id)
        return messages


# ─── Payload Normalisation ───────────────────────────────────────────


def parse_agents(payload: Any) -> list[AgentDescriptor]:
    """Accept a bare list or {"agents": [...]}; anything else is an error."""
    if isinstance(payload, dict) and isinstance(payload.get("agents"), list):
        raw_agents = payload["agents"]
    elif isinstance(payload, list):
        raw_agents = payload
    else:
        raise AgentPlatformError(
            "Unexpected agents response format", details={"type": type(payload).__name__}
        )

    agents: list[AgentDescriptor] = []
    for raw in raw_agents:
        if not isinstance(raw, dict) or raw.get("id") is None:
            continue
        agent_id = int(raw["id"])
        agents.append(
            AgentDescriptor(
                id=agent_id,
                name=raw.get("name") or f"Agent {agent_id}",
                description=(
                    raw.get("description")
                    or raw.get("capabilitiesDescription")
                    or "No description available"
                ),
            )
        )
    return agents


def parse_messages(payload: Any) -> list[AgentMessage]:
    """Normalise a chat feed; malformed entries are skipped, not fatal."""
    if isinstance(payload, dict):
        raw_messages = payload.get("messages") or []
    elif isinstance(payload, list):
        raw_messages = payload
    else:
        raw_messages = []

    messages: list[AgentMessage] = []
    for raw in raw_messages:
        if not isinstance(raw, dict):
            continue
        try:
            messages.append(
                AgentMessage(
                    author=str(raw.get("author", "")),
                    text=raw.get("message") or raw.get("content") or "",
                    created_at=raw.get("createdAt") or raw.get("created_at"),
                )
            )
        except ValidationError:
            logger.debug("Skipping malformed chat message: %r", raw)
    return messages
