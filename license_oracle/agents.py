"""
Remote agents: directory cache and response broker.

Marketplace agents rarely answer synchronously. After a send, the broker
polls the shared chat feed until an agent-authored message shows up:

  Idle ──send──► Sent ──no text in payload──► Polling(1..N) ──► Resolved(text)
                   │                                  └────────► TimedOut
                   └──text in payload──► Resolved(text)

Clock and sleep are injected so the polling loop can be driven in tests
without real delays.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Protocol

from .exceptions import AgentPlatformError
from .models import AgentAnswer, AgentDescriptor, AgentMessage, AnswerStatus, PollState

logger = logging.getLogger(__name__)

AGENT_AUTHOR = "agent"

DEFAULT_AGENTS: tuple[AgentDescriptor, ...] = (
    AgentDescriptor(id=1, name="Project Manager", description="Manages projects and coordinates tasks"),
    AgentDescriptor(
        id=2, name="Research Assistant", description="Conducts research and provides detailed information"
    ),
    AgentDescriptor(id=3, name="General Assistant", description="Provides general help and support"),
)


class AgentPlatform(Protocol):
    async def list_agents(self, workspace_id: int) -> list[AgentDescriptor]: ...

    async def send_message(self, workspace_id: int, agent_id: int, text: str) -> dict: ...

    async def list_messages(self, workspace_id: int, agent_id: int) -> list[AgentMessage]: ...


# ─── Directory Cache ─────────────────────────────────────────────────


class AgentDirectory:
    """Time-bounded cache of the workspace's agents plus the current selection."""

    def __init__(
        self,
        platform: AgentPlatform,
        workspace_id: int,
        default_agent_id: int,
        ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.platform = platform
        self.workspace_id = workspace_id
        self.ttl = ttl
        self._clock = clock
        self._current_agent_id = default_agent_id
        self._agents: list[AgentDescriptor] = []
        self._fetched_at: float | None = None

    @property
    def current_agent_id(self) -> int:
        return self._current_agent_id

    def _is_fresh(self) -> bool:
        return (
            bool(self._agents)
            and self._fetched_at is not None
            and self._clock() - self._fetched_at < self.ttl
        )

    async def list_agents(self) -> list[AgentDescriptor]:
        """Cached agents; fetches on expiry, degrades to stale or built-in agents."""
        if self._is_fresh():
            return list(self._agents)

        try:
            logger.info("Fetching agents for workspace %d", self.workspace_id)
            agents = await self.platform.list_agents(self.workspace_id)
            if not agents:
                raise AgentPlatformError("Workspace returned no agents")
        except Exception as e:
            logger.error("Failed to fetch agents: %s", e)
            if not self._agents:
                logger.info("Using built-in fallback agents")
                self._agents = list(DEFAULT_AGENTS)
            return list(self._agents)

        self._agents = list(agents)
        self._fetched_at = self._clock()
        logger.info(
            "Found %d agents: %s",
            len(agents),
            ", ".join(f"{a.name} (ID: {a.id})" for a in agents),
        )
        return list(self._agents)

    def force_refresh(self) -> None:
        """Invalidate the cache; the next list_agents() call fetches."""
        self._fetched_at = None

    async def refresh(self) -> list[AgentDescriptor]:
        self.force_refresh()
        return await self.list_agents()

    async def get(self, agent_id: int) -> AgentDescriptor | None:
        for agent in await self.list_agents():
            if agent.id == agent_id:
                return agent
        return None

    async def agent_name(self, agent_id: int | None = None) -> str:
        agent_id = self._current_agent_id if agent_id is None else agent_id
        agent = await self.get(agent_id)
        return agent.name if agent else f"Agent {agent_id}"

    async def select(self, agent_id: int) -> AgentDescriptor | None:
        """Switch the current agent. Unknown ids leave the selection untouched."""
        agent = await self.get(agent_id)
        if agent is not None:
            self._current_agent_id = agent_id
            logger.info("Switched current agent to %s (ID: %d)", agent.name, agent_id)
        return agent


# ─── Response Broker ─────────────────────────────────────────────────


def select_reply(
    messages: list[AgentMessage],
    *,
    since: float,
    now: float,
    fallback_window: float,
) -> AgentMessage | None:
    """Pick the newest agent message created since `since`.

    When none qualifies, fall back to agent messages from the trailing
    `fallback_window` seconds (tolerates clock skew and late delivery).
    """
    agent_messages = [m for m in messages if m.author == AGENT_AUTHOR and m.text]

    candidates = [m for m in agent_messages if m.created_at.timestamp() >= since]
    if not candidates:
        candidates = [m for m in agent_messages if m.created_at.timestamp() >= now - fallback_window]
        if candidates:
            logger.info("No replies since polling started, using latest from fallback window")
    if not candidates:
        return None
    return max(candidates, key=lambda m: m.created_at)


class AgentBroker:
    """Sends questions to agents and waits for their replies."""

    def __init__(
        self,
        platform: AgentPlatform,
        directory: AgentDirectory,
        workspace_id: int,
        *,
        poll_interval: float = 5.0,
        timeout: float = 120.0,
        recency_buffer: float = 30.0,
        fallback_window: float = 300.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.platform = platform
        self.directory = directory
        self.workspace_id = workspace_id
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.recency_buffer = recency_buffer
        self.fallback_window = fallback_window
        self._clock = clock
        self._sleep = sleep

    async def send(self, workspace_id: int, agent_id: int, message: str) -> dict:
        """Pass-through to the platform. Raises AgentPlatformError."""
        payload = await self.platform.send_message(workspace_id, agent_id, message)
        logger.debug("sendChatMessage response keys: %s", sorted(payload))
        return payload

    @staticmethod
    def immediate_text(payload: dict) -> str | None:
        """Text carried directly in a send response, if any."""
        for key in ("message", "content"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value
        return None

    async def get_agent_response(self, workspace_id: int, agent_id: int) -> str | None:
        """Poll the chat feed for a reply. None means the timeout elapsed."""
        text, _attempts = await self._poll(workspace_id, agent_id)
        return text

    async def _poll(self, workspace_id: int, agent_id: int) -> tuple[Optional[str], int]:
        start = self._clock()
        since = start - self.recency_buffer
        state = PollState.POLLING
        attempts = 0
        logger.info("Polling for agent %d response (timeout %.0fs)", agent_id, self.timeout)

        while state is PollState.POLLING:
            attempts += 1
            try:
                messages = await self.platform.list_messages(workspace_id, agent_id)
                reply = select_reply(
                    messages, since=since, now=self._clock(), fallback_window=self.fallback_window
                )
                if reply is not None:
                    logger.info("Agent %d replied after %d attempt(s)", agent_id, attempts)
                    return reply.text, attempts
            except Exception as e:
                logger.warning("Polling attempt %d failed: %s", attempts, e)

            if self._clock() - start >= self.timeout:
                state = PollState.TIMED_OUT
            else:
                await self._sleep(self.poll_interval)

        logger.warning("No agent response after %d attempts", attempts)
        return None, attempts

    async def ask(
        self,
        question: str,
        on_sent: Callable[[], Awaitable[None]] | None = None,
    ) -> AgentAnswer:
        """Ask the current agent. Never raises; failures are reported in the answer.

        `on_sent` is awaited once the question is accepted and no immediate
        reply came back, i.e. right before polling starts.
        """
        agent_id = self.directory.current_agent_id
        logger.info("Question for agent %d: %r", agent_id, question[:100])

        try:
            payload = await self.send(self.workspace_id, agent_id, question)
        except AgentPlatformError as e:
            logger.error("Failed to send question to agent %d: %s", agent_id, e)
            return AgentAnswer(
                status=AnswerStatus.FAILED,
                agent_id=agent_id,
                agent_name=await self.directory.agent_name(agent_id),
                error=str(e),
            )

        text = self.immediate_text(payload)
        attempts = 0
        if text is None:
            if on_sent is not None:
                await on_sent()
            text, attempts = await self._poll(self.workspace_id, agent_id)

        return AgentAnswer(
            status=AnswerStatus.ANSWERED if text else AnswerStatus.TIMED_OUT,
            agent_id=agent_id,
            agent_name=await self.directory.agent_name(agent_id),
            text=text,
            attempts=attempts,
        )
