"""
Remote-agent tests: directory cache, reply selection, the polling broker and
OpenServ payload normalisation. The platform is a fake and time is virtual.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from fakes import FakeClock, FakePlatform, agent_message
from license_oracle.agents import DEFAULT_AGENTS, AgentBroker, AgentDirectory, select_reply
from license_oracle.exceptions import AgentPlatformError
from license_oracle.models import AgentDescriptor, AnswerStatus
from license_oracle.openserv import OpenServClient, parse_agents, parse_messages

pytestmark = pytest.mark.anyio

WORKSPACE = 42


def _directory(platform: FakePlatform, clock: FakeClock, default_agent_id: int = 7) -> AgentDirectory:
    return AgentDirectory(platform, WORKSPACE, default_agent_id, ttl=300, clock=clock)


def _broker(platform: FakePlatform, clock: FakeClock) -> AgentBroker:
    return AgentBroker(
        platform,
        _directory(platform, clock),
        WORKSPACE,
        poll_interval=5,
        timeout=120,
        recency_buffer=30,
        fallback_window=300,
        clock=clock,
        sleep=clock.sleep,
    )


# ═══════════════════════════════════════════════════════════════════════
# DIRECTORY CACHE
# ═══════════════════════════════════════════════════════════════════════


class TestAgentDirectory:
    async def test_single_fetch_within_ttl(self, platform: FakePlatform, clock: FakeClock) -> None:
        directory = _directory(platform, clock)
        first = await directory.list_agents()
        clock.now += 299
        second = await directory.list_agents()

        assert first == second
        assert [a.name for a in first] == ["Planner", "Writer"]
        assert platform.list_calls == 1

    async def test_refetch_after_ttl(self, platform: FakePlatform, clock: FakeClock) -> None:
        directory = _directory(platform, clock)
        await directory.list_agents()
        clock.now += 300
        await directory.list_agents()
        assert platform.list_calls == 2

    async def test_force_refresh(self, platform: FakePlatform, clock: FakeClock) -> None:
        directory = _directory(platform, clock)
        await directory.list_agents()
        directory.force_refresh()
        await directory.list_agents()
        assert platform.list_calls == 2

    async def test_refresh_returns_fresh_list(self, platform: FakePlatform, clock: FakeClock) -> None:
        directory = _directory(platform, clock)
        await directory.list_agents()
        platform.agents = [AgentDescriptor(id=11, name="Newcomer")]
        assert [a.id for a in await directory.refresh()] == [11]

    async def test_stale_cache_on_failure(
        self, platform: FakePlatform, clock: FakeClock, platform_error: AgentPlatformError
    ) -> None:
        directory = _directory(platform, clock)
        cached = await directory.list_agents()
        clock.now += 600
        platform.agents = platform_error
        assert await directory.list_agents() == cached

    async def test_defaults_when_nothing_cached(
        self, clock: FakeClock, platform_error: AgentPlatformError
    ) -> None:
        directory = _directory(FakePlatform(agents=platform_error), clock)
        assert await directory.list_agents() == list(DEFAULT_AGENTS)

    async def test_empty_result_counts_as_failure(self, clock: FakeClock) -> None:
        directory = _directory(FakePlatform(agents=[]), clock)
        assert await directory.list_agents() == list(DEFAULT_AGENTS)

    async def test_recovers_after_fallback(
        self, platform: FakePlatform, clock: FakeClock, platform_error: AgentPlatformError
    ) -> None:
        good_agents = platform.agents
        platform.agents = platform_error
        directory = _directory(platform, clock)
        await directory.list_agents()

        platform.agents = good_agents
        assert [a.id for a in await directory.list_agents()] == [7, 9]

    async def test_returns_a_copy(self, platform: FakePlatform, clock: FakeClock) -> None:
        directory = _directory(platform, clock)
        (await directory.list_agents()).clear()
        assert len(await directory.list_agents()) == 2

    async def test_select_known_agent(self, platform: FakePlatform, clock: FakeClock) -> None:
        directory = _directory(platform, clock)
        agent = await directory.select(9)
        assert agent.name == "Writer"
        assert directory.current_agent_id == 9
        assert await directory.agent_name() == "Writer"

    async def test_select_unknown_agent(self, platform: FakePlatform, clock: FakeClock) -> None:
        directory = _directory(platform, clock)
        assert await directory.select(99) is None
        assert directory.current_agent_id == 7

    async def test_unknown_name(self, platform: FakePlatform, clock: FakeClock) -> None:
        assert await _directory(platform, clock).agent_name(99) == "Agent 99"


# ═══════════════════════════════════════════════════════════════════════
# REPLY SELECTION
# ═══════════════════════════════════════════════════════════════════════


class TestSelectReply:
    NOW = 10_000.0

    def test_newest_since_wins(self) -> None:
        feed = [agent_message("old", self.NOW - 10), agent_message("new", self.NOW - 1)]
        reply = select_reply(feed, since=self.NOW - 30, now=self.NOW, fallback_window=300)
        assert reply.text == "new"

    def test_user_messages_ignored(self) -> None:
        feed = [agent_message("question", self.NOW, author="user")]
        assert select_reply(feed, since=self.NOW - 30, now=self.NOW, fallback_window=300) is None

    def test_fallback_window(self) -> None:
        feed = [agent_message("late", self.NOW - 200)]
        reply = select_reply(feed, since=self.NOW - 30, now=self.NOW, fallback_window=300)
        assert reply.text == "late"

    def test_outside_fallback_window(self) -> None:
        feed = [agent_message("ancient", self.NOW - 301)]
        assert select_reply(feed, since=self.NOW - 30, now=self.NOW, fallback_window=300) is None

    def test_empty_text_ignored(self) -> None:
        feed = [agent_message("", self.NOW)]
        assert select_reply(feed, since=self.NOW - 30, now=self.NOW, fallback_window=300) is None


# ═══════════════════════════════════════════════════════════════════════
# RESPONSE BROKER
# ═══════════════════════════════════════════════════════════════════════


class TestAgentBroker:
    async def test_fast_path(self, clock: FakeClock) -> None:
        platform = FakePlatform(send_payload={"message": "Immediate answer"})
        on_sent = AsyncMock()
        answer = await _broker(platform, clock).ask("Hello?", on_sent=on_sent)

        assert answer.status is AnswerStatus.ANSWERED
        assert answer.text == "Immediate answer"
        assert answer.attempts == 0
        assert platform.message_calls == 0
        on_sent.assert_not_awaited()

    async def test_question_goes_to_current_agent(self, platform: FakePlatform, clock: FakeClock) -> None:
        broker = _broker(platform, clock)
        await broker.directory.select(9)
        platform.send_payload = {"content": "ok"}
        answer = await broker.ask("Hello?")
        assert platform.sent == [(WORKSPACE, 9, "Hello?")]
        assert answer.agent_name == "Writer"

    async def test_polls_until_reply(self, platform: FakePlatform, clock: FakeClock) -> None:
        platform.feeds = [[], [agent_message("Polled answer", clock.now + 5)]]
        on_sent = AsyncMock()
        answer = await _broker(platform, clock).ask("Hello?", on_sent=on_sent)

        assert answer.status is AnswerStatus.ANSWERED
        assert answer.text == "Polled answer"
        assert answer.attempts == 2
        assert answer.agent_name == "Planner"
        assert clock.sleeps == [5]
        on_sent.assert_awaited_once()

    async def test_recent_reply_before_send_is_accepted(self, platform: FakePlatform, clock: FakeClock) -> None:
        platform.feeds = [[agent_message("Just before", clock.now - 20)]]
        answer = await _broker(platform, clock).ask("Hello?")
        assert answer.text == "Just before"
        assert answer.attempts == 1

    async def test_timeout(self, platform: FakePlatform, clock: FakeClock) -> None:
        platform.feeds = [[agent_message("ancient", clock.now - 1000)]]
        answer = await _broker(platform, clock).ask("Hello?")

        assert answer.status is AnswerStatus.TIMED_OUT
        assert answer.text is None
        assert answer.attempts == 25
        assert sum(clock.sleeps) == 120

    async def test_transient_poll_errors_are_swallowed(
        self, platform: FakePlatform, clock: FakeClock, platform_error: AgentPlatformError
    ) -> None:
        platform.feeds = [platform_error, [agent_message("Recovered", clock.now + 5)]]
        answer = await _broker(platform, clock).ask("Hello?")
        assert answer.status is AnswerStatus.ANSWERED
        assert answer.attempts == 2

    async def test_send_failure(self, clock: FakeClock, platform_error: AgentPlatformError) -> None:
        platform = FakePlatform(send_payload=platform_error)
        on_sent = AsyncMock()
        answer = await _broker(platform, clock).ask("Hello?", on_sent=on_sent)

        assert answer.status is AnswerStatus.FAILED
        assert "HTTP 500" in answer.error
        assert platform.message_calls == 0
        on_sent.assert_not_awaited()

    async def test_send_is_a_pass_through(self, clock: FakeClock, platform_error: AgentPlatformError) -> None:
        broker = _broker(FakePlatform(send_payload=platform_error), clock)
        with pytest.raises(AgentPlatformError):
            await broker.send(WORKSPACE, 7, "Hello?")

    async def test_get_agent_response_none_on_timeout(self, platform: FakePlatform, clock: FakeClock) -> None:
        assert await _broker(platform, clock).get_agent_response(WORKSPACE, 7) is None

    async def test_mixed_naive_and_aware_feed(self, platform: FakePlatform, clock: FakeClock) -> None:
        clock.now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc).timestamp()
        platform.feeds = [
            parse_messages(
                [
                    {"author": "agent", "message": "earlier", "createdAt": "2024-01-01T11:59:50"},
                    {"author": "agent", "message": "answer", "createdAt": "2024-01-01T11:59:55Z"},
                ]
            )
        ]
        assert await _broker(platform, clock).get_agent_response(WORKSPACE, 7) == "answer"
        assert platform.message_calls == 1

    @pytest.mark.parametrize(
        "payload, expected",
        [
            ({"message": "a"}, "a"),
            ({"content": "b"}, "b"),
            ({"message": "   "}, None),
            ({"message": {"nested": True}}, None),
            ({"id": 1}, None),
        ],
    )
    def test_immediate_text(self, payload: dict, expected: str | None) -> None:
        assert AgentBroker.immediate_text(payload) == expected


# ═══════════════════════════════════════════════════════════════════════
# OPENSERV PAYLOADS
# ═══════════════════════════════════════════════════════════════════════


class TestParseAgents:
    def test_bare_list(self) -> None:
        agents = parse_agents([{"id": 3, "name": "Helper", "description": "Helps"}])
        assert agents == [AgentDescriptor(id=3, name="Helper", description="Helps")]

    def test_wrapped_list(self) -> None:
        assert parse_agents({"agents": [{"id": "4"}]})[0].id == 4

    def test_defaults(self) -> None:
        agent = parse_agents([{"id": 5}])[0]
        assert agent.name == "Agent 5"
        assert agent.description == "No description available"

    def test_capabilities_fallback(self) -> None:
        agent = parse_agents([{"id": 6, "capabilitiesDescription": "Searches"}])[0]
        assert agent.description == "Searches"

    def test_entries_without_id_skipped(self) -> None:
        assert parse_agents([{"name": "ghost"}, {"id": 1}]) == [AgentDescriptor(id=1, name="Agent 1")]

    def test_unexpected_shape(self) -> None:
        with pytest.raises(AgentPlatformError):
            parse_agents({"data": "nope"})


class TestParseMessages:
    def test_message_and_content_keys(self) -> None:
        messages = parse_messages(
            [
                {"author": "agent", "message": "one", "createdAt": "2026-01-01T10:00:00Z"},
                {"author": "user", "content": "two", "created_at": "2026-01-01T10:00:01Z"},
            ]
        )
        assert [(m.author, m.text) for m in messages] == [("agent", "one"), ("user", "two")]

    def test_wrapped_feed(self) -> None:
        feed = {"messages": [{"author": "agent", "message": "hi", "createdAt": "2026-01-01T10:00:00Z"}]}
        assert len(parse_messages(feed)) == 1

    def test_malformed_entries_skipped(self) -> None:
        assert parse_messages([{"author": "agent", "message": "no timestamp"}, "junk"]) == []

    def test_unexpected_shape(self) -> None:
        assert parse_messages("nope") == []

    def test_naive_timestamp_read_as_utc(self) -> None:
        (message,) = parse_messages([{"author": "agent", "message": "hi", "createdAt": "2024-01-01T12:00:00"}])
        assert message.created_at == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_offset_timestamp_converted_to_utc(self) -> None:
        (message,) = parse_messages(
            [{"author": "agent", "message": "hi", "createdAt": "2024-01-01T14:00:00+02:00"}]
        )
        assert message.created_at == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert message.created_at.utcoffset().total_seconds() == 0


class TestOpenServClient:
    async def test_sends_key_and_body(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": 123})

        http = httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            base_url="https://openserv.test",
            headers={"x-openserv-key": "secret"},
        )
        payload = await OpenServClient("secret", http=http).send_message(WORKSPACE, 7, "Hello?")

        assert payload == {"id": 123}
        assert seen[0].url.path == "/workspaces/42/agent-chat/7/message"
        assert seen[0].headers["x-openserv-key"] == "secret"
        assert json.loads(seen[0].content) == {"message": "Hello?"}

    async def test_http_error(self) -> None:
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(503, text="down")),
            base_url="https://openserv.test",
        )
        with pytest.raises(AgentPlatformError) as exc:
            await OpenServClient("secret", http=http).list_agents(WORKSPACE)
        assert exc.value.details["status_code"] == 503
