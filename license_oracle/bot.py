"""
Chat command router.

Maps inbound Telegram updates onto session operations and sends the replies
back through the transport. The router holds no state of its own; every
store it touches belongs to the session.
"""

from __future__ import annotations

import logging
import re
from typing import Awaitable, Callable, Protocol

from . import messages
from .exceptions import TransportError
from .models import VerificationStatus
from .session import OracleSession
from .telegram import CallbackQuery, TelegramMessage, TelegramUpdate
from .validators import is_valid_account

logger = logging.getLogger(__name__)

AGENT_CALLBACK_PREFIX = "agent_"

_COMMAND = re.compile(r"^/(\w+)(?:@\w+)?(?:\s+(.*))?$", re.DOTALL)
_SET_WALLET = re.compile(r"^/set\s*wallet(?:@\w+)?(?:\s+(.+))?$", re.IGNORECASE | re.DOTALL)


class ChatTransport(Protocol):
    async def send_message(self, chat_id: int, text: str, reply_markup: dict | None = None) -> bool: ...

    async def edit_message_text(self, chat_id: int, message_id: int, text: str) -> bool: ...

    async def answer_callback_query(self, callback_query_id: str) -> bool: ...

    async def send_chat_action(self, chat_id: int, action: str = "typing") -> bool: ...

    async def download_file(self, file_id: str) -> bytes: ...


def parse_command(text: str) -> tuple[str, str] | None:
    """'/ask@MyBot  what?' → ('ask', 'what?'). Non-commands → None."""
    text = text.strip()
    wallet = _SET_WALLET.match(text)
    if wallet:
        return "setwallet", (wallet.group(1) or "").strip()
    match = _COMMAND.match(text)
    if match is None:
        return None
    return match.group(1).lower(), (match.group(2) or "").strip()


Handler = Callable[[TelegramMessage, str], Awaitable[None]]


class ChatBot:
    """Routes chat updates to the session."""

    def __init__(self, session: OracleSession, transport: ChatTransport):
        self.session = session
        self.transport = transport
        self._commands: dict[str, Handler] = {
            "start": self._on_help,
            "help": self._on_help,
            "ask": self._on_ask,
            "agents": self._on_agents,
            "agent": self._on_agent_menu,
            "setwallet": self._on_set_wallet,
            "license": self._on_license,
            "licenses": self._on_licenses,
            "export": self._on_export,
            "wallet": self._on_wallet,
        }

    async def handle_update(self, update: TelegramUpdate) -> None:
        """Entry point for one update. Never raises."""
        try:
            if update.callback_query is not None:
                await self._on_callback(update.callback_query)
            elif update.message is not None:
                await self._on_message(update.message)
        except Exception:
            logger.exception("Unhandled error while processing update %d", update.update_id)
            chat_id = self._chat_id(update)
            if chat_id is not None:
                await self.transport.send_message(chat_id, "❌ Something went wrong. Please try again.")

    @staticmethod
    def _chat_id(update: TelegramUpdate) -> int | None:
        if update.message is not None:
            return update.message.chat.id
        if update.callback_query is not None and update.callback_query.message is not None:
            return update.callback_query.message.chat.id
        return None

    async def _on_message(self, message: TelegramMessage) -> None:
        logger.info("Message from %s: %r", message.requester_id, (message.text or "<photo>")[:80])
        if message.photo:
            await self._on_photo(message)
            return
        if not message.text:
            return

        parsed = parse_command(message.text)
        if parsed is None:
            return
        command, args = parsed
        handler = self._commands.get(command)
        if handler is None:
            logger.debug("Ignoring unknown command /%s", command)
            return
        await handler(message, args)

    # ─── Agents ─────────────────────────────────────────────────────

    async def _on_help(self, message: TelegramMessage, _args: str) -> None:
        current = await self.session.directory.agent_name()
        await self.transport.send_message(message.chat.id, messages.format_help(current))

    async def _on_ask(self, message: TelegramMessage, question: str) -> None:
        chat_id = message.chat.id
        if not question:
            await self.transport.send_message(chat_id, messages.MISSING_QUESTION)
            return

        await self.transport.send_chat_action(chat_id)

        async def acknowledge() -> None:
            await self.transport.send_message(chat_id, messages.QUESTION_SENT)

        answer = await self.session.broker.ask(question, on_sent=acknowledge)
        await self.transport.send_message(chat_id, messages.format_answer(answer))

    async def _on_agents(self, message: TelegramMessage, _args: str) -> None:
        agents = await self.session.directory.list_agents()
        current = await self.session.directory.agent_name()
        await self.transport.send_message(message.chat.id, messages.format_agent_list(agents, current))

    async def _on_agent_menu(self, message: TelegramMessage, _args: str) -> None:
        agents = await self.session.directory.list_agents()
        keyboard = [
            [{"text": f"{a.name} (ID: {a.id})", "callback_data": f"{AGENT_CALLBACK_PREFIX}{a.id}"}]
            for a in agents
        ]
        await self.transport.send_message(
            message.chat.id, "🔄 Select an agent:", reply_markup={"inline_keyboard": keyboard}
        )

    async def _on_callback(self, query: CallbackQuery) -> None:
        try:
            data = query.data or ""
            if data.startswith(AGENT_CALLBACK_PREFIX) and query.message is not None:
                await self._select_agent(query.message, data[len(AGENT_CALLBACK_PREFIX):])
        finally:
            await self.transport.answer_callback_query(query.id)

    async def _select_agent(self, message: TelegramMessage, raw_id: str) -> None:
        try:
            agent_id = int(raw_id)
        except ValueError:
            logger.warning("Malformed agent callback: %r", raw_id)
            return

        agent = await self.session.directory.select(agent_id)
        text = (
            messages.format_agent_selected(agent)
            if agent is not None
            else f"❌ Agent with ID {agent_id} not found"
        )
        await self.transport.edit_message_text(message.chat.id, message.message_id, text)

    # ─── Accounts & Records ─────────────────────────────────────────

    async def _on_set_wallet(self, message: TelegramMessage, address: str) -> None:
        chat_id = message.chat.id
        if not address:
            await self.transport.send_message(chat_id, messages.MISSING_ACCOUNT)
            return
        if not is_valid_account(address):
            await self.transport.send_message(chat_id, messages.INVALID_ACCOUNT)
            return

        self.session.accounts.set(message.requester_id, address)
        await self.transport.send_message(
            chat_id, messages.format_account_saved(message.requester_id, address)
        )

    async def _on_license(self, message: TelegramMessage, _args: str) -> None:
        record = self.session.records.get(message.requester_id)
        await self.transport.send_message(message.chat.id, messages.format_record_status(record))

    async def _on_licenses(self, message: TelegramMessage, _args: str) -> None:
        await self.transport.send_message(
            message.chat.id, messages.format_record_list(self.session.records.get_all())
        )

    async def _on_export(self, message: TelegramMessage, _args: str) -> None:
        await self.transport.send_message(
            message.chat.id, messages.format_export_table(self.session.records.get_all())
        )

    async def _on_wallet(self, message: TelegramMessage, _args: str) -> None:
        status = await self.session.recorder.status()
        await self.transport.send_message(
            message.chat.id, messages.format_ledger_status(status, self.session.records.size())
        )

    # ─── Photos ─────────────────────────────────────────────────────

    async def _on_photo(self, message: TelegramMessage) -> None:
        chat_id = message.chat.id
        await self.transport.send_message(chat_id, "📸 Processing license image...")

        largest = message.photo[-1]
        try:
            image = await self.transport.download_file(largest.file_id)
        except TransportError as e:
            logger.error("Photo download failed for %s: %s", message.requester_id, e)
            await self.transport.send_message(chat_id, "❌ Error processing license image. Please try again.")
            return

        logger.info("Image downloaded for %s (%d bytes)", message.requester_id, len(image))
        outcome = await self.session.pipeline.run(image, message.requester_id)
        if outcome.status is not VerificationStatus.RECORDED:
            logger.info("Verification for %s ended with %s", message.requester_id, outcome.status.value)
        await self.transport.send_message(chat_id, outcome.message)
