"""
User-facing text for chat replies.

Pure formatting: every function takes models and returns a string, so the
wording can be tested without a transport.
"""

from __future__ import annotations

from .models import (
    VERDICT_ICONS,
    AgentAnswer,
    AgentDescriptor,
    AnswerStatus,
    LedgerStatus,
    VerificationOutcome,
    VerificationRecord,
    VerificationStatus,
)

EXPLORER_TX_URL = "https://testnet.tonviewer.com/transaction/{}"
ACCOUNT_EXAMPLE = "EQCx...YtR9"
OCR_PREVIEW_CHARS = 300


def _short(value: str, length: int = 16) -> str:
    return f"{value[:length]}..." if len(value) > length else value


def _masked(value: str, head: int = 6, tail: int = 4) -> str:
    if len(value) <= head + tail:
        return value
    return f"{value[:head]}...{value[-tail:]}"


# ─── Verification ────────────────────────────────────────────────────

_LEDGER_LINES: dict[VerificationStatus, str] = {
    VerificationStatus.RECORDED: "Recorded",
    VerificationStatus.UNRECORDED: "Not recorded (ledger did not confirm in time)",
    VerificationStatus.DEMO_MODE: "Demo Mode (ledger not configured)",
}


def format_outcome(outcome: VerificationOutcome) -> str:
    """Reply text for a finished pipeline run."""
    status = outcome.status
    recognition = outcome.recognition

    if status is VerificationStatus.RECOGNITION_FAILED:
        return "❌ Error processing license image. Please try again."
    if status is VerificationStatus.NO_DOCUMENT_NUMBER:
        text = recognition.normalized_text if recognition else ""
        return (
            "❌ Could not extract license number from image.\n\n"
            f"OCR Text:\n{text[:OCR_PREVIEW_CHARS]}..."
        )
    if status is VerificationStatus.NO_ACCOUNT:
        return f"❌ Please set your TON wallet address first: /setwallet {ACCOUNT_EXAMPLE}"
    if status is VerificationStatus.REFUSED:
        return "❌ Failed to record license on blockchain. Please try again or contact support."

    record = outcome.record
    assert record is not None and recognition is not None

    lines = [
        "🆔 License Processing Complete",
        "",
        "📋 Results:",
        f"• License Number: {record.document_number}",
        f"• Oracle Status: {VERDICT_ICONS[record.verdict]} {record.verdict.value}",
        f"• Confidence: {recognition.confidence:.2f}%",
        f"• Hash: {_short(record.fingerprint)}",
    ]
    if recognition.expiry_date:
        lines.append(f"• Expiration: {recognition.expiry_date}")
    lines += ["", "⛓️ Blockchain:", f"• TON Status: {_LEDGER_LINES[status]}"]
    if record.ledger_reference:
        lines.append(f"• Tx Hash: {_short(record.ledger_reference)}")
        lines.append(f"🔗 Explorer: {EXPLORER_TX_URL.format(record.ledger_reference)}")
    return "\n".join(lines)


def format_record_status(record: VerificationRecord | None) -> str:
    """Reply text for /license."""
    if record is None:
        return "❌ No license data found. Please upload your license photo first."

    lines = [
        "🆔 Your License Status",
        "",
        "📋 Information:",
        f"• License Number: {record.document_number}",
        f"• Status: {VERDICT_ICONS[record.verdict]} {record.verdict.value}",
        f"• Hash: {_short(record.fingerprint)}",
        f"• Processed: {record.created_at.strftime('%Y-%m-%d %H:%M:%S %Z').strip()}",
        f"• Wallet: {record.claimed_account}",
    ]
    if record.ledger_reference:
        lines.append(f"• Tx Hash: {_short(record.ledger_reference)}")
        lines.append(f"🔗 Explorer: {EXPLORER_TX_URL.format(record.ledger_reference)}")
    else:
        lines.append("• Tx Hash: not recorded")
    return "\n".join(lines)


def format_record_list(records: dict[str, VerificationRecord]) -> str:
    """Reply text for /licenses."""
    if not records:
        return "📋 No licenses processed yet."
    rows = [
        f"• {requester}: {record.document_number} {VERDICT_ICONS[record.verdict]}"
        for requester, record in records.items()
    ]
    return "📋 All Processed Licenses:\n\n" + "\n".join(rows)


def format_export_table(records: dict[str, VerificationRecord]) -> str:
    """Fixed-width table for /export (rendered as a code block)."""
    if not records:
        return "📋 No license data to export."

    header = f"{'Requester':<16} {'Wallet':<14} {'License':<16} {'Hash':<14} {'Result':<10} {'Tx Hash':<18} Date"
    rows = []
    for requester, record in records.items():
        tx = _short(record.ledger_reference) if record.ledger_reference else "-"
        rows.append(
            f"{'@' + requester:<16} {_masked(record.claimed_account):<14} "
            f"{record.document_number:<16} {'0x' + _masked(record.fingerprint, 8, 4):<14} "
            f"{record.verdict.value:<10} {tx:<18} {record.created_at.date().isoformat()}"
        )

    table = "\n".join([header, *rows])
    return (
        "📊 Driver License Oracle TON - Export Data\n\n"
        f"```\n{table}\n```\n\n"
        f"💾 Total Records: {len(records)}"
    )


# ─── Accounts ────────────────────────────────────────────────────────


def format_account_saved(requester_id: str, account: str) -> str:
    return (
        "✅ TON wallet address set successfully!\n\n"
        f"📍 Address: {account}\n"
        f"👤 Telegram ID: @{requester_id}\n"
        "💡 Now you can upload license photos for verification"
    )


INVALID_ACCOUNT = "❌ Invalid TON wallet address format"
MISSING_ACCOUNT = f"❌ Please provide a TON wallet address: /setwallet {ACCOUNT_EXAMPLE}"


# ─── Agents ──────────────────────────────────────────────────────────


def format_agent_list(agents: list[AgentDescriptor], current_name: str) -> str:
    body = "\n\n".join(f"• {a.name} (ID: {a.id})\n  {a.description}" for a in agents)
    return (
        f"🤖 Available Agents ({len(agents)}):\n\n{body}\n\n"
        f"✅ Current: {current_name}\n\nUse /agent to switch agents"
    )


def format_agent_selected(agent: AgentDescriptor) -> str:
    return (
        f"✅ Switched to: {agent.name}\n\n{agent.description}\n\n"
        "You can now use /ask to interact with this agent!"
    )


def format_answer(answer: AgentAnswer) -> str:
    if answer.status is AnswerStatus.ANSWERED:
        return f"🤖 {answer.agent_name} Response:\n\n{answer.text}"
    if answer.status is AnswerStatus.TIMED_OUT:
        return "⏰ No response received within timeout. Please try again."
    return f"❌ Error communicating with agent: {answer.error or 'Unknown error'}"


QUESTION_SENT = "✅ Question sent to agent. Getting response..."
MISSING_QUESTION = "❌ Please write a question: /ask [your question]"


# ─── Ledger ──────────────────────────────────────────────────────────


def format_ledger_status(status: LedgerStatus, record_count: int) -> str:
    if status.mode == "demo":
        headline = "⚪ Demo Mode (no signing key configured)"
    elif status.deployed:
        headline = "🟢 Blockchain Recording Active"
    else:
        headline = "🔵 Blockchain Recording Ready"

    lines = ["⛓️  TON Blockchain Integration", "", headline]
    if status.address:
        lines.append(f"📍 Wallet: {status.address}")
    if status.balance is not None:
        lines.append(f"💰 Balance: {status.balance} TON")
    if status.detail:
        lines.append(f"ℹ️ {status.detail}")
    lines += [
        "🌐 Network: Testnet",
        f"📊 Recorded Licenses: {record_count}",
        "",
        "🔗 Explorers:",
        "• TON Viewer: https://testnet.tonviewer.com/",
        "• TON Scan: https://testnet.tonscan.org/",
    ]
    return "\n".join(lines)


# ─── Help ────────────────────────────────────────────────────────────


def format_help(current_agent: str) -> str:
    return f"""📖 Multi-Agent OpenServ Bot + License Oracle

Current Agent: {current_agent}

🤖 AI Commands:
• /ask [question] - Ask current agent
• /agent - Switch agents
• /agents - List all agents

🆔 License Oracle:
• /setwallet {ACCOUNT_EXAMPLE} - Set your TON wallet address
• Send photo - Upload license for verification
• /license - Check your license status
• /licenses - View all processed licenses
• /export - Export data as a table

⛓️ TON Blockchain:
• /wallet - Show wallet and blockchain status

• /help - Show this help message

📸 To verify a license: just send a photo of it!"""
