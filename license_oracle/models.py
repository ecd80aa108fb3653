"""
Pydantic models for the license oracle — strict typing at every seam.

Every value that crosses a component boundary is one of these models.
Transport payloads (Telegram updates, OpenServ responses, toncenter JSON)
are normalised into them as early as possible.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─── Verdicts ───────────────────────────────────────────────────────


class Verdict(str, Enum):
    """Adjudication result for a licence number."""

    VALID = "Valid"
    INVALID = "Invalid"
    EXPIRED = "Expired"
    PROCESSING = "Processing"


VERDICT_ICONS: dict[Verdict, str] = {
    Verdict.VALID: "✅",
    Verdict.EXPIRED: "⏰",
    Verdict.INVALID: "❌",
    Verdict.PROCESSING: "⏳",
}


# ─── Recognition ────────────────────────────────────────────────────


class RecognitionResult(BaseModel):
    """What the OCR step extracted from one photo. Never persisted."""

    normalized_text: str
    confidence: float = Field(ge=0.0, le=100.0)
    document_number: Optional[str] = None
    expiry_date: Optional[str] = None  # Free-form, as matched


# ─── Verification Record ────────────────────────────────────────────


class VerificationRecord(BaseModel):
    """One verification per requester. Overwritten on re-verification."""

    requester_id: str
    claimed_account: str
    document_number: str
    fingerprint: str  # SHA-256 hex, time-salted
    verdict: Verdict
    ledger_reference: str = ""  # Empty until the ledger confirms
    created_at: datetime = Field(default_factory=_utcnow)


class VerificationStatus(str, Enum):
    """How far a verification got through the pipeline."""

    RECORDED = "RECORDED"  # Ledger confirmed, reference attached
    UNRECORDED = "UNRECORDED"  # Ledger configured but no confirmation
    DEMO_MODE = "DEMO_MODE"  # No signing key configured
    REFUSED = "REFUSED"  # Strict mode, ledger failed, nothing saved
    NO_DOCUMENT_NUMBER = "NO_DOCUMENT_NUMBER"
    NO_ACCOUNT = "NO_ACCOUNT"
    RECOGNITION_FAILED = "RECOGNITION_FAILED"


class VerificationOutcome(BaseModel):
    """The final output of the verification pipeline."""

    status: VerificationStatus
    message: str
    recognition: Optional[RecognitionResult] = None
    record: Optional[VerificationRecord] = None

    @property
    def saved(self) -> bool:
        return self.status in (
            VerificationStatus.RECORDED,
            VerificationStatus.UNRECORDED,
            VerificationStatus.DEMO_MODE,
        )


# ─── Remote Agents ──────────────────────────────────────────────────


class AgentDescriptor(BaseModel):
    """An addressable agent in the workspace."""

    id: int
    name: str
    description: str = "No description available"


class AgentMessage(BaseModel):
    """One entry of a workspace/agent chat feed."""

    author: str  # "agent" or "user"
    text: str
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # Naive feed timestamps are UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class AnswerStatus(str, Enum):
    ANSWERED = "ANSWERED"
    TIMED_OUT = "TIMED_OUT"
    FAILED = "FAILED"


class AgentAnswer(BaseModel):
    """Result of asking the current agent a question."""

    status: AnswerStatus
    agent_id: int
    agent_name: str
    text: Optional[str] = None
    attempts: int = 0
    error: Optional[str] = None


class PollState(str, Enum):
    """Lifecycle of a bounded polling loop."""

    IDLE = "IDLE"
    SENT = "SENT"
    POLLING = "POLLING"
    RESOLVED = "RESOLVED"
    TIMED_OUT = "TIMED_OUT"


# ─── Ledger ─────────────────────────────────────────────────────────


class LedgerTransaction(BaseModel):
    """A transaction as reported by the ledger API."""

    hash: str  # Hex
    lt: int = 0
    internal: bool = False  # Inbound message came from another account


class LedgerStatus(BaseModel):
    """Wallet health as shown by the /wallet command."""

    mode: str  # "active" or "demo"
    address: Optional[str] = None
    deployed: Optional[bool] = None
    balance: Optional[str] = None  # TON, decimal string
    detail: str = ""
