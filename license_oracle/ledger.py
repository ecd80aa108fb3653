"""
Best-effort recording of verifications on the TON ledger.

Protocol:
  1. No wallet configured        → return None immediately (demo mode, no I/O)
  2. Build payload               → op code, fingerprint bytes, verdict code, millis, requester
  3. Read wallet seqno           → sign a 0.01 TON transfer to the fixed receiver
  4. Submit the signed message
  5. Poll seqno until it advances (strictly greater), bounded in time
  6. On advance, pick the matching transaction from the recent list and return its hash

The recorder NEVER raises and NEVER invents a placeholder hash: every failure
collapses to None and the caller decides how to present it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Optional, Protocol

from .exceptions import LedgerError
from .models import LedgerStatus, LedgerTransaction, PollState, Verdict, VerificationRecord

logger = logging.getLogger(__name__)

OP_LICENSE_VERIFICATION = 0
FINGERPRINT_BYTES = 32
RECENT_TRANSACTION_LIMIT = 10
NANO_PER_TON = Decimal(10**9)

VERDICT_CODES: dict[Verdict, int] = {
    Verdict.VALID: 1,
    Verdict.EXPIRED: 2,
    Verdict.INVALID: 3,
}


def verdict_code(verdict: Verdict) -> int:
    """Single-byte verdict code. Unknown verdicts (e.g. Processing) map to 0."""
    return VERDICT_CODES.get(verdict, 0)


def to_nano(amount: str | Decimal) -> int:
    return int(Decimal(amount) * NANO_PER_TON)


def from_nano(amount: int) -> str:
    value = Decimal(amount) / NANO_PER_TON
    return format(value.normalize(), "f") if value else "0"


def _epoch_ms() -> int:
    return time.time_ns() // 1_000_000


# ─── Payload ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class VerificationPayload:
    """Application-level message body attached to the ledger transfer."""

    op: int
    fingerprint: bytes  # Raw digest bytes, not hex text
    verdict_code: int
    timestamp_ms: int
    requester_id: str

    @classmethod
    def from_record(cls, record: VerificationRecord, timestamp_ms: int) -> VerificationPayload:
        try:
            digest = bytes.fromhex(record.fingerprint)[:FINGERPRINT_BYTES]
        except ValueError as e:
            raise LedgerError("Fingerprint is not hex", details={"fingerprint": record.fingerprint}) from e
        if len(digest) != FINGERPRINT_BYTES:
            raise LedgerError(
                "Fingerprint shorter than 32 bytes", details={"length": len(digest)}
            )
        return cls(
            op=OP_LICENSE_VERIFICATION,
            fingerprint=digest,
            verdict_code=verdict_code(record.verdict),
            timestamp_ms=timestamp_ms,
            requester_id=record.requester_id,
        )


# ─── Collaborator Contracts ──────────────────────────────────────────


class LedgerClient(Protocol):
    async def get_sequence(self, address: str) -> int: ...

    async def submit(self, boc: str) -> None: ...

    async def list_recent_transactions(self, address: str, limit: int = 10) -> list[LedgerTransaction]: ...

    async def get_balance(self, address: str) -> int: ...

    async def is_deployed(self, address: str) -> bool: ...


class LedgerWallet(Protocol):
    address: str

    def build_transfer(
        self, *, destination: str, amount_nano: int, seqno: int, payload: VerificationPayload
    ) -> str: ...


def pick_transaction(transactions: list[LedgerTransaction]) -> LedgerTransaction | None:
    """Prefer the first transaction with an internal inbound message, else the newest."""
    for tx in transactions:
        if tx.internal:
            return tx
    return transactions[0] if transactions else None


# ─── Recorder ────────────────────────────────────────────────────────


class LedgerRecorder:
    """Submits verification records to the ledger and waits for confirmation."""

    def __init__(
        self,
        client: Optional[LedgerClient],
        wallet: Optional[LedgerWallet] = None,
        *,
        receiver_address: str,
        transfer_value: str = "0.01",
        confirm_timeout: float = 60.0,
        poll_interval: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now_ms: Callable[[], int] = _epoch_ms,
    ):
        self.client = client
        self.wallet = wallet
        self.receiver_address = receiver_address
        self.transfer_value_nano = to_nano(transfer_value)
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self._now_ms = now_ms

    @property
    def configured(self) -> bool:
        return self.client is not None and self.wallet is not None

    async def record(self, record: VerificationRecord) -> str | None:
        """Record a verification. Returns the transaction hash (hex) or None."""
        if not self.configured:
            logger.info("Ledger not configured — skipping recording (demo mode)")
            return None
        assert self.client is not None and self.wallet is not None

        try:
            payload = VerificationPayload.from_record(record, self._now_ms())
            seqno = await self.client.get_sequence(self.wallet.address)
            logger.info("Current wallet seqno: %d", seqno)

            boc = self.wallet.build_transfer(
                destination=self.receiver_address,
                amount_nano=self.transfer_value_nano,
                seqno=seqno,
                payload=payload,
            )
            await self.client.submit(boc)
            logger.info("Transfer submitted for %s, waiting for confirmation", record.requester_id)
        except Exception as e:
            logger.error("Ledger recording failed: %s", e)
            return None

        return await self.wait_for_confirmation(seqno)

    async def wait_for_confirmation(self, seqno: int) -> str | None:
        """Poll until the wallet seqno exceeds `seqno` or the timeout elapses."""
        assert self.client is not None and self.wallet is not None
        state = PollState.POLLING
        start = self._clock()
        attempts = 0

        while state is PollState.POLLING:
            attempts += 1
            try:
                current = await self.client.get_sequence(self.wallet.address)
                if current > seqno:
                    logger.info("Seqno advanced: %d -> %d", seqno, current)
                    transactions = await self.client.list_recent_transactions(
                        self.wallet.address, RECENT_TRANSACTION_LIMIT
                    )
                    tx = pick_transaction(transactions)
                    if tx is not None:
                        logger.info("Transaction confirmed: %s", tx.hash)
                        return tx.hash
                    logger.warning("Seqno advanced but no transactions listed yet")
                else:
                    logger.debug("Waiting for confirmation (seqno %d, current %d)", seqno, current)
            except Exception as e:
                logger.warning("Confirmation poll %d failed: %s", attempts, e)

            if self._clock() - start >= self.confirm_timeout:
                state = PollState.TIMED_OUT
            else:
                await self._sleep(self.poll_interval)

        logger.warning("Transaction confirmation timed out after %d attempts", attempts)
        return None

    async def status(self) -> LedgerStatus:
        """Wallet deployment and balance. Never raises."""
        if not self.configured:
            return LedgerStatus(mode="demo", detail="No signing key configured")
        assert self.client is not None and self.wallet is not None

        address = self.wallet.address
        try:
            if not await self.client.is_deployed(address):
                return LedgerStatus(
                    mode="active",
                    address=address,
                    deployed=False,
                    balance="0",
                    detail="Wallet contract not deployed yet",
                )
            balance = await self.client.get_balance(address)
        except LedgerError as e:
            if e.details.get("status_code") == 429:
                logger.error("Rate limited by the ledger API")
                detail = "Rate limited by the ledger API"
            else:
                logger.error("Failed to read wallet state: %s", e)
                detail = str(e)
            return LedgerStatus(mode="active", address=address, detail=detail)
        except Exception as e:
            logger.error("Failed to read wallet state: %s", e)
            return LedgerStatus(mode="active", address=address, detail=str(e))

        return LedgerStatus(
            mode="active", address=address, deployed=True, balance=from_nano(balance)
        )
