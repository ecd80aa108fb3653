"""
In-memory stores owned by the session.

Plain dicts: every mutation is a single key assignment on the event loop
thread, so interleaved pipelines for different requesters cannot corrupt
them. Last write wins per key. Nothing survives a restart.
"""

from __future__ import annotations

import logging

from .models import VerificationRecord

logger = logging.getLogger(__name__)


class VerificationRecordStore:
    """One active VerificationRecord per requester identity."""

    def __init__(self) -> None:
        self._records: dict[str, VerificationRecord] = {}

    def save(self, record: VerificationRecord) -> None:
        replaced = record.requester_id in self._records
        self._records[record.requester_id] = record
        logger.info(
            "%s verification record for %s (%s, %d total)",
            "Replaced" if replaced else "Saved",
            record.requester_id,
            record.verdict.value,
            len(self._records),
        )

    def get(self, requester_id: str) -> VerificationRecord | None:
        return self._records.get(requester_id)

    def get_all(self) -> dict[str, VerificationRecord]:
        """Snapshot of all records, in first-insertion order."""
        return dict(self._records)

    def size(self) -> int:
        return len(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, requester_id: object) -> bool:
        return requester_id in self._records


class AccountStore:
    """requester identity → claimed ledger account address."""

    def __init__(self) -> None:
        self._accounts: dict[str, str] = {}

    def set(self, requester_id: str, account: str) -> None:
        self._accounts[requester_id] = account
        logger.info("Registered account for %s", requester_id)

    def get(self, requester_id: str) -> str | None:
        return self._accounts.get(requester_id)

    def has(self, requester_id: str) -> bool:
        return requester_id in self._accounts
