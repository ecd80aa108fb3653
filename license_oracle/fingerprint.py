"""
Time-salted licence fingerprints.

The fingerprint identifies one verification ATTEMPT, not one licence: the
current epoch milliseconds are mixed into the digest, so re-submitting the
same licence later yields a different fingerprint.
"""

from __future__ import annotations

import hashlib
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)

SEPARATOR = "_"


def _epoch_ms() -> int:
    return time.time_ns() // 1_000_000


def generate_fingerprint(
    document_number: str,
    requester_id: str,
    claimed_account: str,
    *,
    now_ms: Callable[[], int] = _epoch_ms,
) -> str:
    """SHA-256 over 'number_requester_account_millis', lowercase hex (64 chars)."""
    timestamp = now_ms()
    data = SEPARATOR.join((document_number, requester_id, claimed_account, str(timestamp)))
    digest = hashlib.sha256(data.encode("utf-8")).hexdigest()
    logger.debug(
        "Fingerprint for licence %s / requester %s at %d: %s",
        document_number, requester_id, timestamp, digest,
    )
    return digest
