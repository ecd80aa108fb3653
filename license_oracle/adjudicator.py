"""
Deterministic licence adjudication.

Stands in for a real licensing authority. The rule is pure and reproducible
so every verdict can be predicted from the licence number alone:

    digit sum mod 5 ∈ {0, 1, 4}  → Valid
    digit sum mod 5 == 2         → Expired
    digit sum mod 5 == 3         → Invalid
    no digits at all             → Invalid
"""

from __future__ import annotations

import logging

from .models import Verdict

logger = logging.getLogger(__name__)

_VERDICT_BY_REMAINDER: dict[int, Verdict] = {
    0: Verdict.VALID,
    1: Verdict.VALID,
    2: Verdict.EXPIRED,
    3: Verdict.INVALID,
    4: Verdict.VALID,
}


def adjudicate(document_number: str) -> Verdict:
    """Map a licence number to Valid / Expired / Invalid."""
    digits = [int(ch) for ch in document_number if ch.isdecimal() and ch.isascii()]
    if not digits:
        return Verdict.INVALID
    return _VERDICT_BY_REMAINDER[sum(digits) % 5]


class LicenseAdjudicator:
    """Injectable wrapper so the pipeline can swap in a real authority."""

    def verify(self, document_number: str) -> Verdict:
        verdict = adjudicate(document_number)
        logger.info("Adjudicated licence %s: %s", document_number, verdict.value)
        return verdict
