"""
Verification pipeline — orchestrates the full photo-to-record workflow.

Flow:
  ┌─────────┐
  │  Photo  │
  └────┬────┘
       │
  ┌────▼────┐
  │   OCR   │   ← Pillow preprocessing + Tesseract + pattern rules
  └────┬────┘
       │ licence number?  account registered?
  ┌────▼────────┐
  │ Fingerprint │   ← time-salted SHA-256
  └────┬────────┘
  ┌────▼────────┐
  │ Adjudicator │   ← digit-sum mod 5
  └────┬────────┘
  ┌────▼────────┐
  │   Ledger    │   ← best-effort, bounded confirmation wait
  └────┬────────┘
  ┌────▼────────┐
  │ Record Store│   ← last write wins per requester
  └─────────────┘

Design principles:
  - Steps are strictly sequential; no step starts before its predecessor ends.
  - Recognition failures are the only exceptions allowed in; they become an outcome here.
  - Every other "no" (no number, no account, no ledger) is an expected outcome, not an error.
  - The ledger never invents a reference: an unconfirmed record is saved with an
    empty reference, or refused entirely in strict mode.
"""

from __future__ import annotations

import logging

from . import messages
from .adjudicator import LicenseAdjudicator
from .exceptions import RecognitionFailure
from .fingerprint import generate_fingerprint
from .ledger import LedgerRecorder
from .models import (
    RecognitionResult,
    VerificationOutcome,
    VerificationRecord,
    VerificationStatus,
)
from .recognition import RecognitionExtractor
from .stores import AccountStore, VerificationRecordStore

logger = logging.getLogger(__name__)


class VerificationPipeline:
    """Runs one licence photo through recognition, adjudication and recording.

    Usage:
        pipeline = VerificationPipeline(extractor, recorder, records, accounts)
        outcome = await pipeline.run(photo_bytes, requester_id="alice")
        reply(outcome.message)
    """

    def __init__(
        self,
        extractor: RecognitionExtractor,
        recorder: LedgerRecorder,
        records: VerificationRecordStore,
        accounts: AccountStore,
        adjudicator: LicenseAdjudicator | None = None,
        require_ledger_confirmation: bool = False,
    ):
        self.extractor = extractor
        self.recorder = recorder
        self.records = records
        self.accounts = accounts
        self.adjudicator = adjudicator or LicenseAdjudicator()
        self.require_ledger_confirmation = require_ledger_confirmation

    async def run(self, image_bytes: bytes, requester_id: str) -> VerificationOutcome:
        """Execute the full pipeline for one photo from one requester."""
        # ── Step 1: Recognition ─────────────────────────────────────
        try:
            recognition = await self.extractor.extract(image_bytes)
        except RecognitionFailure as e:
            logger.exception("Recognition failed for %s: %s", requester_id, e)
            return self._outcome(VerificationStatus.RECOGNITION_FAILED)

        if recognition.document_number is None:
            return self._outcome(VerificationStatus.NO_DOCUMENT_NUMBER, recognition)

        # ── Step 2: Requester must have registered an account ───────
        account = self.accounts.get(requester_id)
        if account is None:
            return self._outcome(VerificationStatus.NO_ACCOUNT, recognition)

        # ── Step 3: Fingerprint + adjudication ──────────────────────
        logger.info(
            "Verifying licence %s for %s", recognition.document_number, requester_id
        )
        fingerprint = generate_fingerprint(recognition.document_number, requester_id, account)
        verdict = self.adjudicator.verify(recognition.document_number)

        record = VerificationRecord(
            requester_id=requester_id,
            claimed_account=account,
            document_number=recognition.document_number,
            fingerprint=fingerprint,
            verdict=verdict,
        )

        # ── Step 4: Ledger (soft-fail) ──────────────────────────────
        reference = await self.recorder.record(record)
        status = self._ledger_status(reference)

        if status is VerificationStatus.REFUSED:
            logger.warning("Ledger did not confirm; refusing to save record for %s", requester_id)
            return self._outcome(status, recognition, record)

        if reference:
            record = record.model_copy(update={"ledger_reference": reference})

        # ── Step 5: Persist ─────────────────────────────────────────
        self.records.save(record)
        return self._outcome(status, recognition, record)

    # ─── Helpers ────────────────────────────────────────────────────

    def _ledger_status(self, reference: str | None) -> VerificationStatus:
        if reference:
            return VerificationStatus.RECORDED
        if self.require_ledger_confirmation:
            return VerificationStatus.REFUSED
        if not self.recorder.configured:
            return VerificationStatus.DEMO_MODE
        return VerificationStatus.UNRECORDED

    @staticmethod
    def _outcome(
        status: VerificationStatus,
        recognition: RecognitionResult | None = None,
        record: VerificationRecord | None = None,
    ) -> VerificationOutcome:
        outcome = VerificationOutcome(
            status=status, message="", recognition=recognition, record=record
        )
        return outcome.model_copy(update={"message": messages.format_outcome(outcome)})
