"""
End-to-end pipeline tests: photo bytes in, outcome + stored record out.
OCR engine and ledger are fakes; everything between them is real.
"""

from __future__ import annotations

import re

import pytest

from fakes import ACCOUNT, FakeClock, FakeEngine, FakeLedgerClient, FakePlatform, FakeWallet, build_session
from license_oracle.models import VERDICT_ICONS, Verdict, VerificationStatus
from license_oracle.session import OracleSession

pytestmark = pytest.mark.anyio


def _session(
    engine: FakeEngine,
    platform: FakePlatform,
    clock: FakeClock,
    ledger: FakeLedgerClient | None = None,
    strict: bool = False,
) -> OracleSession:
    wallet = FakeWallet() if ledger is not None else None
    session = build_session(engine, platform, clock, ledger, wallet, require_ledger_confirmation=strict)
    session.accounts.set("alice", ACCOUNT)
    return session


# ═══════════════════════════════════════════════════════════════════════
# EARLY EXITS
# ═══════════════════════════════════════════════════════════════════════


class TestEarlyExits:
    async def test_unregistered_requester(self, session: OracleSession, png: bytes) -> None:
        outcome = await session.pipeline.run(png, "mallory")

        assert outcome.status is VerificationStatus.NO_ACCOUNT
        assert outcome.saved is False
        assert outcome.recognition.document_number == "D5555000"
        assert "/setwallet" in outcome.message
        assert session.records.size() == 0

    async def test_no_document_number(self, platform: FakePlatform, clock: FakeClock, png: bytes) -> None:
        session = _session(FakeEngine(text="BLURRY\nPHOTO"), platform, clock)
        outcome = await session.pipeline.run(png, "alice")

        assert outcome.status is VerificationStatus.NO_DOCUMENT_NUMBER
        assert outcome.message.startswith("❌ Could not extract license number from image.")
        assert "OCR Text:\nBLURRY\nPHOTO" in outcome.message
        assert session.records.size() == 0

    async def test_number_checked_before_account(
        self, platform: FakePlatform, clock: FakeClock, png: bytes
    ) -> None:
        session = build_session(FakeEngine(text="nothing"), platform, clock)
        outcome = await session.pipeline.run(png, "nobody")
        assert outcome.status is VerificationStatus.NO_DOCUMENT_NUMBER

    async def test_recognition_failure(self, session: OracleSession) -> None:
        session.accounts.set("alice", ACCOUNT)
        outcome = await session.pipeline.run(b"not an image", "alice")

        assert outcome.status is VerificationStatus.RECOGNITION_FAILED
        assert outcome.recognition is None
        assert outcome.message == "❌ Error processing license image. Please try again."
        assert session.records.size() == 0

    async def test_engine_crash(self, platform: FakePlatform, clock: FakeClock, png: bytes) -> None:
        session = _session(FakeEngine(error=OSError("tesseract missing")), platform, clock)
        outcome = await session.pipeline.run(png, "alice")
        assert outcome.status is VerificationStatus.RECOGNITION_FAILED


# ═══════════════════════════════════════════════════════════════════════
# LEDGER MODES
# ═══════════════════════════════════════════════════════════════════════


class TestLedgerModes:
    async def test_demo_mode_saves_without_reference(
        self, engine: FakeEngine, platform: FakePlatform, clock: FakeClock, png: bytes
    ) -> None:
        session = _session(engine, platform, clock)
        outcome = await session.pipeline.run(png, "alice")

        assert outcome.status is VerificationStatus.DEMO_MODE
        assert outcome.saved is True
        record = session.records.get("alice")
        assert record.ledger_reference == ""
        assert record.verdict is Verdict.VALID
        assert record.claimed_account == ACCOUNT
        assert re.fullmatch(r"[0-9a-f]{64}", record.fingerprint)
        assert "Demo Mode" in outcome.message
        assert "Tx Hash" not in outcome.message

    async def test_recorded(self, engine: FakeEngine, platform: FakePlatform, clock: FakeClock, png: bytes) -> None:
        ledger = FakeLedgerClient(seqnos=[5, 6])
        session = _session(engine, platform, clock, ledger)
        outcome = await session.pipeline.run(png, "alice")

        assert outcome.status is VerificationStatus.RECORDED
        assert session.records.get("alice").ledger_reference == "ab" * 32
        assert outcome.record.ledger_reference == "ab" * 32
        assert f"https://testnet.tonviewer.com/transaction/{'ab' * 32}" in outcome.message
        assert ledger.submitted == ["boc-5"]

    async def test_payload_carries_record(
        self, engine: FakeEngine, platform: FakePlatform, clock: FakeClock, png: bytes
    ) -> None:
        session = _session(engine, platform, clock, FakeLedgerClient(seqnos=[5, 6]))
        outcome = await session.pipeline.run(png, "alice")

        payload = session.recorder.wallet.transfers[0]["payload"]
        assert payload.requester_id == "alice"
        assert payload.fingerprint.hex() == outcome.record.fingerprint
        assert payload.verdict_code == 1

    async def test_unconfirmed_is_saved_without_reference(
        self, engine: FakeEngine, platform: FakePlatform, clock: FakeClock, png: bytes
    ) -> None:
        session = _session(engine, platform, clock, FakeLedgerClient(seqnos=[5]))
        outcome = await session.pipeline.run(png, "alice")

        assert outcome.status is VerificationStatus.UNRECORDED
        assert session.records.get("alice").ledger_reference == ""
        assert "Not recorded" in outcome.message

    async def test_strict_mode_refuses_unconfirmed(
        self, engine: FakeEngine, platform: FakePlatform, clock: FakeClock, png: bytes
    ) -> None:
        session = _session(engine, platform, clock, FakeLedgerClient(seqnos=[5]), strict=True)
        outcome = await session.pipeline.run(png, "alice")

        assert outcome.status is VerificationStatus.REFUSED
        assert outcome.saved is False
        assert "alice" not in session.records

    async def test_strict_mode_keeps_confirmed(
        self, engine: FakeEngine, platform: FakePlatform, clock: FakeClock, png: bytes
    ) -> None:
        session = _session(engine, platform, clock, FakeLedgerClient(seqnos=[5, 6]), strict=True)
        outcome = await session.pipeline.run(png, "alice")
        assert outcome.status is VerificationStatus.RECORDED
        assert "alice" in session.records


# ═══════════════════════════════════════════════════════════════════════
# VERDICTS & OVERWRITES
# ═══════════════════════════════════════════════════════════════════════


class TestVerdicts:
    @pytest.mark.parametrize(
        "number, verdict",
        [("D5555000", Verdict.VALID), ("B4990000", Verdict.EXPIRED), ("C9950000", Verdict.INVALID)],
    )
    async def test_verdict_in_record_and_summary(
        self, number: str, verdict: Verdict, platform: FakePlatform, clock: FakeClock, png: bytes
    ) -> None:
        session = _session(FakeEngine(text=f"DL {number}"), platform, clock)
        outcome = await session.pipeline.run(png, "alice")

        assert outcome.record.document_number == number
        assert outcome.record.verdict is verdict
        assert f"Oracle Status: {VERDICT_ICONS[verdict]} {verdict.value}" in outcome.message

    async def test_reverification_overwrites(
        self, engine: FakeEngine, platform: FakePlatform, clock: FakeClock, png: bytes
    ) -> None:
        session = _session(engine, platform, clock)
        await session.pipeline.run(png, "alice")
        engine.text = "DL C9950000"
        await session.pipeline.run(png, "alice")

        assert session.records.size() == 1
        assert session.records.get("alice").document_number == "C9950000"
        assert session.records.get("alice").verdict is Verdict.INVALID

    async def test_summary_includes_confidence_and_expiry(
        self, engine: FakeEngine, platform: FakePlatform, clock: FakeClock, png: bytes
    ) -> None:
        session = _session(engine, platform, clock)
        outcome = await session.pipeline.run(png, "alice")

        assert "• Confidence: 87.50%" in outcome.message
        assert "• Expiration: 08/31/2030" in outcome.message
        assert "• License Number: D5555000" in outcome.message
