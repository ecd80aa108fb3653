#!/usr/bin/env python3
"""
License Oracle — Entry Point
=============================

Runs the verification pipeline once on a local licence photo and prints the
outcome. Uses the same configuration as the server: without TON_MNEMONIC the
ledger step runs in demo mode.

Usage:
    python main.py licence.jpg --account EQCx...YtR9
    python main.py licence.jpg --requester alice --account EQCx...YtR9
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from license_oracle.config import configure_logging, load_settings
from license_oracle.exceptions import ConfigurationError
from license_oracle.models import VERDICT_ICONS, VerificationOutcome
from license_oracle.session import OracleSession
from license_oracle.validators import is_valid_account

logger = logging.getLogger("license_oracle.main")


# ─── ANSI Color Constants ───────────────────────────────────────────

_RED = "\033[91m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"
_BOLD = "\033[1m"
_RESET = "\033[0m"
_WIDTH = 72


# ─── Pretty Printer ─────────────────────────────────────────────────


def print_outcome(outcome: VerificationOutcome) -> int:
    """Pretty-print the pipeline outcome.

    Returns:
        0 if a record was saved, 1 otherwise.
    """
    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  LICENSE VERIFICATION{_RESET}")
    print(f"{'=' * _WIDTH}")
    print(f"  Status:      {outcome.status.value}")

    if outcome.recognition:
        print(f"  Confidence:  {outcome.recognition.confidence:.2f}%")
        print(f"  Number:      {outcome.recognition.document_number or '-'}")
        print(f"  Expiry:      {outcome.recognition.expiry_date or '-'}")

    record = outcome.record
    if record:
        print(f"{'─' * _WIDTH}")
        print(f"  Verdict:     {VERDICT_ICONS[record.verdict]} {record.verdict.value}")
        print(f"  Fingerprint: {_DIM}{record.fingerprint}{_RESET}")
        print(f"  Account:     {record.claimed_account}")
        print(f"  Ledger:      {record.ledger_reference or _DIM + 'not recorded' + _RESET}")

    print(f"{'─' * _WIDTH}")
    print(outcome.message)
    print(f"{'=' * _WIDTH}")
    if outcome.saved:
        print(f"  {_GREEN}{_BOLD}RECORD SAVED{_RESET}")
    else:
        print(f"  {_RED}{_BOLD}NO RECORD SAVED{_RESET}")
    print(f"{'=' * _WIDTH}\n")

    return 0 if outcome.saved else 1


# ─── Main ────────────────────────────────────────────────────────────


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Verify a driver's licence photo.")
    parser.add_argument("image", type=Path, help="Path to the licence photo")
    parser.add_argument("--requester", default="cli", help="Requester identity (default: cli)")
    parser.add_argument("--account", required=True, help="TON wallet address to bind to the requester")
    return parser.parse_args(argv)


async def _run(session: OracleSession, image: bytes, requester: str, account: str) -> VerificationOutcome:
    await session.start()
    try:
        session.accounts.set(requester, account)
        return await session.pipeline.run(image, requester)
    finally:
        await session.aclose()


def main(argv: list[str] | None = None) -> int:
    """Run the pipeline on one image and print the outcome."""
    args = _parse_args(argv)

    try:
        settings = load_settings()
    except ConfigurationError as e:
        configure_logging()
        logger.error("%s", e)
        return 1
    configure_logging(settings.log_level)

    if not is_valid_account(args.account):
        logger.error("Invalid TON wallet address: %s", args.account)
        return 1
    if not args.image.is_file():
        logger.error("Image not found: %s", args.image)
        return 1

    session = OracleSession.from_settings(settings)
    outcome = asyncio.run(_run(session, args.image.read_bytes(), args.requester, args.account.strip()))
    return print_outcome(outcome)


if __name__ == "__main__":
    sys.exit(main())
