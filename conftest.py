"""Pytest configuration — ensures the project root is importable."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))


@pytest.fixture
def anyio_backend():
    """Async tests run on asyncio only; the broker and recorder use asyncio.sleep."""
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep a developer's .env and TON credentials out of the suite."""
    monkeypatch.chdir(tmp_path)
    for name in ("TON_MNEMONIC", "TON_API_KEY", "TELEGRAM_WEBHOOK_SECRET"):
        monkeypatch.delenv(name, raising=False)
