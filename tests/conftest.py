"""Fixtures wiring the in-memory fakes from tests/fakes.py."""

from __future__ import annotations

import pytest

from fakes import FakeClock, FakeEngine, FakePlatform, build_session, make_png
from license_oracle.exceptions import AgentPlatformError
from license_oracle.session import OracleSession


# ─── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine(text="DRIVER LICENSE\nDL D5555000\nEXP 08/31/2030")


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def png() -> bytes:
    return make_png()


@pytest.fixture
def session(engine: FakeEngine, platform: FakePlatform, clock: FakeClock) -> OracleSession:
    return build_session(engine, platform, clock)


@pytest.fixture
def platform_error() -> AgentPlatformError:
    return AgentPlatformError("OpenServ returned HTTP 500", details={"status_code": 500})
