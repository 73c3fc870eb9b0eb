"""Shared test fixtures for extrabatch."""

from __future__ import annotations

from pathlib import Path

import pytest

from extrabatch.diff_engine import DiffEngine
from extrabatch.policy import PolicyEnforcer
from extrabatch.rate_limiter import RateLimiter
from extrabatch.request_builder import RequestBuilder, RequestOrigin
from tests.fakes import FakeClock, FakeSnapshotService, FakeTransport, make_spreadsheet

GOLDEN_DIR = Path(__file__).parent / "golden"


@pytest.fixture
def golden_dir() -> Path:
    return GOLDEN_DIR


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rate_limiter(clock: FakeClock) -> RateLimiter:
    """RateLimiter on a fake clock, so waits never block."""
    return RateLimiter(clock=clock, sleep=clock.sleep)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport({"sheet-1": make_spreadsheet("sheet-1")})


@pytest.fixture
def snapshot_service() -> FakeSnapshotService:
    return FakeSnapshotService()


@pytest.fixture
def diff_engine(transport: FakeTransport, rate_limiter: RateLimiter) -> DiffEngine:
    return DiffEngine(transport, rate_limiter=rate_limiter)


@pytest.fixture
def policy_enforcer() -> PolicyEnforcer:
    return PolicyEnforcer()


@pytest.fixture
def builder() -> RequestBuilder:
    return RequestBuilder()


@pytest.fixture
def origin() -> RequestOrigin:
    return RequestOrigin(spreadsheet_id="sheet-1", source_tool="tests")
