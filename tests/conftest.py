"""Shared pytest fixtures and test doubles for tao-airdrop tests."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from tao_airdrop.batch import Operation
from tao_airdrop.client import SubmitResult
from tao_airdrop.config import RunConfig
from tao_airdrop.window import FreshnessWindow

# Well-known Substrate development accounts
ALICE = "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"
BOB = "5FHneW46xGXgs5mUiveU4sbTyGBzmstUspZC92UhjJM694ty"
CHARLIE = "5FLSigC9HGRKVhB9FiEo4Y3koPsNmBmLJbpXg2mp1hXcS59Y"
DAVE = "5DAAnrj7VHTznn2AWBemMuyBwZWs6FNFjdyVXUeYum3PTXFy"
EVE = "5HGjWAeFDfFCWPsjFQdVV2Msvz2XtMktvgocEZcCj68kUMaw"

SAMPLE_ADDRESSES = [ALICE, BOB, CHARLIE, DAVE, EVE]


def make_addresses(count: int) -> list[str]:
    """``count`` addresses cycling through the development accounts."""
    return [SAMPLE_ADDRESSES[i % len(SAMPLE_ADDRESSES)] for i in range(count)]


def write_lines(path: Path, lines: list[str]) -> Path:
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


class FakeClock:
    """Manual clock; ``sleep`` advances time and lets pending tasks run."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        for _ in range(10):
            await asyncio.sleep(0)


class FakeLedger:
    """
    In-memory LedgerClient.

    ``results`` maps chunk index to a SubmitResult or an exception to raise.
    ``fetch_outcomes`` is consumed one entry per window fetch; an exception
    entry makes that fetch fail, None lets it succeed.
    """

    def __init__(
        self,
        height: int = 100,
        period: int = 64,
        results: dict[int, Any] | None = None,
        fetch_outcomes: list[Any] | None = None,
        height_step: int = 0,
        submit_delay: float = 0.0,
    ):
        self.height = height
        self.period = period
        self.results = dict(results or {})
        self.fetch_outcomes = list(fetch_outcomes or [])
        self.height_step = height_step
        self.submit_delay = submit_delay
        self.fetches = 0
        self.submitted: list[Operation] = []
        self.address = ALICE

    async def __aenter__(self) -> "FakeLedger":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def fetch_freshness_token(self) -> FreshnessWindow:
        self.fetches += 1
        if self.fetch_outcomes:
            outcome = self.fetch_outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
        return FreshnessWindow(
            reference_token=f"0x{self.height:064x}",
            reference_height=self.height,
            expiry_height=self.height + self.period - 1,
            fetched_at=0.0,
        )

    async def current_height(self) -> int:
        return self.height

    async def submit(self, operation: Operation) -> SubmitResult:
        self.submitted.append(operation)
        self.height += self.height_step
        if self.submit_delay:
            await asyncio.sleep(self.submit_delay)
        outcome = self.results.get(operation.chunk_index)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome or SubmitResult.ok(extrinsic_hash=f"0x{operation.chunk_index:04x}")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def config() -> RunConfig:
    """A run config with a generous deadline and no throttle."""
    return RunConfig(
        chunk_size=22,
        max_duration=60.0,
        min_submit_delay=0.0,
        source_account=ALICE,
        signer=ALICE,
    )


@pytest.fixture
def window() -> FreshnessWindow:
    return FreshnessWindow(
        reference_token="0x" + "ab" * 32,
        reference_height=100,
        expiry_height=163,
        fetched_at=1.0,
    )


@pytest.fixture
def recipients_file(tmp_path: Path) -> Path:
    return write_lines(tmp_path / "recipients.txt", make_addresses(50))
