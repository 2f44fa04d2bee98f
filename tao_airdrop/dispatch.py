"""
Throttled, deadline-bounded dispatch of chunk operations.

One control loop issues chunks in strictly increasing index order. Each
submission runs as its own task so the loop never waits for confirmation;
only issuance is paced by ``min_submit_delay``. Once the deadline passes no
new operation is issued: remaining chunks are recorded as skipped and the
loop waits for in-flight submissions to resolve.

States: idle -> running -> (draining | completed) -> terminated
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Awaitable, Callable, Optional, Sequence

from tao_airdrop import window as freshness
from tao_airdrop.batch import Chunk, Operation, build, split
from tao_airdrop.client import LedgerClient, RejectReason, SubmitResult, classify_error
from tao_airdrop.config import RunConfig
from tao_airdrop.errors import AirdropError, EmptyChunk, SubmissionError, WindowFetchError
from tao_airdrop.outcome import OutcomeRecord, OutcomeTracker
from tao_airdrop.window import FreshnessWindow

log = logging.getLogger("tao_airdrop.dispatch")

WINDOW_UNAVAILABLE = "window_unavailable"
BUILD_FAILED = "build_failed"


class DispatchState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    COMPLETED = "completed"
    TERMINATED = "terminated"


@dataclass
class RunState:
    start: float
    deadline: float
    total_chunks: int
    next_chunk_index: int = 0

    def advance(self) -> None:
        self.next_chunk_index += 1

    @property
    def remaining(self) -> int:
        return self.total_chunks - self.next_chunk_index


class Dispatcher:
    """
    Drives one run over a list of chunks.

    ``clock`` and ``sleep`` are injectable so deadline and throttle behaviour
    can be exercised without real waiting.
    """

    def __init__(
        self,
        client: LedgerClient,
        config: RunConfig,
        tracker: Optional[OutcomeTracker] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.config = config
        self.tracker = tracker if tracker is not None else OutcomeTracker()
        self.clock = clock
        self.sleep = sleep

        self.state = DispatchState.IDLE
        self.run_state: Optional[RunState] = None
        self.window: Optional[FreshnessWindow] = None
        self.window_fetches = 0
        self.issued_at: dict[int, float] = {}

        self._amount = config.amount_per_recipient
        self._last_issue: Optional[float] = None
        self._window_stale = False
        self._pending: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    async def run(self, chunks: Sequence[Chunk]) -> OutcomeTracker:
        """
        Issue every chunk, then wait for all submissions to resolve.

        Raises:
            EmptyChunk: a chunk with no recipients was passed in.
            WindowFetchError: no initial freshness window; nothing is recorded.
        """
        if self.state != DispatchState.IDLE:
            raise RuntimeError(f"Dispatcher already used (state={self.state})")

        chunks = list(chunks)
        for chunk in chunks:
            if not chunk.recipients:
                raise EmptyChunk(f"Chunk {chunk.index} has no recipients")

        try:
            self.window = await self._fetch_window()
        except WindowFetchError:
            log.error("Initial freshness window unavailable, aborting run")
            self._terminate()
            raise

        now = self.clock()
        self.run_state = RunState(
            start=now,
            deadline=now + self.config.max_duration,
            total_chunks=len(chunks),
        )
        self.state = DispatchState.RUNNING
        log.info(
            "Dispatching %d chunks (deadline %.1fs, delay %.3fs)",
            len(chunks), self.config.max_duration, self.config.min_submit_delay,
        )

        try:
            while self.run_state.next_chunk_index < self.run_state.total_chunks:
                chunk = chunks[self.run_state.next_chunk_index]

                if self._deadline_passed():
                    self._drain(chunks)
                    break
                await self._throttle()
                if self._deadline_passed():
                    self._drain(chunks)
                    break

                await self._issue(chunk)
                self.run_state.advance()
            else:
                self.state = DispatchState.COMPLETED

            if self._pending:
                log.info("Waiting for %d in-flight submissions", len(self._pending))
                await asyncio.gather(*list(self._pending))
        finally:
            for task in list(self._pending):
                task.cancel()
            self._terminate()

        return self.tracker

    def _terminate(self) -> None:
        self.state = DispatchState.TERMINATED
        self.tracker.close()

    def _deadline_passed(self) -> bool:
        return self.clock() >= self.run_state.deadline

    def _drain(self, chunks: list[Chunk]) -> None:
        self.state = DispatchState.DRAINING
        remaining = chunks[self.run_state.next_chunk_index:]
        log.warning(
            "Deadline reached after %d/%d chunks, skipping %d",
            self.run_state.next_chunk_index, self.run_state.total_chunks, self.run_state.remaining,
        )
        for chunk in remaining:
            self.tracker.record(OutcomeRecord.skipped(chunk.index, chunk.recipients))

    async def _throttle(self) -> None:
        if self._last_issue is None:
            return
        while True:
            elapsed = self.clock() - self._last_issue
            if elapsed >= self.config.min_submit_delay:
                return
            await self.sleep(self.config.min_submit_delay - elapsed)

    async def _fetch_window(self) -> FreshnessWindow:
        window = await freshness.fetch(self.client)
        self.window_fetches += 1
        self._window_stale = False
        return window

    async def _window_expired(self) -> bool:
        if self._window_stale:
            return True
        try:
            height = await self.client.current_height()
        except Exception as e:
            log.warning("Could not read current height, keeping window: %s", e)
            return False
        return not self.window.is_valid(height)

    async def _issue(self, chunk: Chunk) -> None:
        if await self._window_expired():
            log.info("Freshness window expired, refetching before chunk %d", chunk.index)
            try:
                self.window = await self._fetch_window()
            except WindowFetchError as e:
                log.warning("Chunk %d not sent: %s", chunk.index, e)
                self.tracker.record(
                    OutcomeRecord.failed(chunk.index, chunk.recipients, WINDOW_UNAVAILABLE, str(e))
                )
                return

        try:
            operation = build(
                chunk,
                source_account=self.config.source_account,
                signer=self.config.signer,
                amount_per_recipient=self._amount,
                window=self.window,
                mode=self.config.mode,
                keep_alive=self.config.keep_alive,
            )
        except AirdropError as e:
            self.tracker.record(
                OutcomeRecord.failed(chunk.index, chunk.recipients, BUILD_FAILED, str(e))
            )
            return

        self._last_issue = self.clock()
        self.issued_at[chunk.index] = self._last_issue
        log.debug(
            "Issuing chunk %d/%d (%d recipients)",
            chunk.index + 1, self.run_state.total_chunks, len(chunk),
        )

        task = asyncio.create_task(self._confirm(operation), name=f"chunk-{chunk.index}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _confirm(self, operation: Operation) -> None:
        try:
            result = await asyncio.wait_for(
                self.client.submit(operation), timeout=self.config.confirm_timeout
            )
        except asyncio.TimeoutError:
            result = SubmitResult.rejected(
                RejectReason.NETWORK_TIMEOUT,
                f"no confirmation within {self.config.confirm_timeout}s",
            )
        except SubmissionError as e:
            result = SubmitResult.rejected(e.reason, e.message)
        except Exception as e:
            log.error("Chunk %d submission error: %s", operation.chunk_index, e)
            result = SubmitResult.rejected(classify_error(str(e)), str(e))

        self._handle_result(operation, result)

    def _handle_result(self, operation: Operation, result: SubmitResult) -> None:
        if result.accepted:
            log.info(
                "Chunk %d accepted (%d recipients) %s",
                operation.chunk_index, len(operation.instructions), result.extrinsic_hash or "",
            )
            self.tracker.record(
                OutcomeRecord.succeeded(
                    operation.chunk_index, operation.recipients, result.extrinsic_hash
                )
            )
            return

        if result.reason == RejectReason.STALE_WINDOW and operation.window == self.window:
            self._window_stale = True

        log.warning(
            "Chunk %d rejected: %s %s", operation.chunk_index, result.reason, result.message
        )
        self.tracker.record(
            OutcomeRecord.failed(
                operation.chunk_index, operation.recipients, result.reason, result.message
            )
        )


async def dispatch(
    addresses: Sequence[str],
    client: LedgerClient,
    config: RunConfig,
    **kwargs,
) -> OutcomeTracker:
    """Split addresses by ``config.chunk_size`` and run them through a Dispatcher."""
    chunks = split(addresses, config.chunk_size)
    return await Dispatcher(client, config, **kwargs).run(chunks)
