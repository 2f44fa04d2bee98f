"""Tests for the dispatcher state machine."""

import asyncio
from dataclasses import replace

import pytest

from tao_airdrop.batch import Chunk, split
from tao_airdrop.client import RejectReason, SubmitResult
from tao_airdrop.dispatch import (
    BUILD_FAILED,
    WINDOW_UNAVAILABLE,
    DispatchState,
    Dispatcher,
    dispatch,
)
from tao_airdrop.errors import EmptyChunk, SubmissionError, WindowFetchError
from tao_airdrop.outcome import DEADLINE_EXCEEDED, OutcomeStatus
from tests.conftest import FakeClock, FakeLedger, make_addresses


def run(dispatcher: Dispatcher, chunks):
    return asyncio.run(dispatcher.run(chunks))


class TestFullRun:
    def test_fifty_recipients_all_succeed(self, ledger, config, clock) -> None:
        addresses = make_addresses(50)
        dispatcher = Dispatcher(ledger, config, clock=clock, sleep=clock.sleep)
        tracker = run(dispatcher, split(addresses, config.chunk_size))

        assert [len(op.instructions) for op in ledger.submitted] == [22, 22, 6]
        summary = tracker.summary()
        assert len(summary.succeeded) == 50
        assert summary.failed == []
        assert summary.skipped == []
        assert summary.succeeded == addresses
        assert dispatcher.state == DispatchState.TERMINATED
        assert tracker.closed

    def test_operations_carry_config(self, ledger, config, clock) -> None:
        dispatcher = Dispatcher(ledger, config, clock=clock, sleep=clock.sleep)
        run(dispatcher, split(make_addresses(3), 2))

        op = ledger.submitted[0]
        assert op.instructions[0].amount == config.amount_per_recipient
        assert op.instructions[0].source == config.source_account
        assert op.window == dispatcher.window

    def test_chunks_issued_in_order(self, ledger, config, clock) -> None:
        cfg = replace(config, min_submit_delay=0.5)
        dispatcher = Dispatcher(ledger, cfg, clock=clock, sleep=clock.sleep)
        run(dispatcher, split(make_addresses(10), 2))
        assert [op.chunk_index for op in ledger.submitted] == [0, 1, 2, 3, 4]
        assert list(dispatcher.issued_at) == [0, 1, 2, 3, 4]

    def test_no_chunks(self, ledger, config, clock) -> None:
        dispatcher = Dispatcher(ledger, config, clock=clock, sleep=clock.sleep)
        tracker = run(dispatcher, [])
        assert len(tracker) == 0
        assert dispatcher.state == DispatchState.TERMINATED

    def test_dispatch_helper_splits(self, ledger, config) -> None:
        tracker = asyncio.run(dispatch(make_addresses(5), ledger, replace(config, chunk_size=2)))
        assert len(tracker.records) == 3

    def test_dispatcher_runs_once(self, ledger, config, clock) -> None:
        dispatcher = Dispatcher(ledger, config, clock=clock, sleep=clock.sleep)
        run(dispatcher, split(make_addresses(2), 1))
        with pytest.raises(RuntimeError):
            run(dispatcher, split(make_addresses(2), 1))

    def test_empty_chunk_is_caller_error(self, ledger, config) -> None:
        with pytest.raises(EmptyChunk):
            run(Dispatcher(ledger, config), [Chunk(index=0, recipients=())])
        assert ledger.fetches == 0


class TestDeadline:
    def test_zero_budget_skips_everything(self, ledger, config, clock) -> None:
        dispatcher = Dispatcher(ledger, replace(config, max_duration=0), clock=clock, sleep=clock.sleep)
        tracker = run(dispatcher, split(make_addresses(50), 22))

        assert ledger.submitted == []
        assert [r.status for r in tracker.records] == [OutcomeStatus.SKIPPED] * 3
        assert all(r.reason == DEADLINE_EXCEEDED for r in tracker.records)
        assert len(tracker.summary().skipped) == 50
        assert dispatcher.state == DispatchState.TERMINATED

    def test_chunks_after_deadline_are_skipped(self, ledger, config, clock) -> None:
        cfg = replace(config, max_duration=2.5, min_submit_delay=1.0)
        dispatcher = Dispatcher(ledger, cfg, clock=clock, sleep=clock.sleep)
        tracker = run(dispatcher, split(make_addresses(10), 2))

        statuses = [r.status for r in tracker.records]
        assert statuses == [
            OutcomeStatus.SUCCEEDED,
            OutcomeStatus.SUCCEEDED,
            OutcomeStatus.SUCCEEDED,
            OutcomeStatus.SKIPPED,
            OutcomeStatus.SKIPPED,
        ]
        assert dispatcher.issued_at == {0: 0.0, 1: 1.0, 2: 2.0}
        assert all(t < dispatcher.run_state.deadline for t in dispatcher.issued_at.values())
        assert dispatcher.run_state.next_chunk_index == 3

    def test_no_chunk_before_cutoff_is_skipped(self, ledger, config, clock) -> None:
        cfg = replace(config, max_duration=3.0, min_submit_delay=0.75)
        dispatcher = Dispatcher(ledger, cfg, clock=clock, sleep=clock.sleep)
        tracker = run(dispatcher, split(make_addresses(20), 1))

        statuses = [r.status for r in tracker.records]
        first_skipped = statuses.index(OutcomeStatus.SKIPPED)
        assert OutcomeStatus.SKIPPED not in statuses[:first_skipped]
        assert set(statuses[first_skipped:]) == {OutcomeStatus.SKIPPED}
        assert len(dispatcher.issued_at) == first_skipped

    def test_deadline_anchored_at_running_entry(self, config) -> None:
        clock = FakeClock(start=1000.0)
        ledger = FakeLedger()
        dispatcher = Dispatcher(ledger, replace(config, max_duration=5), clock=clock, sleep=clock.sleep)
        run(dispatcher, split(make_addresses(2), 1))
        assert dispatcher.run_state.start == 1000.0
        assert dispatcher.run_state.deadline == 1005.0


class TestThrottle:
    def test_gap_between_issuances(self, ledger, config, clock) -> None:
        cfg = replace(config, min_submit_delay=0.25)
        dispatcher = Dispatcher(ledger, cfg, clock=clock, sleep=clock.sleep)
        run(dispatcher, split(make_addresses(12), 3))

        times = [dispatcher.issued_at[i] for i in sorted(dispatcher.issued_at)]
        assert len(times) == 4
        for earlier, later in zip(times, times[1:]):
            assert later - earlier >= 0.25

    def test_first_chunk_not_delayed(self, ledger, config, clock) -> None:
        dispatcher = Dispatcher(ledger, replace(config, min_submit_delay=5), clock=clock, sleep=clock.sleep)
        run(dispatcher, split(make_addresses(1), 1))
        assert clock.sleeps == []
        assert dispatcher.issued_at == {0: 0.0}

    def test_real_clock_gap(self, ledger, config) -> None:
        cfg = replace(config, min_submit_delay=0.02)
        dispatcher = Dispatcher(ledger, cfg)
        run(dispatcher, split(make_addresses(4), 1))

        times = [dispatcher.issued_at[i] for i in sorted(dispatcher.issued_at)]
        for earlier, later in zip(times, times[1:]):
            assert later - earlier >= 0.02


class TestFireAndForget:
    def test_issuance_does_not_wait_for_confirmation(self, config, clock) -> None:
        class GatedLedger(FakeLedger):
            def __init__(self):
                super().__init__()
                self.gate = asyncio.Event()

            async def submit(self, operation):
                self.submitted.append(operation)
                if len(self.submitted) == 3:
                    self.gate.set()
                await self.gate.wait()
                return SubmitResult.ok()

        ledger = GatedLedger()
        cfg = replace(config, min_submit_delay=0.1, confirm_timeout=2.0)
        dispatcher = Dispatcher(ledger, cfg, clock=clock, sleep=clock.sleep)
        tracker = run(dispatcher, split(make_addresses(3), 1))

        assert [r.status for r in tracker.records] == [OutcomeStatus.SUCCEEDED] * 3
        assert dispatcher.in_flight == 0

    def test_confirmation_timeout_is_a_chunk_failure(self, config) -> None:
        ledger = FakeLedger(submit_delay=1.0)
        cfg = replace(config, confirm_timeout=0.05)
        tracker = run(Dispatcher(ledger, cfg), split(make_addresses(2), 1))

        assert [r.reason for r in tracker.records] == [RejectReason.NETWORK_TIMEOUT] * 2
        assert [r.status for r in tracker.records] == [OutcomeStatus.FAILED] * 2


class TestFailureIsolation:
    def test_rejections_do_not_abort(self, config, clock) -> None:
        ledger = FakeLedger(results={
            1: SubmitResult.rejected(RejectReason.INSUFFICIENT_FUNDS, "balance too low"),
            2: SubmissionError("malformed_instruction", "bad dest"),
            3: RuntimeError("socket exploded"),
        })
        dispatcher = Dispatcher(ledger, config, clock=clock, sleep=clock.sleep)
        tracker = run(dispatcher, split(make_addresses(10), 2))

        records = tracker.records
        assert [r.status for r in records] == [
            OutcomeStatus.SUCCEEDED,
            OutcomeStatus.FAILED,
            OutcomeStatus.FAILED,
            OutcomeStatus.FAILED,
            OutcomeStatus.SUCCEEDED,
        ]
        assert records[1].reason == RejectReason.INSUFFICIENT_FUNDS
        assert records[2].reason == RejectReason.MALFORMED_INSTRUCTION
        assert records[3].reason == RejectReason.OTHER
        assert records[3].message == "socket exploded"

        summary = tracker.summary()
        assert len(summary.failed) == 6
        assert set(summary.failures) == {1, 2, 3}

    def test_initial_window_failure_is_fatal(self, config, clock) -> None:
        ledger = FakeLedger(fetch_outcomes=[ConnectionError("no route")])
        dispatcher = Dispatcher(ledger, config, clock=clock, sleep=clock.sleep)

        with pytest.raises(WindowFetchError):
            run(dispatcher, split(make_addresses(5), 2))
        assert len(dispatcher.tracker) == 0
        assert ledger.submitted == []
        assert dispatcher.state == DispatchState.TERMINATED

    def test_build_failure_recorded(self, ledger, config, clock, monkeypatch) -> None:
        from tao_airdrop import dispatch as dispatch_module
        from tao_airdrop.errors import ConfigError

        def broken_build(*args, **kwargs):
            raise ConfigError("no")

        monkeypatch.setattr(dispatch_module, "build", broken_build)
        tracker = run(Dispatcher(ledger, config, clock=clock, sleep=clock.sleep), split(make_addresses(2), 1))
        assert [r.reason for r in tracker.records] == [BUILD_FAILED, BUILD_FAILED]


class TestWindowRefresh:
    def test_stale_rejection_triggers_refetch(self, config, clock) -> None:
        ledger = FakeLedger(results={
            1: SubmitResult.rejected(RejectReason.STALE_WINDOW, "Transaction is outdated"),
        })
        cfg = replace(config, min_submit_delay=0.1)
        dispatcher = Dispatcher(ledger, cfg, clock=clock, sleep=clock.sleep)
        tracker = run(dispatcher, split(make_addresses(8), 2))

        assert ledger.fetches == 2
        assert dispatcher.window_fetches == 2
        statuses = [r.status for r in tracker.records]
        assert statuses.count(OutcomeStatus.FAILED) == 1
        assert tracker.records[1].reason == RejectReason.STALE_WINDOW
        assert statuses.count(OutcomeStatus.SUCCEEDED) == 3

    def test_height_past_expiry_triggers_refetch(self, config, clock) -> None:
        ledger = FakeLedger(height=100, period=4, height_step=3)
        cfg = replace(config, min_submit_delay=0.1)
        dispatcher = Dispatcher(ledger, cfg, clock=clock, sleep=clock.sleep)
        run(dispatcher, split(make_addresses(3), 1))

        assert ledger.fetches == 2
        assert ledger.submitted[0].window.reference_height == 100
        assert ledger.submitted[2].window.reference_height == 106

    def test_midrun_refetch_failure_fails_only_that_chunk(self, config, clock) -> None:
        ledger = FakeLedger(
            results={0: SubmitResult.rejected(RejectReason.STALE_WINDOW, "outdated")},
            fetch_outcomes=[None, ConnectionError("flaky")],
        )
        cfg = replace(config, min_submit_delay=0.1)
        dispatcher = Dispatcher(ledger, cfg, clock=clock, sleep=clock.sleep)
        tracker = run(dispatcher, split(make_addresses(3), 1))

        records = tracker.records
        assert records[0].reason == RejectReason.STALE_WINDOW
        assert records[1].reason == WINDOW_UNAVAILABLE
        assert records[2].status == OutcomeStatus.SUCCEEDED
        assert ledger.fetches == 3
