"""
Per-chunk outcome log and end-of-run summary.

The tracker is append-only: one record per chunk, never overwritten. The
summary flattens chunk records into recipient lists so a retry pass can be
built from the failed and skipped sets alone.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Optional

from tao_airdrop.addresses import write_addresses
from tao_airdrop.client import RejectReason
from tao_airdrop.errors import DuplicateOutcome, TrackerClosed


DEADLINE_EXCEEDED = "deadline_exceeded"


class OutcomeStatus(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class OutcomeRecord:
    """Result of one chunk attempt."""

    chunk_index: int
    recipients: tuple[str, ...]
    status: OutcomeStatus
    reason: Optional[str] = None
    message: str = ""
    extrinsic_hash: Optional[str] = None

    @classmethod
    def succeeded(
        cls, chunk_index: int, recipients, extrinsic_hash: Optional[str] = None
    ) -> "OutcomeRecord":
        return cls(
            chunk_index=chunk_index,
            recipients=tuple(recipients),
            status=OutcomeStatus.SUCCEEDED,
            extrinsic_hash=extrinsic_hash,
        )

    @classmethod
    def failed(cls, chunk_index: int, recipients, reason: str, message: str = "") -> "OutcomeRecord":
        return cls(
            chunk_index=chunk_index,
            recipients=tuple(recipients),
            status=OutcomeStatus.FAILED,
            reason=str(reason),
            message=message,
        )

    @classmethod
    def skipped(cls, chunk_index: int, recipients) -> "OutcomeRecord":
        return cls(
            chunk_index=chunk_index,
            recipients=tuple(recipients),
            status=OutcomeStatus.SKIPPED,
            reason=DEADLINE_EXCEEDED,
        )


@dataclass
class RunSummary:
    """Recipient-level view of a finished (or in-progress) run."""

    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: dict[int, str] = field(default_factory=dict)  # chunk index -> reason
    unconfirmed: list[int] = field(default_factory=list)  # timed out, may still land
    chunk_count: int = 0

    @property
    def retry_addresses(self) -> list[str]:
        """Failed followed by skipped recipients, in chunk order within each set."""
        return self.failed + self.skipped

    @property
    def complete(self) -> bool:
        return not self.failed and not self.skipped

    def to_dict(self) -> dict:
        return {
            "chunks": self.chunk_count,
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
            "skipped": list(self.skipped),
            "failures": {str(k): v for k, v in sorted(self.failures.items())},
            "unconfirmed": list(self.unconfirmed),
        }

    def render(self) -> str:
        """Human-readable summary of the run."""
        status = "COMPLETE" if self.complete else "PARTIAL"
        lines = [
            f"=== TAO Airdrop — {status} ===",
            f"Chunks: {self.chunk_count}",
            f"Succeeded: {len(self.succeeded)} recipients",
            f"Failed: {len(self.failed)} recipients",
            f"Skipped (deadline): {len(self.skipped)} recipients",
        ]
        if self.failures:
            lines.append("Failed chunks:")
            for idx, reason in sorted(self.failures.items()):
                note = " (unconfirmed, check before retrying)" if idx in self.unconfirmed else ""
                lines.append(f"  #{idx}: {reason}{note}")
        return "\n".join(lines)

    def write_retry_file(self, filepath: str | Path) -> Path:
        """Write failed and skipped recipients as a newline-delimited list."""
        return write_addresses(filepath, self.retry_addresses)


class OutcomeTracker:
    """Append-only log of OutcomeRecords, one per chunk index."""

    def __init__(self):
        self._log: list[OutcomeRecord] = []
        self._seen: set[int] = set()
        self._closed = False

    def __len__(self) -> int:
        return len(self._log)

    @property
    def closed(self) -> bool:
        return self._closed

    def record(self, record: OutcomeRecord) -> None:
        if self._closed:
            raise TrackerClosed(f"Cannot record chunk {record.chunk_index} after termination")
        if record.chunk_index in self._seen:
            raise DuplicateOutcome(f"Chunk {record.chunk_index} already recorded")
        self._seen.add(record.chunk_index)
        self._log.append(record)

    def close(self) -> None:
        self._closed = True

    @property
    def records(self) -> list[OutcomeRecord]:
        """Records ordered by chunk index, independent of confirmation order."""
        return sorted(self._log, key=lambda r: r.chunk_index)

    def by_status(self, status: OutcomeStatus) -> list[OutcomeRecord]:
        return [r for r in self.records if r.status == status]

    def summary(self) -> RunSummary:
        summary = RunSummary(chunk_count=len(self._log))
        for r in self.records:
            if r.status == OutcomeStatus.SUCCEEDED:
                summary.succeeded.extend(r.recipients)
            elif r.status == OutcomeStatus.FAILED:
                summary.failed.extend(r.recipients)
                summary.failures[r.chunk_index] = (
                    f"{r.reason}: {r.message}" if r.message else str(r.reason)
                )
                if r.reason == RejectReason.NETWORK_TIMEOUT:
                    summary.unconfirmed.append(r.chunk_index)
            else:
                summary.skipped.extend(r.recipients)
        return summary


def write_report(filepath: str | Path, tracker: OutcomeTracker) -> Path:
    """Write the full per-chunk log plus summary as JSON."""
    filepath = Path(filepath)
    report = tracker.summary().to_dict()
    report["records"] = [
        {
            "chunk_index": r.chunk_index,
            "status": str(r.status),
            "reason": r.reason,
            "message": r.message,
            "extrinsic_hash": r.extrinsic_hash,
            "recipients": list(r.recipients),
        }
        for r in tracker.records
    ]
    with open(filepath, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2)
    return filepath
