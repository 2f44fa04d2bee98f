"""
Interface to the ledger network as seen by the dispatcher.

Any object with ``fetch_freshness_token``, ``current_height`` and ``submit``
coroutines can drive a run; ``tao_airdrop.subtensor.SubtensorLedger`` is the
Bittensor implementation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Optional, Protocol

from tao_airdrop.window import FreshnessWindow

if TYPE_CHECKING:
    from tao_airdrop.batch import Operation


class RejectReason(StrEnum):
    STALE_WINDOW = "stale_window"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    MALFORMED_INSTRUCTION = "malformed_instruction"
    NETWORK_TIMEOUT = "network_timeout"
    OTHER = "other"

    @classmethod
    def parse(cls, value) -> "RejectReason":
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


# Substring markers in Substrate error text, checked in order.
_REASON_MARKERS: list[tuple[RejectReason, tuple[str, ...]]] = [
    (RejectReason.STALE_WINDOW, (
        "outdated", "ancientbirthblock", "ancient birth block", "stale",
    )),
    (RejectReason.INSUFFICIENT_FUNDS, (
        "inability to pay", "insufficientbalance", "insufficient balance",
        "balance too low", "fundsunavailable", "expendability",
    )),
    (RejectReason.MALFORMED_INSTRUCTION, (
        "badproof", "bad signature", "invalid ss58", "badorigin",
        "cannot decode", "failed to decode", "deadaccount", "existentialdeposit",
    )),
    (RejectReason.NETWORK_TIMEOUT, (
        "timed out", "timeout", "connection closed", "connection refused",
    )),
]


def classify_error(message: str) -> RejectReason:
    """Map a chain or transport error message onto a RejectReason."""
    text = (message or "").lower()
    for reason, markers in _REASON_MARKERS:
        if any(m in text for m in markers):
            return reason
    return RejectReason.OTHER


@dataclass(frozen=True)
class SubmitResult:
    """Network verdict for one operation."""

    accepted: bool
    reason: Optional[RejectReason] = None
    message: str = ""
    extrinsic_hash: Optional[str] = None
    block_hash: Optional[str] = None

    @classmethod
    def ok(cls, extrinsic_hash: Optional[str] = None, block_hash: Optional[str] = None) -> "SubmitResult":
        return cls(accepted=True, extrinsic_hash=extrinsic_hash, block_hash=block_hash)

    @classmethod
    def rejected(cls, reason: RejectReason | str, message: str = "") -> "SubmitResult":
        return cls(accepted=False, reason=RejectReason.parse(reason), message=message)


class LedgerClient(Protocol):
    async def fetch_freshness_token(self) -> FreshnessWindow: ...

    async def current_height(self) -> int: ...

    async def submit(self, operation: "Operation") -> SubmitResult: ...
