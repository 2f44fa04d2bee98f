"""
Chunking and operation building for tao-airdrop.

Recipients are split positionally into fixed-size chunks. Each chunk becomes
one Operation: a list of balance transfers that is later wrapped in a
Substrate ``Utility.batch_all`` (atomic) or ``Utility.batch`` (best-effort)
call and signed under the run's freshness window.

Nothing here touches the network; signing and submission happen in
``tao_airdrop.subtensor`` and ``tao_airdrop.dispatch``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from tao_airdrop.errors import ConfigError, EmptyChunk, InvalidChunkSize
from tao_airdrop.window import FreshnessWindow


# Recipients per operation. Small enough to keep a batch extrinsic well
# under the block weight limit with transfer_keep_alive calls.
DEFAULT_CHUNK_SIZE = 22


class BatchMode(Enum):
    """Batch execution modes."""

    BATCH_ALL = "batch_all"  # Atomic, all succeed or all revert
    BATCH = "batch"  # Best-effort, failures do not revert others


@dataclass(frozen=True)
class Chunk:
    """An ordered group of recipients sent as one operation."""

    index: int
    recipients: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.recipients)


@dataclass(frozen=True)
class TransferInstruction:
    """A single balance transfer inside an operation. Amount is in RAO."""

    source: str
    destination: str
    signer: str
    amount: int


@dataclass(frozen=True)
class Operation:
    """One outbound batch of transfers, bound to a freshness window."""

    chunk_index: int
    instructions: tuple[TransferInstruction, ...]
    window: FreshnessWindow
    mode: BatchMode = BatchMode.BATCH_ALL
    keep_alive: bool = True

    @property
    def recipients(self) -> tuple[str, ...]:
        return tuple(i.destination for i in self.instructions)

    @property
    def total_amount(self) -> int:
        return sum(i.amount for i in self.instructions)

    @property
    def transfer_function(self) -> str:
        return "transfer_keep_alive" if self.keep_alive else "transfer_allow_death"


def split(addresses: Sequence[str], chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[Chunk]:
    """
    Split addresses into chunks of ``chunk_size``, preserving order.

    The last chunk may be shorter. Duplicates are kept as-is.
    """
    if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size < 1:
        raise InvalidChunkSize(f"Chunk size must be a positive integer, got {chunk_size!r}")

    return [
        Chunk(index=idx, recipients=tuple(addresses[i: i + chunk_size]))
        for idx, i in enumerate(range(0, len(addresses), chunk_size))
    ]


def build(
    chunk: Chunk,
    source_account: str,
    signer: str,
    amount_per_recipient: int,
    window: FreshnessWindow,
    mode: BatchMode = BatchMode.BATCH_ALL,
    keep_alive: bool = True,
) -> Operation:
    """
    Build the operation for a chunk: one transfer per recipient, in order.

    Raises:
        EmptyChunk: the chunk has no recipients.
        ConfigError: the amount is not a positive integer of RAO.
    """
    if not chunk.recipients:
        raise EmptyChunk(f"Chunk {chunk.index} has no recipients")
    if isinstance(amount_per_recipient, bool) or not isinstance(amount_per_recipient, int):
        raise ConfigError(f"Amount must be an integer in RAO, got {amount_per_recipient!r}")
    if amount_per_recipient <= 0:
        raise ConfigError(f"Amount must be positive, got {amount_per_recipient}")

    instructions = tuple(
        TransferInstruction(
            source=source_account,
            destination=recipient,
            signer=signer,
            amount=amount_per_recipient,
        )
        for recipient in chunk.recipients
    )

    return Operation(
        chunk_index=chunk.index,
        instructions=instructions,
        window=window,
        mode=mode,
        keep_alive=keep_alive,
    )
