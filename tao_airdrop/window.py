"""
Freshness window: the mortal era every operation is signed under.

A window is anchored at a recent block (``reference_token`` is its hash)
and stays valid up to and including ``expiry_height``. Extrinsics submitted
after that height are rejected by the chain as outdated.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Callable

from tao_airdrop.errors import WindowFetchError

if TYPE_CHECKING:
    from tao_airdrop.client import LedgerClient

log = logging.getLogger("tao_airdrop.window")

# Blocks an extrinsic stays valid after its reference block (~12s per block).
DEFAULT_ERA_PERIOD = 64


@dataclass(frozen=True)
class FreshnessWindow:
    reference_token: str
    reference_height: int
    expiry_height: int
    fetched_at: float

    def is_valid(self, current_height: int) -> bool:
        return current_height <= self.expiry_height

    def remaining(self, current_height: int) -> int:
        """Blocks left before the window expires."""
        return max(0, self.expiry_height - current_height)


async def fetch(client: "LedgerClient", clock: Callable[[], float] = time.time) -> FreshnessWindow:
    """
    Ask the network for a new window.

    Raises:
        WindowFetchError: the network could not provide one.
    """
    try:
        window = await client.fetch_freshness_token()
    except WindowFetchError:
        raise
    except Exception as e:
        raise WindowFetchError(f"Could not fetch freshness window: {e}") from e

    if window.fetched_at <= 0:
        window = replace(window, fetched_at=clock())

    log.debug(
        "Fetched window %s at block %d (expires after %d)",
        window.reference_token[:18], window.reference_height, window.expiry_height,
    )
    return window
