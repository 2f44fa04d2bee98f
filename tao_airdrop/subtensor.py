"""
Bittensor implementation of the ledger client.

- the freshness window is a mortal era anchored at the current block
- each operation is a ``Utility.batch_all`` (or ``Utility.batch``) of
  ``Balances`` transfers, signed with the wallet coldkey
- chain errors are mapped onto ``RejectReason`` instead of raised
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import bittensor as bt
from bittensor.core.extrinsics.pallets import Balances

from tao_airdrop.batch import Operation
from tao_airdrop.client import RejectReason, SubmitResult, classify_error
from tao_airdrop.errors import WindowFetchError
from tao_airdrop.window import DEFAULT_ERA_PERIOD, FreshnessWindow

log = logging.getLogger("tao_airdrop.subtensor")


def format_chain_error(error) -> str:
    """Flatten a Substrate module error (``{"name": ..., "docs": [...]}``) to text."""
    if isinstance(error, dict):
        name = error.get("name", "")
        docs = error.get("docs") or []
        if isinstance(docs, list):
            docs = " ".join(str(d) for d in docs)
        return f"{name}: {docs}".strip(": ")
    return str(error)


class SubtensorLedger:
    """
    LedgerClient backed by ``bt.AsyncSubtensor``.

    Usage:
        async with SubtensorLedger("my_wallet", network="test") as ledger:
            tracker = await Dispatcher(ledger, config).run(chunks)
    """

    def __init__(
        self,
        wallet_name: str,
        network: str = "finney",
        era_period: int = DEFAULT_ERA_PERIOD,
        wait_for_finalization: bool = False,
    ):
        self.wallet_name = wallet_name
        self.network = network
        self.era_period = era_period
        self.wait_for_finalization = wait_for_finalization
        self.wallet: Optional[bt.Wallet] = None
        self.subtensor: Optional[bt.AsyncSubtensor] = None

    @property
    def address(self) -> str:
        if self.wallet is None:
            raise RuntimeError("Ledger is not open")
        return self.wallet.coldkeypub.ss58_address

    async def __aenter__(self) -> "SubtensorLedger":
        self.wallet = bt.Wallet(name=self.wallet_name)
        self.wallet.unlock_coldkey()
        self.subtensor = bt.AsyncSubtensor(network=self.network)
        await self.subtensor.__aenter__()
        log.info("Connected to %s as %s", self.network, self.address)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.subtensor is not None:
            await self.subtensor.__aexit__(exc_type, exc, tb)
            self.subtensor = None

    async def current_height(self) -> int:
        return await self.subtensor.get_current_block()

    async def fetch_freshness_token(self) -> FreshnessWindow:
        try:
            height = await self.subtensor.get_current_block()
            block_hash = await self.subtensor.get_block_hash(height)
        except Exception as e:
            raise WindowFetchError(f"{self.network}: {e}") from e

        return FreshnessWindow(
            reference_token=block_hash,
            reference_height=height,
            expiry_height=height + self.era_period - 1,
            fetched_at=time.time(),
        )

    async def _build_batch_call(self, operation: Operation):
        """
        Build a utility.batch_all or utility.batch call containing
        one balance transfer per instruction.
        """
        balances = Balances(self.subtensor)
        transfer_fn = getattr(balances, operation.transfer_function)

        calls = []
        for instruction in operation.instructions:
            call = await transfer_fn(
                dest=instruction.destination,
                value=instruction.amount,
            )
            calls.append(call)

        return await self.subtensor.compose_call(
            call_module="Utility",
            call_function=operation.mode.value,
            call_params={"calls": calls},
        )

    async def submit(self, operation: Operation) -> SubmitResult:
        window = operation.window
        try:
            batch_call = await self._build_batch_call(operation)

            # Mortal era: the extrinsic dies once the window's expiry height passes
            extrinsic = await self.subtensor.substrate.create_signed_extrinsic(
                call=batch_call,
                keypair=self.wallet.coldkey,
                era={"period": self.era_period, "current": window.reference_height},
            )
            response = await self.subtensor.substrate.submit_extrinsic(
                extrinsic,
                wait_for_inclusion=True,
                wait_for_finalization=self.wait_for_finalization,
            )

            if await response.is_success:
                return SubmitResult.ok(
                    extrinsic_hash=getattr(response, "extrinsic_hash", None),
                    block_hash=getattr(response, "block_hash", None),
                )

            message = format_chain_error(await response.error_message)
            return SubmitResult.rejected(classify_error(message), message)

        except asyncio.TimeoutError as e:
            return SubmitResult.rejected(RejectReason.NETWORK_TIMEOUT, str(e) or "timed out")
        except Exception as e:
            message = str(e)
            log.debug("Chunk %d submission raised: %s", operation.chunk_index, message)
            return SubmitResult.rejected(classify_error(message), message)
