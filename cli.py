#!/usr/bin/env python3
"""
TAO Airdrop — CLI for throttled batch distributions on the Bittensor network.

Usage:
    tao-airdrop run --wallet <name> --file <path> [--amount <tao>] [--network <net>]
    tao-airdrop validate --file <path>
    tao-airdrop plan --file <path> [--chunk-size <n>] [--amount <tao>]

Examples:
    # Send 1 TAO to every address in recipients.txt (testnet), 22 per batch
    tao-airdrop run --wallet my_wallet --file recipients.txt --amount 1 --network test

    # Stop issuing after 30s and keep a retry list of everything not delivered
    tao-airdrop run -w my_wallet -f recipients.txt --max-duration 30 --retry-file retry.txt

    # Check a recipient list without touching the network
    tao-airdrop validate --file recipients.txt
    tao-airdrop plan --file recipients.txt --chunk-size 10
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import replace

from tao_airdrop import __version__
from tao_airdrop.addresses import AddressSource
from tao_airdrop.batch import BatchMode, split
from tao_airdrop.config import RunConfig, load_config
from tao_airdrop.dispatch import Dispatcher
from tao_airdrop.errors import ConfigError, LoadError, WindowFetchError
from tao_airdrop.logging_config import setup_logging
from tao_airdrop.outcome import OutcomeTracker, write_report
from tao_airdrop.subtensor import SubtensorLedger


BANNER = r"""
  _____  _    ___       _    _         _
 |_   _|/_\  / _ \     /_\  (_)_ _ __| |_ _ ___ _ __
   | | / _ \| (_) |   / _ \ | | '_/ _` | '_/ _ \ '_ \
   |_|/_/ \_\\___/   /_/ \_\|_|_| \__,_|_| \___/ .__/
                                               |_|
  Throttled batch distributions for Bittensor
"""


def _format_tao(rao: int, decimals: int) -> str:
    return f"{rao / 10 ** decimals:.{min(decimals, 9)}f}"


def _load_recipients(filepath: str) -> list[str] | None:
    source = AddressSource(filepath)
    try:
        recipients = source.load()
    except LoadError as e:
        print(f"Error loading recipients: {e}")
        return None

    print(f"Loaded {len(recipients)} recipients from {filepath}")
    if source.errors:
        print(f"Skipped {len(source.errors)} invalid entries:")
        for err in source.errors:
            print(f"  ✗ {err}")
    return recipients


def _config_from_args(args: argparse.Namespace) -> RunConfig:
    overrides = {
        "chunk_size": getattr(args, "chunk_size", None),
        "max_duration": getattr(args, "max_duration", None),
        "min_submit_delay": getattr(args, "delay", None),
        "amount": getattr(args, "amount", None),
        "decimals": getattr(args, "decimals", None),
        "network": getattr(args, "network", None),
    }
    if getattr(args, "best_effort", False):
        overrides["mode"] = BatchMode.BATCH
    if getattr(args, "allow_death", False):
        overrides["keep_alive"] = False
    if getattr(args, "finalize", False):
        overrides["wait_for_finalization"] = True

    return load_config(getattr(args, "config", None), **overrides)


async def _dispatch(args: argparse.Namespace, config: RunConfig, recipients: list[str]) -> OutcomeTracker:
    async with SubtensorLedger(
        args.wallet,
        network=config.network,
        era_period=config.era_period,
        wait_for_finalization=config.wait_for_finalization,
    ) as ledger:
        if config.source_account and config.source_account != ledger.address:
            raise ConfigError(
                f"source_account {config.source_account} does not match wallet {ledger.address}"
            )
        config = replace(config, source_account=ledger.address, signer=ledger.address).validate()
        return await Dispatcher(ledger, config).run(split(recipients, config.chunk_size))


def cmd_run(args: argparse.Namespace) -> int:
    """Execute the distribution."""
    print(BANNER)

    try:
        config = _config_from_args(args).validate(require_accounts=False)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 1

    recipients = _load_recipients(args.file)
    if recipients is None:
        return 1

    amount = config.amount_per_recipient
    total = amount * len(recipients)
    chunk_count = -(-len(recipients) // config.chunk_size)
    print(f"Network: {config.network}")
    print(f"Wallet: {args.wallet}")
    print(f"Mode: {'atomic (batch_all)' if config.mode == BatchMode.BATCH_ALL else 'best-effort (batch)'}")
    print(f"Batches: {chunk_count} x up to {config.chunk_size} recipients")
    print(f"Deadline: {config.max_duration}s, delay between batches: {config.min_submit_delay}s")
    print(
        f"Total to transfer: {_format_tao(total, config.decimals)} TAO "
        f"({_format_tao(amount, config.decimals)} each)"
    )

    if not args.yes:
        response = input(f"\nProceed with transfer to {len(recipients)} recipients? [y/N]: ")
        if response.lower() not in ("y", "yes"):
            print("Aborted.")
            return 0

    print("\nDispatching...")
    try:
        tracker = asyncio.run(_dispatch(args, config, recipients))
    except (ConfigError, WindowFetchError) as e:
        print(f"Fatal: {e}")
        return 1
    except Exception as e:
        print(f"Fatal: could not connect to {config.network}: {e}")
        return 1

    summary = tracker.summary()
    print()
    print(summary.render())

    if args.retry_file and summary.retry_addresses:
        path = summary.write_retry_file(args.retry_file)
        print(f"\nRetry list ({len(summary.retry_addresses)} recipients): {path}")
        if summary.unconfirmed:
            print(
                f"  Includes {len(summary.unconfirmed)} unconfirmed batches that may still "
                "land on chain; check them before retrying"
            )
    if args.report:
        path = write_report(args.report, tracker)
        print(f"Report: {path}")

    # Per-chunk failures are reported above, not through the exit code
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a recipient list."""
    print(BANNER)

    recipients = _load_recipients(args.file)
    if recipients is None:
        return 1

    unique = len(set(recipients))
    print(f"\n✓ {len(recipients)} valid recipients")
    if unique != len(recipients):
        print(f"  Note: {len(recipients) - unique} duplicate entries (kept, each is paid)")

    print("\nPreview (first 5):")
    for r in recipients[:5]:
        print(f"  {r[:16]}...{r[-8:]}")
    if len(recipients) > 5:
        print(f"  ... and {len(recipients) - 5} more")
    return 0


def cmd_plan(args: argparse.Namespace) -> int:
    """Show how a recipient list would be batched, without sending anything."""
    print(BANNER)

    try:
        config = _config_from_args(args).validate(require_accounts=False)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 1

    recipients = _load_recipients(args.file)
    if recipients is None:
        return 1

    chunks = split(recipients, config.chunk_size)
    amount = config.amount_per_recipient
    print(f"\nBatches: {len(chunks)}")
    for chunk in chunks:
        print(
            f"  #{chunk.index}: {len(chunk)} recipients, "
            f"{_format_tao(amount * len(chunk), config.decimals)} TAO"
        )
    print(f"Total: {_format_tao(amount * len(recipients), config.decimals)} TAO")
    min_time = max(len(chunks) - 1, 0) * config.min_submit_delay
    if min_time > config.max_duration:
        print(
            f"WARNING: throttling alone needs {min_time:.1f}s but the deadline is "
            f"{config.max_duration}s; later batches will be skipped"
        )
    return 0


def _add_batching_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config", help="TOML config file with an [airdrop] table"
    )
    parser.add_argument(
        "--chunk-size", type=int, help="Recipients per batch transaction. Default: 22"
    )
    parser.add_argument(
        "--amount", "-a", help="Amount per recipient in TAO. Default: 1"
    )
    parser.add_argument(
        "--decimals", type=int, help="Decimal places of the token. Default: 9 (RAO)"
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tao-airdrop",
        description="TAO Airdrop — Throttled batch distributions for Bittensor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", action="version", version=f"tao-airdrop {__version__}"
    )
    parser.add_argument(
        "--log-level", default=None, help="Log level (default: $LOG_LEVEL or INFO)"
    )
    parser.add_argument(
        "--log-file", default=None, help="Also append logs to this file"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_parser = subparsers.add_parser(
        "run", help="Send TAO to every recipient in batches"
    )
    run_parser.add_argument(
        "--wallet", "-w", required=True, help="Bittensor wallet name"
    )
    run_parser.add_argument(
        "--file", "-f", required=True, help="Path to recipient list (TXT, CSV or JSON)"
    )
    _add_batching_args(run_parser)
    run_parser.add_argument(
        "--network", "-n", default=None,
        help="Bittensor network (finney, test, local). Default: finney"
    )
    run_parser.add_argument(
        "--max-duration", type=float,
        help="Stop issuing new batches after this many seconds. Default: 10"
    )
    run_parser.add_argument(
        "--delay", type=float,
        help="Minimum seconds between batch submissions. Default: 0.1"
    )
    run_parser.add_argument(
        "--best-effort", action="store_true",
        help="Use batch (best-effort — individual failures don't revert others)"
    )
    run_parser.add_argument(
        "--allow-death", action="store_true",
        help="Allow transfers that may reduce accounts below existential deposit"
    )
    run_parser.add_argument(
        "--finalize", action="store_true",
        help="Wait for transaction finalization (slower but more certain)"
    )
    run_parser.add_argument(
        "--retry-file", help="Write failed and skipped recipients to this file"
    )
    run_parser.add_argument(
        "--report", help="Write a JSON report of every batch to this file"
    )
    run_parser.add_argument(
        "--yes", "-y", action="store_true",
        help="Skip confirmation prompt"
    )

    # Validate command
    validate_parser = subparsers.add_parser(
        "validate", help="Validate a recipient list"
    )
    validate_parser.add_argument(
        "--file", "-f", required=True, help="Path to recipient list"
    )

    # Plan command
    plan_parser = subparsers.add_parser(
        "plan", help="Preview batches and totals without sending"
    )
    plan_parser.add_argument(
        "--file", "-f", required=True, help="Path to recipient list"
    )
    _add_batching_args(plan_parser)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    setup_logging(args.log_level, args.log_file)

    commands = {
        "run": cmd_run,
        "validate": cmd_validate,
        "plan": cmd_plan,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
