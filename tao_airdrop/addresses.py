"""
Recipient list loading for tao-airdrop.

Supports:
- Newline-delimited ss58 addresses (default, one per line, no header)
- CSV files with an ``address`` column
- JSON lists of address strings or ``{"address": ...}`` objects

Invalid entries are skipped and kept in ``AddressSource.errors``; they never
abort the load. Blank lines are ignored.
"""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Iterator

from bittensor.utils import is_valid_bittensor_address_or_public_key

from tao_airdrop.errors import DecodeError, LoadError, SourceUnavailable

log = logging.getLogger("tao_airdrop.addresses")


def is_valid_address(value: str) -> bool:
    """True if ``value`` is an ss58 address or a hex-encoded public key."""
    if not value:
        return False
    try:
        return bool(is_valid_bittensor_address_or_public_key(value))
    except (ValueError, TypeError, IndexError):
        return False


def _iter_text(filepath: Path) -> Iterator[tuple[int, str]]:
    # Decoded per line; an undecodable line is just another bad entry
    raw = filepath.read_bytes()
    for line_num, line in enumerate(raw.splitlines(), start=1):
        try:
            text = line.decode("utf-8")
        except UnicodeDecodeError:
            text = line.decode("utf-8", errors="replace")
        yield line_num, text.strip()


def _iter_csv(filepath: Path) -> Iterator[tuple[int, str]]:
    with open(filepath, "r", newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        if reader.fieldnames is None:
            return

        headers = [h.strip().lower() for h in reader.fieldnames]
        if "address" not in headers:
            raise LoadError(f"{filepath}: CSV has no 'address' column")

        for row_num, row in enumerate(reader, start=2):
            normalized = {
                (k or "").strip().lower(): (v or "").strip() for k, v in row.items()
            }
            yield row_num, normalized.get("address", "")


def _iter_json(filepath: Path) -> Iterator[tuple[int, str]]:
    with open(filepath, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise LoadError(f"{filepath}: invalid JSON ({e})") from e

    if not isinstance(data, list):
        raise LoadError("JSON must contain a list of addresses")

    for i, entry in enumerate(data, start=1):
        if isinstance(entry, dict):
            if "address" not in entry:
                yield i, json.dumps(entry)
                continue
            yield i, str(entry["address"]).strip()
        else:
            yield i, str(entry).strip()


class AddressSource:
    """
    Ordered recipient addresses backed by a file.

    ``load()`` can be called any number of times; each pass re-reads the
    file and rebuilds ``errors``, so the same file always yields the same
    sequence.
    """

    def __init__(self, filepath: str | Path):
        self.filepath = Path(filepath)
        self.errors: list[DecodeError] = []

    def _entries(self) -> Iterator[tuple[int, str]]:
        suffix = self.filepath.suffix.lower()
        if suffix == ".json":
            return _iter_json(self.filepath)
        elif suffix == ".csv":
            return _iter_csv(self.filepath)
        return _iter_text(self.filepath)

    def load(self) -> list[str]:
        """
        Read and validate every entry.

        Raises:
            SourceUnavailable: the file cannot be read.
            LoadError: the file is malformed or holds no valid address.
        """
        self.errors = []
        addresses = []

        try:
            for line_num, content in self._entries():
                if not content:
                    continue
                if not is_valid_address(content):
                    err = DecodeError(line_num, content)
                    log.warning("Skipping %s: %s", self.filepath, err)
                    self.errors.append(err)
                    continue
                addresses.append(content)
        except OSError as e:
            raise SourceUnavailable(f"Cannot read {self.filepath}: {e}") from e
        except UnicodeDecodeError as e:
            raise LoadError(f"{self.filepath}: not valid UTF-8 ({e})") from e

        if not addresses:
            raise LoadError(f"No valid addresses in {self.filepath}")

        log.info(
            "Loaded %d addresses from %s (%d skipped)",
            len(addresses), self.filepath, len(self.errors),
        )
        return addresses


def load_addresses(filepath: str | Path) -> tuple[list[str], list[DecodeError]]:
    """Load a recipient file, returning the addresses and any skipped entries."""
    source = AddressSource(filepath)
    addresses = source.load()
    return addresses, source.errors


def write_addresses(filepath: str | Path, addresses: list[str]) -> Path:
    """Write a newline-delimited recipient file readable by AddressSource."""
    filepath = Path(filepath)
    with open(filepath, "w", encoding="utf-8") as f:
        for address in addresses:
            f.write(f"{address}\n")
    return filepath
