"""
Run configuration for tao-airdrop.

Values are merged in priority order (highest first):
  1. Explicit overrides (CLI flags)
  2. Environment variables, ``TAO_AIRDROP_*`` (e.g. TAO_AIRDROP_NETWORK)
  3. The ``[airdrop]`` table of a TOML file
  4. Defaults on RunConfig
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, fields, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Mapping, Optional

from tao_airdrop.batch import DEFAULT_CHUNK_SIZE, BatchMode
from tao_airdrop.errors import ConfigError, InvalidChunkSize
from tao_airdrop.window import DEFAULT_ERA_PERIOD

ENV_PREFIX = "TAO_AIRDROP_"
TOML_SECTION = "airdrop"

# TAO has 9 decimal places (RAO)
TAO_DECIMALS = 9


@dataclass(frozen=True)
class RunConfig:
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_duration: float = 10.0  # seconds, from the first submission attempt
    min_submit_delay: float = 0.1  # seconds between submissions
    amount: Decimal = Decimal("1")  # per recipient, in whole tokens
    decimals: int = TAO_DECIMALS
    source_account: str = ""
    signer: str = ""
    network: str = "finney"
    mode: BatchMode = BatchMode.BATCH_ALL
    keep_alive: bool = True
    era_period: int = DEFAULT_ERA_PERIOD
    confirm_timeout: float = 60.0
    wait_for_finalization: bool = False

    @property
    def amount_per_recipient(self) -> int:
        """Per-recipient amount in minor units (amount x 10^decimals)."""
        if not self.amount.is_finite():
            raise ConfigError(f"Amount must be a finite number, got {self.amount}")
        minor = self.amount.scaleb(self.decimals)
        if minor != minor.to_integral_value():
            raise ConfigError(
                f"Amount {self.amount} has more than {self.decimals} decimal places"
            )
        return int(minor)

    def validate(self, require_accounts: bool = True) -> "RunConfig":
        """Raise ConfigError if the configuration cannot drive a run."""
        if isinstance(self.chunk_size, bool) or not isinstance(self.chunk_size, int) or self.chunk_size < 1:
            raise InvalidChunkSize(f"chunk_size must be >= 1, got {self.chunk_size!r}")
        if self.max_duration < 0:
            raise ConfigError(f"max_duration must be >= 0, got {self.max_duration}")
        if self.min_submit_delay < 0:
            raise ConfigError(f"min_submit_delay must be >= 0, got {self.min_submit_delay}")
        if self.decimals < 0:
            raise ConfigError(f"decimals must be >= 0, got {self.decimals}")
        if self.amount_per_recipient <= 0:
            raise ConfigError(f"amount must be positive, got {self.amount}")
        if self.era_period < 4:
            raise ConfigError(f"era_period must be >= 4 blocks, got {self.era_period}")
        if self.confirm_timeout <= 0:
            raise ConfigError(f"confirm_timeout must be positive, got {self.confirm_timeout}")
        if require_accounts:
            if not self.source_account:
                raise ConfigError("source_account is required")
            if not self.signer:
                raise ConfigError("signer is required")
        return self


_FIELD_TYPES = {f.name: f.type for f in fields(RunConfig)}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _coerce(name: str, value: Any) -> Any:
    kind = _FIELD_TYPES[name]
    try:
        if kind == "int":
            if isinstance(value, bool):
                raise ValueError("booleans are not integers")
            return int(value)
        if kind == "float":
            return float(value)
        if kind == "bool":
            return _to_bool(value)
        if kind == "Decimal":
            return Decimal(str(value))
        if kind == "BatchMode":
            return value if isinstance(value, BatchMode) else BatchMode(str(value).lower())
        return str(value)
    except (ValueError, TypeError, InvalidOperation) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from e


def _read_toml(filepath: Path) -> dict[str, Any]:
    try:
        data = tomllib.loads(filepath.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read config {filepath}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {filepath}: {e}") from e

    section = data.get(TOML_SECTION, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{TOML_SECTION}] must be a table")

    unknown = set(section) - set(_FIELD_TYPES)
    if unknown:
        raise ConfigError(f"Unknown keys in [{TOML_SECTION}]: {', '.join(sorted(unknown))}")
    return section


def _read_env(env: Mapping[str, str]) -> dict[str, Any]:
    values = {}
    for name in _FIELD_TYPES:
        key = ENV_PREFIX + name.upper()
        if key in env:
            values[name] = env[key]
    return values


def load_config(
    path: Optional[str | Path] = None,
    env: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> RunConfig:
    """
    Build a RunConfig from a TOML file, the environment and overrides.

    Overrides set to None are ignored so argparse defaults can be passed
    straight through. The result is not validated; call ``validate()``.
    """
    env = os.environ if env is None else env
    merged: dict[str, Any] = {}

    if path is not None:
        merged.update(_read_toml(Path(path)))
    merged.update(_read_env(env))

    for name, value in overrides.items():
        if name not in _FIELD_TYPES:
            raise ConfigError(f"Unknown config option: {name}")
        if value is not None:
            merged[name] = value

    return replace(RunConfig(), **{k: _coerce(k, v) for k, v in merged.items()})
