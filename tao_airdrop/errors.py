"""
Error taxonomy for tao-airdrop.

Fatal errors (LoadError, ConfigError, WindowFetchError before the first
chunk) abort a run. DecodeError and SubmissionError are recoverable and are
captured in AddressSource.errors and OutcomeRecord respectively.
"""

from __future__ import annotations


class AirdropError(Exception):
    """Base class for all tao-airdrop errors."""


class LoadError(AirdropError):
    """The recipient list could not be loaded or contained no valid address."""


class SourceUnavailable(LoadError):
    """The backing recipient file could not be read."""


class DecodeError(AirdropError):
    """A single recipient entry is not a valid address."""

    def __init__(self, line: int, content: str):
        self.line = line
        self.content = content
        super().__init__(f"Line {line}: invalid address '{content}'")


class ConfigError(AirdropError):
    """Invalid or missing run configuration."""


class InvalidChunkSize(ConfigError):
    """Chunk size is not a positive integer."""


class EmptyChunk(AirdropError):
    """An operation was requested for a chunk with no recipients."""


class WindowFetchError(AirdropError):
    """No freshness window could be obtained from the network."""


NetworkUnavailable = WindowFetchError


class SubmissionError(AirdropError):
    """A single operation was rejected or could not be submitted."""

    def __init__(self, reason: str, message: str = ""):
        self.reason = reason
        self.message = message
        super().__init__(f"{reason}: {message}" if message else reason)


class DuplicateOutcome(AirdropError):
    """A chunk index was recorded twice."""


class TrackerClosed(AirdropError):
    """The outcome log is immutable once the run has terminated."""
