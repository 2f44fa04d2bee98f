"""
TAO Airdrop — Throttled batch distribution for the Bittensor network.

Splits a recipient list into fixed-size chunks, sends each chunk as one
Utility.batch_all extrinsic under a mortal era, and records which
recipients succeeded, failed or were skipped when the run deadline hit.
"""

__version__ = "0.1.0"
