"""Batched SPL token airdrops with resumable recovery lists."""
import logging

logger = logging.getLogger("airdrop")

__version__ = "0.1.0"
