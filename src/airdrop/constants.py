from typing import Final
from enum import StrEnum

# Submission attempts per batch, re-signs included.
MAX_RETRIES: Final = 5

# Logical transfers per transaction. Each transfer adds one or two instructions.
MAX_TRANSFERS_PER_TX: Final = 8

# Largest serialized transaction the cluster accepts.
PACKET_DATA_SIZE: Final = 1232

DEFAULT_COMPUTE_UNIT_LIMIT: Final = 400_000
DEFAULT_COMPUTE_UNIT_PRICE: Final = 1_000  # micro-lamports per CU

RECOVERY_HEADER: Final = ("pubkey", "amount")
DEFAULT_RECOVERY_FILE: Final = "airdrop_recovery.csv"

URL_MONIKERS: Final = {
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
    "m": "https://api.mainnet-beta.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "t": "https://api.testnet.solana.com",
    "devnet": "https://api.devnet.solana.com",
    "d": "https://api.devnet.solana.com",
    "localhost": "http://localhost:8899",
    "l": "http://localhost:8899",
}


class Commitment(StrEnum):
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"


class BatchState(StrEnum):
    BUILT     = "BUILT"
    SIGNED    = "SIGNED"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    RETRYABLE = "RETRYABLE"
    FAILED    = "FAILED"


TERMINAL_STATES: Final = frozenset({BatchState.CONFIRMED, BatchState.FAILED})

__all__ = [
    "DEFAULT_COMPUTE_UNIT_LIMIT",
    "DEFAULT_COMPUTE_UNIT_PRICE",
    "DEFAULT_RECOVERY_FILE",
    "MAX_RETRIES",
    "MAX_TRANSFERS_PER_TX",
    "PACKET_DATA_SIZE",
    "RECOVERY_HEADER",
    "TERMINAL_STATES",
    "URL_MONIKERS",

    ######
    "BatchState",
    "Commitment",
]
