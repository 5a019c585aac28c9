"""Remote ledger service: the only module that talks to the RPC node.

Every failure leaves here as a RemoteError whose ``kind`` callers branch on;
nothing downstream inspects error messages.
"""
from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from typing import Iterator, Optional, Protocol

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment as RpcCommitment
from solana.rpc.core import RPCException, TransactionExpiredBlockheightExceededError, UnconfirmedTxError
from solana.rpc.types import TxOpts
from solders.account import Account
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.rpc.errors import SendTransactionPreflightFailureMessage
from solders.signature import Signature
from solders.transaction import Transaction
from solders.transaction_status import TransactionErrorFieldless

from airdrop.constants import Commitment
from airdrop.errors import RemoteError, RemoteErrorKind

log = logging.getLogger("airdrop.rpc")


@dataclass(frozen=True, slots=True)
class BlockhashToken:
    """A recent blockhash plus the last block height at which it is still valid."""

    blockhash: Hash
    last_valid_block_height: int


class LedgerService(Protocol):
    async def get_account(self, address: Pubkey) -> Optional[Account]: ...
    async def get_latest_token(self) -> BlockhashToken: ...
    async def submit_and_confirm(self, transaction: Transaction, commitment: Commitment,
                                 last_valid_block_height: int | None = None) -> Signature: ...
    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int: ...


def _preflight_kind(err: object) -> RemoteErrorKind:
    if isinstance(err, SendTransactionPreflightFailureMessage):
        if err.data.err == TransactionErrorFieldless.BlockhashNotFound:
            return RemoteErrorKind.EXPIRED
        return RemoteErrorKind.REJECTED
    return RemoteErrorKind.OTHER


@contextlib.contextmanager
def _remote_errors(action: str) -> Iterator[None]:
    """Translate solana-py and transport exceptions into tagged RemoteErrors."""
    try:
        yield
    except TransactionExpiredBlockheightExceededError as e:
        raise RemoteError.of(RemoteErrorKind.EXPIRED, f"{action}: blockhash expired: {e}") from e
    except UnconfirmedTxError as e:
        raise RemoteError.of(RemoteErrorKind.OTHER, f"{action}: not confirmed: {e}") from e
    except RPCException as e:
        payload = e.args[0] if e.args else None
        raise RemoteError.of(_preflight_kind(payload), f"{action}: {payload}") from e
    except (SolanaRpcException, httpx.HTTPError) as e:
        raise RemoteError.of(RemoteErrorKind.OTHER, f"{action}: transport error: {e}") from e


class SolanaLedgerService:
    def __init__(self, url: str, *, commitment: Commitment = Commitment.CONFIRMED,
                 timeout: float = 30.0, client: AsyncClient | None = None) -> None:
        self.url = url
        self.commitment = commitment
        self.client = client or AsyncClient(url, commitment=RpcCommitment(commitment.value), timeout=timeout)

    async def __aenter__(self) -> "SolanaLedgerService":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.close()

    async def get_account(self, address: Pubkey) -> Optional[Account]:
        with _remote_errors(f"get_account {address}"):
            resp = await self.client.get_account_info(address)
        return resp.value

    async def get_latest_token(self) -> BlockhashToken:
        with _remote_errors("get_latest_blockhash"):
            resp = await self.client.get_latest_blockhash(RpcCommitment(self.commitment.value))
        log.debug("Latest blockhash %s valid until height %d",
                  resp.value.blockhash, resp.value.last_valid_block_height)
        return BlockhashToken(resp.value.blockhash, resp.value.last_valid_block_height)

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        with _remote_errors("get_minimum_balance_for_rent_exemption"):
            resp = await self.client.get_minimum_balance_for_rent_exemption(size)
        return resp.value

    async def submit_and_confirm(self, transaction: Transaction, commitment: Commitment,
                                 last_valid_block_height: int | None = None) -> Signature:
        level = RpcCommitment(commitment.value)
        opts = TxOpts(skip_confirmation=True, preflight_commitment=level)
        with _remote_errors("send_transaction"):
            resp = await self.client.send_transaction(transaction, opts=opts)
        signature = resp.value
        log.debug("Sent %s, waiting for %s", signature, commitment.value)

        with _remote_errors(f"confirm_transaction {signature}"):
            conf = await self.client.confirm_transaction(
                signature, level, last_valid_block_height=last_valid_block_height,
            )
        status = conf.value[0] if conf.value else None
        if status is not None and status.err is not None:
            raise RemoteError.of(RemoteErrorKind.REJECTED, f"transaction {signature} failed: {status.err}")
        return signature
