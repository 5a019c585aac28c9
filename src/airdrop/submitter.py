"""Submitter and retry controller.

A signed batch moves through::

    BUILT -> SIGNED -> SUBMITTED -> CONFIRMED
                          |
                          +-> RETRYABLE (blockhash expired) -> re-signed -> SIGNED
                          +-> SIGNED (any other error, same payload resent)
                          +-> FAILED  (MAX_RETRIES attempts used)

Every attempt uses the same commitment level.
"""
import logging

from solders.signature import Signature

from airdrop.batcher import TransactionBatch
from airdrop.constants import MAX_RETRIES, TERMINAL_STATES, BatchState, Commitment
from airdrop.errors import BuildError, RemoteError, RemoteErrorKind, RetryBudgetExhausted
from airdrop.rpc import LedgerService

log = logging.getLogger("airdrop.submitter")


class Submitter:
    def __init__(self, ledger: LedgerService, commitment: Commitment = Commitment.CONFIRMED,
                 max_retries: int = MAX_RETRIES):
        self.ledger = ledger
        self.commitment = commitment
        self.max_retries = max_retries

    async def submit(self, batch: TransactionBatch, total: int | None = None) -> Signature:
        """Send ``batch`` until it is confirmed or the retry budget is gone.

        Raises RetryBudgetExhausted once MAX_RETRIES submissions failed.
        """
        if batch.state in TERMINAL_STATES:
            raise ValueError(f"batch {batch.index} already {batch.state}")
        if batch.transaction is None or batch.token is None:
            raise ValueError(f"batch {batch.index} has not been signed")
        label = f"{batch.index + 1}/{total}" if total else f"{batch.index + 1}"

        while batch.attempts < self.max_retries:
            if batch.state is BatchState.RETRYABLE:
                try:
                    token = await self.ledger.get_latest_token()
                    batch.sign(token)
                except (RemoteError, BuildError):
                    batch.state = BatchState.FAILED
                    raise
                log.info("Batch %s re-signed with blockhash %s", label, token.blockhash)

            batch.attempts += 1
            batch.state = BatchState.SUBMITTED
            log.info("Batch %s: submitting attempt %d/%d (%d transfers)",
                     label, batch.attempts, self.max_retries, batch.transfer_count)
            try:
                signature = await self.ledger.submit_and_confirm(
                    batch.transaction, self.commitment,
                    last_valid_block_height=batch.token.last_valid_block_height,
                )
            except RemoteError as e:
                batch.last_error = e
                if e.kind is RemoteErrorKind.EXPIRED:
                    batch.state = BatchState.RETRYABLE
                    log.warning("Batch %s: blockhash expired on attempt %d", label, batch.attempts)
                else:
                    batch.state = BatchState.SIGNED
                    log.warning("Batch %s: attempt %d failed (%s): %s",
                                label, batch.attempts, e.kind.value, e)
                continue

            batch.signature = signature
            batch.state = BatchState.CONFIRMED
            log.info("Batch %s confirmed: %s", label, signature)
            return signature

        batch.state = BatchState.FAILED
        log.error("Batch %s failed after %d attempts", label, batch.attempts)
        raise RetryBudgetExhausted(batch.index, batch.attempts, batch.last_error)
