import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from solders.pubkey import Pubkey
from solders.signature import Signature

from airdrop.batcher import Batcher, plan_batches
from airdrop.constants import MAX_RETRIES, Commitment
from airdrop.fee_info import FeeInfo
from airdrop.instructions import InstructionBuilder, load_token_context
from airdrop.recipients import Recipient
from airdrop.recovery import slice_unconfirmed, write_recovery_list
from airdrop.rpc import LedgerService
from airdrop.signer import Authority
from airdrop.submitter import Submitter

log = logging.getLogger("airdrop.pipeline")


@dataclass
class AirdropResult:
    recipients: int
    batches: int
    recovery_path: Path
    signatures: list[Signature] = field(default_factory=list)

    def summary(self) -> str:
        lines = [f"Airdropped to {self.recipients} recipients in {self.batches} transactions"]
        lines += [f"  batch {i + 1}/{self.batches}: {sig}" for i, sig in enumerate(self.signatures)]
        return "\n".join(lines)


class AirdropPipeline:
    def __init__(
        self,
        ledger: LedgerService,
        authority: Authority,
        mint: Pubkey,
        *,
        recovery_path: str | Path,
        batch_size: int,
        fee_info: FeeInfo | None = None,
        commitment: Commitment = Commitment.CONFIRMED,
        max_retries: int = MAX_RETRIES,
    ):
        self.ledger = ledger
        self.authority = authority
        self.mint = mint
        self.recovery_path = Path(recovery_path)
        self.batch_size = batch_size
        self.fee_info = fee_info or FeeInfo()
        self.submitter = Submitter(ledger, commitment, max_retries)

    async def run(self, recipients: Sequence[Recipient]) -> AirdropResult:
        """Pay every recipient, or persist the unconfirmed ones and re-raise.

        Batches go out strictly one after the other. The first batch that
        cannot be built or confirmed stops the run; it and everything after
        it are written to the recovery list.
        """
        total = len(plan_batches(len(recipients), self.batch_size))
        result = AirdropResult(recipients=len(recipients), batches=total, recovery_path=self.recovery_path)
        if not recipients:
            log.info("No recipients, nothing to send")
            write_recovery_list(self.recovery_path, [])
            return result

        try:
            token = await load_token_context(self.ledger, self.mint)
            builder = InstructionBuilder(self.ledger, token, self.authority.public_address())
            batcher = Batcher(self.ledger, builder, self.authority, self.fee_info, self.batch_size)
            log.info("Sending %d recipients in %d batches of up to %d from %s",
                     len(recipients), total, self.batch_size, builder.source)

            async for batch in batcher.batches(recipients):
                result.signatures.append(await self.submitter.submit(batch, total))
        except (Exception, asyncio.CancelledError) as e:
            failed = len(result.signatures)
            self._record_failure(recipients, failed, total, e)
            raise

        write_recovery_list(self.recovery_path, [])
        log.info("All %d batches confirmed", total)
        return result

    def _record_failure(self, recipients: Sequence[Recipient], failed_index: int, total: int,
                        error: BaseException) -> None:
        rows = slice_unconfirmed(
            [r.address for r in recipients],
            [r.amount for r in recipients],
            failed_index,
            self.batch_size,
        )
        write_recovery_list(self.recovery_path, rows)
        log.error("Batch %d/%d failed: %s", failed_index + 1, total, error)
        log.error("%d remaining recipients written to %s", len(rows), self.recovery_path)
