import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Optional

from solders.instruction import Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from airdrop.constants import PACKET_DATA_SIZE, BatchState
from airdrop.errors import BuildError
from airdrop.fee_info import FeeInfo
from airdrop.instructions import InstructionBuilder, RecipientOps
from airdrop.recipients import Recipient
from airdrop.rpc import BlockhashToken, LedgerService
from airdrop.signer import Authority, sign_message

log = logging.getLogger("airdrop.batcher")


def plan_batches(count: int, batch_size: int) -> list[range]:
    """Recipient index ranges of each batch, in source order.

    Both the batcher and the recovery slice use this, so a batch index always
    maps to the same recipients.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    return [range(start, min(start + batch_size, count)) for start in range(0, count, batch_size)]


@dataclass(slots=True)
class TransactionBatch:
    index: int
    recipients: Sequence[Recipient]
    instructions: list[Instruction]
    payer: Pubkey
    signers: Sequence[Authority]
    state: BatchState = BatchState.BUILT
    token: Optional[BlockhashToken] = None
    transaction: Optional[Transaction] = None
    attempts: int = 0
    signature: Optional[Signature] = None
    last_error: Optional[BaseException] = None

    @property
    def transfer_count(self) -> int:
        return len(self.recipients)

    def sign(self, token: BlockhashToken) -> Transaction:
        """(Re)sign the same instructions against ``token``."""
        message = Message.new_with_blockhash(self.instructions, self.payer, token.blockhash)
        tx = sign_message(message, self.signers)
        size = len(bytes(tx))
        if size > PACKET_DATA_SIZE:
            raise BuildError(f"batch {self.index} is {size} bytes, over the {PACKET_DATA_SIZE} byte limit; "
                             f"lower max_transfers_per_tx")
        self.token = token
        self.transaction = tx
        self.state = BatchState.SIGNED
        return tx


class Batcher:
    def __init__(self, ledger: LedgerService, builder: InstructionBuilder, authority: Authority,
                 fee_info: FeeInfo, batch_size: int):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.ledger = ledger
        self.builder = builder
        self.authority = authority
        self.fee_info = fee_info
        self.batch_size = batch_size

    def plan(self, recipients: Sequence[Recipient]) -> list[range]:
        return plan_batches(len(recipients), self.batch_size)

    async def batches(self, recipients: Sequence[Recipient]) -> AsyncIterator[TransactionBatch]:
        """Yield signed batches one at a time.

        The next batch is only built once the consumer asks for it, i.e. after
        the previous one reached a terminal state.
        """
        for index, span in enumerate(self.plan(recipients)):
            members = recipients[span.start:span.stop]
            ops = [await self.builder.build(r) for r in members]
            yield await self.close(index, members, ops)

    async def close(self, index: int, members: Sequence[Recipient], ops: Sequence[RecipientOps]) -> TransactionBatch:
        instructions = [*self.fee_info.instructions()]
        for op in ops:
            instructions.extend(op.instructions)
        batch = TransactionBatch(
            index=index,
            recipients=members,
            instructions=instructions,
            payer=self.authority.public_address(),
            signers=[self.authority],
        )
        batch.sign(await self.ledger.get_latest_token())
        log.debug("Built batch %d: %d transfers, %d instructions",
                  index, batch.transfer_count, len(instructions))
        return batch
