import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferCheckedParams,
    create_idempotent_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)

from airdrop.errors import BuildError, RemoteError
from airdrop.recipients import Recipient
from airdrop.rpc import LedgerService
from airdrop.transfer_hook import parse_mint, resolve_extra_account_metas

log = logging.getLogger("airdrop.builder")

U64_MAX = 2**64 - 1
TOKEN_PROGRAMS = (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID)


@dataclass(frozen=True, slots=True)
class TokenContext:
    mint: Pubkey
    program_id: Pubkey
    decimals: int
    transfer_hook_program: Optional[Pubkey] = None


@dataclass(frozen=True, slots=True)
class RecipientOps:
    """Instructions for one recipient. Counts as a single transfer however many ops it holds."""

    recipient: Recipient
    transfer: Instruction
    create_account: Optional[Instruction] = None

    @property
    def instructions(self) -> list[Instruction]:
        if self.create_account is None:
            return [self.transfer]
        return [self.create_account, self.transfer]


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Scale a whole-token amount to the mint's base units."""
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise BuildError(f"amount {amount} has more than {decimals} decimal places")
    units = int(scaled)
    if not 0 < units <= U64_MAX:
        raise BuildError(f"amount {amount} is out of range for a token transfer")
    return units


async def load_token_context(ledger: LedgerService, mint: Pubkey) -> TokenContext:
    try:
        account = await ledger.get_account(mint)
    except RemoteError as e:
        raise BuildError(f"could not read mint {mint}: {e}") from e
    if account is None:
        raise BuildError(f"mint {mint} does not exist")
    if account.owner not in TOKEN_PROGRAMS:
        raise BuildError(f"{mint} is not a token mint (owner {account.owner})")

    info = parse_mint(bytes(account.data))
    ctx = TokenContext(mint=mint, program_id=account.owner, decimals=info.decimals,
                       transfer_hook_program=info.transfer_hook_program)
    log.info("Token %s: program %s, %d decimals%s", mint, ctx.program_id, ctx.decimals,
             f", transfer hook {ctx.transfer_hook_program}" if ctx.transfer_hook_program else "")
    return ctx


class InstructionBuilder:
    def __init__(self, ledger: LedgerService, token: TokenContext, authority: Pubkey):
        self.ledger = ledger
        self.token = token
        self.authority = authority
        self.source = self.token_account(authority)

    def token_account(self, owner: Pubkey) -> Pubkey:
        return get_associated_token_address(owner, self.token.mint, token_program_id=self.token.program_id)

    async def build(self, recipient: Recipient) -> RecipientOps:
        amount = to_base_units(recipient.amount, self.token.decimals)
        destination = self.token_account(recipient.address)

        try:
            existing = await self.ledger.get_account(destination)
        except RemoteError as e:
            raise BuildError(f"could not check token account {destination} of {recipient.address}: {e}") from e

        create = None
        if existing is None:
            log.debug("Token account %s missing for %s, creating", destination, recipient.address)
            create = create_idempotent_associated_token_account(
                payer=self.authority,
                owner=recipient.address,
                mint=self.token.mint,
                token_program_id=self.token.program_id,
            )

        transfer = transfer_checked(
            TransferCheckedParams(
                program_id=self.token.program_id,
                source=self.source,
                mint=self.token.mint,
                dest=destination,
                owner=self.authority,
                amount=amount,
                decimals=self.token.decimals,
            )
        )
        if self.token.transfer_hook_program is not None:
            extra = await resolve_extra_account_metas(
                self.ledger,
                program_id=self.token.transfer_hook_program,
                source=self.source,
                mint=self.token.mint,
                destination=destination,
                authority=self.authority,
                amount=amount,
            )
            transfer = Instruction(transfer.program_id, transfer.data, [*transfer.accounts, *extra])

        return RecipientOps(recipient=recipient, transfer=transfer, create_account=create)
