"""Create or update a mint's transfer-hook validation account."""
import logging
from collections.abc import Sequence

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.system_program import TransferParams, transfer

from airdrop.batcher import TransactionBatch
from airdrop.errors import BuildError, RemoteError
from airdrop.rpc import LedgerService
from airdrop.signer import Authority
from airdrop.submitter import Submitter
from airdrop.transfer_hook import (
    INITIALIZE_DISCRIMINATOR,
    UPDATE_DISCRIMINATOR,
    ExtraAccountMeta,
    extra_account_metas_size,
    get_extra_account_metas_address,
    pack_extra_account_metas,
)

log = logging.getLogger("airdrop.extra_metas")


def initialize_extra_account_meta_list(program_id: Pubkey, validation: Pubkey, mint: Pubkey,
                                       authority: Pubkey, metas: Sequence[ExtraAccountMeta]) -> Instruction:
    accounts = [
        AccountMeta(validation, False, True),
        AccountMeta(mint, False, False),
        AccountMeta(authority, True, False),
        AccountMeta(SYSTEM_PROGRAM_ID, False, False),
    ]
    return Instruction(program_id, INITIALIZE_DISCRIMINATOR + pack_extra_account_metas(list(metas)), accounts)


def update_extra_account_meta_list(program_id: Pubkey, validation: Pubkey, mint: Pubkey,
                                   authority: Pubkey, metas: Sequence[ExtraAccountMeta]) -> Instruction:
    accounts = [
        AccountMeta(validation, False, True),
        AccountMeta(mint, False, False),
        AccountMeta(authority, True, False),
    ]
    return Instruction(program_id, UPDATE_DISCRIMINATOR + pack_extra_account_metas(list(metas)), accounts)


async def _get(ledger: LedgerService, address: Pubkey):
    try:
        return await ledger.get_account(address)
    except RemoteError as e:
        raise BuildError(f"could not read {address}: {e}") from e


async def _rent_top_up(ledger: LedgerService, account, count: int) -> int:
    try:
        required = await ledger.get_minimum_balance_for_rent_exemption(extra_account_metas_size(count))
    except RemoteError as e:
        raise BuildError(f"unable to fetch rent-exemption: {e}") from e
    current = account.lamports if account is not None else 0
    return max(0, required - current)


async def _send(ledger: LedgerService, submitter: Submitter, payer: Authority, mint_authority: Authority,
                validation: Pubkey, top_up: int, instruction: Instruction) -> Signature:
    instructions = []
    if top_up > 0:
        log.info("Funding %s with %d lamports for rent", validation, top_up)
        instructions.append(transfer(TransferParams(
            from_pubkey=payer.public_address(), to_pubkey=validation, lamports=top_up,
        )))
    instructions.append(instruction)

    signers = [payer]
    if mint_authority.public_address() != payer.public_address():
        signers.append(mint_authority)

    batch = TransactionBatch(index=0, recipients=[], instructions=instructions,
                             payer=payer.public_address(), signers=signers)
    batch.sign(await ledger.get_latest_token())
    return await submitter.submit(batch)


async def create_extra_account_metas(ledger: LedgerService, submitter: Submitter, *, program_id: Pubkey,
                                     mint: Pubkey, metas: Sequence[ExtraAccountMeta],
                                     mint_authority: Authority, payer: Authority) -> Signature:
    validation = get_extra_account_metas_address(mint, program_id)
    account = await _get(ledger, validation)
    if account is not None and account.owner != SYSTEM_PROGRAM_ID:
        raise BuildError(f"extra account metas for mint {mint} and program {program_id} already exists")

    instruction = initialize_extra_account_meta_list(
        program_id, validation, mint, mint_authority.public_address(), metas,
    )
    top_up = await _rent_top_up(ledger, account, len(metas))
    return await _send(ledger, submitter, payer, mint_authority, validation, top_up, instruction)


async def update_extra_account_metas(ledger: LedgerService, submitter: Submitter, *, program_id: Pubkey,
                                     mint: Pubkey, metas: Sequence[ExtraAccountMeta],
                                     mint_authority: Authority, payer: Authority) -> Signature:
    validation = get_extra_account_metas_address(mint, program_id)
    account = await _get(ledger, validation)
    if account is None:
        raise BuildError(f"extra account metas for mint {mint} and program {program_id} does not exist")

    instruction = update_extra_account_meta_list(
        program_id, validation, mint, mint_authority.public_address(), metas,
    )
    top_up = await _rent_top_up(ledger, account, len(metas))
    return await _send(ledger, submitter, payer, mint_authority, validation, top_up, instruction)
