"""Token-2022 transfer-hook support.

Reads the TransferHook extension off a mint and resolves the extra accounts a
hook program asks for on every transfer, mirroring the on-chain account
resolution of spl-tlv-account-resolution.

Validation account layout (one TLV entry)::

    [0..8)    Execute discriminator
    [8..12)   u32 value length
    [12..16)  u32 meta count
    [16..)    count * 35-byte ExtraAccountMeta

ExtraAccountMeta::

    discriminator  u8        0 literal, 1 PDA of the hook program,
                             128+i PDA of the program at account index i
    address_config [u8; 32]  pubkey bytes or packed seeds
    is_signer      u8
    is_writable    u8
"""
from __future__ import annotations

import hashlib
import logging
import struct
from dataclasses import dataclass
from typing import Optional

from solders.instruction import AccountMeta
from solders.pubkey import Pubkey

from airdrop.errors import BuildError, ParseError, RemoteError
from airdrop.rpc import LedgerService

log = logging.getLogger("airdrop.transfer_hook")


def _discriminator(name: str) -> bytes:
    return hashlib.sha256(f"spl-transfer-hook-interface:{name}".encode()).digest()[:8]


EXECUTE_DISCRIMINATOR = _discriminator("execute")
INITIALIZE_DISCRIMINATOR = _discriminator("initialize-extra-account-metas")
UPDATE_DISCRIMINATOR = _discriminator("update-extra-account-metas")

EXTRA_ACCOUNT_METAS_SEED = b"extra-account-metas"
EXTRA_ACCOUNT_META_SIZE = 35
MAX_SEED_LEN = 32

# Mint layout: 82 byte base, padded to the 165 byte token account size,
# then one AccountType byte and the extension TLVs.
MINT_DECIMALS_OFFSET = 44
BASE_ACCOUNT_SIZE = 165
ACCOUNT_TYPE_MINT = 1
TRANSFER_HOOK_EXTENSION = 14

SEED_LITERAL = 1
SEED_INSTRUCTION_DATA = 2
SEED_ACCOUNT_KEY = 3
SEED_ACCOUNT_DATA = 4

ROLES = {
    "readonly": (False, False),
    "writable": (False, True),
    "readonly-signer": (True, False),
    "writable-signer": (True, True),
}


@dataclass(frozen=True, slots=True)
class MintInfo:
    decimals: int
    transfer_hook_program: Optional[Pubkey] = None


def parse_mint(data: bytes) -> MintInfo:
    if len(data) < MINT_DECIMALS_OFFSET + 1:
        raise BuildError(f"mint account data too short ({len(data)} bytes)")
    decimals = data[MINT_DECIMALS_OFFSET]
    hook_program = None

    if len(data) > BASE_ACCOUNT_SIZE and data[BASE_ACCOUNT_SIZE] == ACCOUNT_TYPE_MINT:
        offset = BASE_ACCOUNT_SIZE + 1
        while offset + 4 <= len(data):
            ext_type, length = struct.unpack_from("<HH", data, offset)
            value = data[offset + 4: offset + 4 + length]
            if ext_type == TRANSFER_HOOK_EXTENSION and len(value) >= 64:
                program = value[32:64]  # value[:32] is the hook authority
                if any(program):
                    hook_program = Pubkey(program)
                break
            if ext_type == 0 and length == 0:
                break
            offset += 4 + length

    return MintInfo(decimals=decimals, transfer_hook_program=hook_program)


@dataclass(frozen=True, slots=True)
class ExtraAccountMeta:
    discriminator: int
    address_config: bytes
    is_signer: bool = False
    is_writable: bool = False

    @classmethod
    def literal(cls, address: Pubkey, *, is_signer: bool = False, is_writable: bool = False) -> "ExtraAccountMeta":
        return cls(0, bytes(address), is_signer, is_writable)

    def pack(self) -> bytes:
        return (bytes([self.discriminator]) + self.address_config.ljust(32, b"\0")
                + bytes([int(self.is_signer), int(self.is_writable)]))

    @classmethod
    def unpack(cls, raw: bytes) -> "ExtraAccountMeta":
        return cls(raw[0], bytes(raw[1:33]), bool(raw[33]), bool(raw[34]))


def pack_extra_account_metas(metas: list[ExtraAccountMeta]) -> bytes:
    """Serialize metas the way instructions and the validation account carry them (u32 count + entries)."""
    return struct.pack("<I", len(metas)) + b"".join(m.pack() for m in metas)


def extra_account_metas_size(count: int) -> int:
    return 8 + 4 + 4 + EXTRA_ACCOUNT_META_SIZE * count


def parse_extra_account_metas(data: bytes) -> list[ExtraAccountMeta]:
    offset = 0
    while offset + 12 <= len(data):
        disc = data[offset: offset + 8]
        (length,) = struct.unpack_from("<I", data, offset + 8)
        value = data[offset + 12: offset + 12 + length]
        if len(value) < length:
            raise BuildError("validation account TLV entry runs past the end of the data")
        if disc == EXECUTE_DISCRIMINATOR:
            if len(value) < 4:
                raise BuildError("extra account metas list is missing its count")
            (count,) = struct.unpack_from("<I", value, 0)
            entries = value[4:]
            if len(entries) < count * EXTRA_ACCOUNT_META_SIZE:
                raise BuildError("extra account metas list is truncated")
            return [ExtraAccountMeta.unpack(entries[i * EXTRA_ACCOUNT_META_SIZE:(i + 1) * EXTRA_ACCOUNT_META_SIZE])
                    for i in range(count)]
        offset += 12 + length
    raise BuildError("validation account holds no Execute extra account metas")


def get_extra_account_metas_address(mint: Pubkey, program_id: Pubkey) -> Pubkey:
    return Pubkey.find_program_address([EXTRA_ACCOUNT_METAS_SEED, bytes(mint)], program_id)[0]


def parse_transfer_hook_account_arg(arg: str) -> ExtraAccountMeta:
    """Parse ``ADDRESS:ROLE`` where ROLE is readonly, writable, readonly-signer or writable-signer."""
    address, _, role = arg.partition(":")
    if role not in ROLES:
        raise ParseError(f"invalid transfer hook account {arg!r}: role must be one of {', '.join(ROLES)}")
    try:
        pubkey = Pubkey.from_string(address)
    except ValueError as e:
        raise ParseError(f"invalid transfer hook account address {address!r}") from e
    is_signer, is_writable = ROLES[role]
    return ExtraAccountMeta.literal(pubkey, is_signer=is_signer, is_writable=is_writable)


def _seed_fields(config: bytes, i: int, n: int) -> bytes:
    """The ``n`` bytes following the seed type at ``config[i]``."""
    fields = config[i + 1: i + 1 + n]
    if len(fields) < n:
        raise BuildError(f"seed config truncated at byte {i}")
    return fields


async def _resolve_seeds(config: bytes, keys: list[Pubkey], instruction_data: bytes,
                         ledger: LedgerService) -> list[bytes]:
    seeds: list[bytes] = []
    i = 0
    while i < len(config) and config[i] != 0:
        kind = config[i]
        if kind == SEED_LITERAL:
            (length,) = _seed_fields(config, i, 1)
            seeds.append(_seed_fields(config, i + 1, length))
            i += 2 + length
        elif kind == SEED_INSTRUCTION_DATA:
            index, length = _seed_fields(config, i, 2)
            if index + length > len(instruction_data):
                raise BuildError("instruction data seed out of range")
            seeds.append(instruction_data[index: index + length])
            i += 3
        elif kind == SEED_ACCOUNT_KEY:
            (index,) = _seed_fields(config, i, 1)
            seeds.append(bytes(_key_at(keys, index)))
            i += 2
        elif kind == SEED_ACCOUNT_DATA:
            account_index, data_index, length = _seed_fields(config, i, 3)
            address = _key_at(keys, account_index)
            account = await _fetch(ledger, address)
            data = bytes(account.data)
            if data_index + length > len(data):
                raise BuildError(f"account data seed out of range for {address}")
            seeds.append(data[data_index: data_index + length])
            i += 4
        else:
            raise BuildError(f"unsupported seed type {kind}")
    if any(len(s) > MAX_SEED_LEN for s in seeds):
        raise BuildError(f"seed longer than {MAX_SEED_LEN} bytes")
    return seeds


def _key_at(keys: list[Pubkey], index: int) -> Pubkey:
    if index >= len(keys):
        raise BuildError(f"account index {index} not resolved yet")
    return keys[index]


async def _fetch(ledger: LedgerService, address: Pubkey):
    try:
        account = await ledger.get_account(address)
    except RemoteError as e:
        raise BuildError(f"could not read {address}: {e}") from e
    if account is None:
        raise BuildError(f"account {address} does not exist")
    return account


async def resolve_extra_account_metas(
    ledger: LedgerService,
    *,
    program_id: Pubkey,
    source: Pubkey,
    mint: Pubkey,
    destination: Pubkey,
    authority: Pubkey,
    amount: int,
) -> list[AccountMeta]:
    """Accounts to append to a transfer-checked instruction for a hooked mint.

    Returns the resolved extra metas followed by the hook program and the
    validation account, in the order the token program expects them.
    """
    validation = get_extra_account_metas_address(mint, program_id)
    account = await _fetch(ledger, validation)
    metas = parse_extra_account_metas(bytes(account.data))

    instruction_data = EXECUTE_DISCRIMINATOR + struct.pack("<Q", amount)
    keys = [source, mint, destination, authority, validation]
    resolved: list[AccountMeta] = []

    for meta in metas:
        if meta.discriminator == 0:
            pubkey = Pubkey(meta.address_config)
        elif meta.discriminator == 1 or meta.discriminator >= 128:
            owner = program_id if meta.discriminator == 1 else _key_at(keys, meta.discriminator - 128)
            seeds = await _resolve_seeds(meta.address_config, keys, instruction_data, ledger)
            pubkey = Pubkey.find_program_address(seeds, owner)[0]
        else:
            raise BuildError(f"unsupported extra account meta discriminator {meta.discriminator}")
        keys.append(pubkey)
        resolved.append(AccountMeta(pubkey, meta.is_signer, meta.is_writable))

    log.debug("Resolved %d extra accounts for hook %s", len(resolved), program_id)
    return [*resolved, AccountMeta(program_id, False, False), AccountMeta(validation, False, False)]
