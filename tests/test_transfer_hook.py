import struct
from unittest import IsolatedAsyncioTestCase, TestCase

from solders.pubkey import Pubkey

from airdrop.errors import BuildError, ParseError
from airdrop.transfer_hook import (
    EXECUTE_DISCRIMINATOR,
    ExtraAccountMeta,
    extra_account_metas_size,
    get_extra_account_metas_address,
    pack_extra_account_metas,
    parse_extra_account_metas,
    parse_mint,
    parse_transfer_hook_account_arg,
    resolve_extra_account_metas,
)

from fakes import FakeLedger, account, mint_data


def validation_state(metas: list[ExtraAccountMeta]) -> bytes:
    value = pack_extra_account_metas(metas)
    return EXECUTE_DISCRIMINATOR + struct.pack("<I", len(value)) + value


def seeded(discriminator: int, config: bytes, *, is_writable: bool = False) -> ExtraAccountMeta:
    return ExtraAccountMeta(discriminator, config.ljust(32, b"\0"), False, is_writable)


class MintParsingTest(TestCase):
    def test_plain_mint(self):
        self.assertEqual(parse_mint(mint_data(decimals=5)).decimals, 5)
        self.assertIsNone(parse_mint(mint_data()).transfer_hook_program)

    def test_mint_with_hook(self):
        hook = Pubkey.new_unique()
        self.assertEqual(parse_mint(mint_data(hook_program=hook)).transfer_hook_program, hook)

    def test_truncated_mint(self):
        with self.assertRaises(BuildError):
            parse_mint(b"\0" * 10)


class ExtraAccountMetaTest(TestCase):
    def test_pack_layout(self):
        meta = ExtraAccountMeta.literal(Pubkey.new_unique(), is_signer=True)
        packed = meta.pack()
        self.assertEqual(len(packed), 35)
        self.assertEqual(ExtraAccountMeta.unpack(packed), meta)

    def test_account_size(self):
        self.assertEqual(extra_account_metas_size(0), 16)
        self.assertEqual(extra_account_metas_size(2), 86)
        self.assertEqual(len(validation_state([ExtraAccountMeta.literal(Pubkey.new_unique())] * 2)), 86)

    def test_parse_skips_other_tlv_entries(self):
        meta = ExtraAccountMeta.literal(Pubkey.new_unique())
        other = b"\x01" * 8 + struct.pack("<I", 3) + b"abc"
        self.assertEqual(parse_extra_account_metas(other + validation_state([meta])), [meta])

    def test_parse_without_execute_entry(self):
        with self.assertRaises(BuildError):
            parse_extra_account_metas(b"")

    def test_parse_rejects_corrupt_entries(self):
        # value too short to hold the meta count
        with self.assertRaises(BuildError):
            parse_extra_account_metas(EXECUTE_DISCRIMINATOR + struct.pack("<I", 2) + b"\x01\x00")
        # declared length runs past the account data
        with self.assertRaises(BuildError):
            parse_extra_account_metas(EXECUTE_DISCRIMINATOR + struct.pack("<I", 40) + struct.pack("<I", 1))

    def test_account_arg(self):
        address = Pubkey.new_unique()
        meta = parse_transfer_hook_account_arg(f"{address}:writable-signer")
        self.assertEqual((Pubkey(meta.address_config), meta.is_signer, meta.is_writable), (address, True, True))
        with self.assertRaises(ParseError):
            parse_transfer_hook_account_arg(f"{address}:owner")
        with self.assertRaises(ParseError):
            parse_transfer_hook_account_arg("nope:readonly")


class ResolveTest(IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.hook = Pubkey.new_unique()
        self.mint = Pubkey.new_unique()
        self.source, self.destination, self.owner = (Pubkey.new_unique() for _ in range(3))
        self.validation = get_extra_account_metas_address(self.mint, self.hook)

    async def resolve(self, ledger, amount: int = 42):
        return await resolve_extra_account_metas(
            ledger, program_id=self.hook, source=self.source, mint=self.mint,
            destination=self.destination, authority=self.owner, amount=amount,
        )

    async def test_seeded_metas(self):
        other_program = Pubkey.new_unique()
        metas = [
            # PDA of the hook: ["counter", mint]
            seeded(1, bytes([1, 7]) + b"counter" + bytes([3, 1]), is_writable=True),
            # literal, becomes account #6
            ExtraAccountMeta.literal(other_program),
            # PDA of account #6 (other_program): [amount bytes, owner, first 4 bytes of mint data]
            seeded(128 + 6, bytes([2, 8, 8]) + bytes([3, 3]) + bytes([4, 1, 0, 4])),
        ]
        ledger = FakeLedger({
            self.validation: account(validation_state(metas), owner=self.hook),
            self.mint: account(b"MINTDATA"),
        })

        resolved = await self.resolve(ledger)

        pda1 = Pubkey.find_program_address([b"counter", bytes(self.mint)], self.hook)[0]
        pda3 = Pubkey.find_program_address(
            [struct.pack("<Q", 42), bytes(self.owner), b"MINT"], other_program)[0]
        self.assertEqual([m.pubkey for m in resolved], [pda1, other_program, pda3, self.hook, self.validation])
        self.assertTrue(resolved[0].is_writable)
        self.assertFalse(resolved[3].is_writable)

    async def test_missing_validation_account(self):
        with self.assertRaises(BuildError):
            await self.resolve(FakeLedger())

    async def test_unsupported_seed(self):
        metas = [seeded(1, bytes([9, 1]))]
        ledger = FakeLedger({self.validation: account(validation_state(metas), owner=self.hook)})
        with self.assertRaises(BuildError):
            await self.resolve(ledger)

    async def test_forward_reference_is_rejected(self):
        metas = [seeded(1, bytes([3, 9]))]
        ledger = FakeLedger({self.validation: account(validation_state(metas), owner=self.hook)})
        with self.assertRaises(BuildError):
            await self.resolve(ledger)

    async def test_literal_seed_past_end_of_config(self):
        metas = [seeded(1, bytes([1, 40]) + b"x" * 10)]
        ledger = FakeLedger({self.validation: account(validation_state(metas), owner=self.hook)})
        with self.assertRaises(BuildError):
            await self.resolve(ledger)

    async def test_account_data_seed_longer_than_a_pda_seed(self):
        metas = [seeded(1, bytes([4, 0, 0, 40]))]
        ledger = FakeLedger({
            self.validation: account(validation_state(metas), owner=self.hook),
            self.source: account(bytes(100)),
        })
        with self.assertRaises(BuildError):
            await self.resolve(ledger)
