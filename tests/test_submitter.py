"""Retry controller: bounded attempts, re-sign only on blockhash expiry."""
from unittest import IsolatedAsyncioTestCase

from solders.compute_budget import set_compute_unit_limit
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from airdrop.batcher import TransactionBatch
from airdrop.constants import MAX_RETRIES, BatchState, Commitment
from airdrop.errors import (
    BuildError,
    RemoteError,
    RemoteErrorKind,
    RetryBudgetExhausted,
    SubmitRejectedError,
    TokenExpiredError,
)
from airdrop.signer import Authority
from airdrop.submitter import Submitter

from fakes import FakeLedger


class SubmitterTest(IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.authority = Authority(Keypair())

    async def signed_batch(self, ledger: FakeLedger) -> TransactionBatch:
        batch = TransactionBatch(
            index=0,
            recipients=[],
            instructions=[set_compute_unit_limit(200_000)],
            payer=self.authority.public_address(),
            signers=[self.authority],
        )
        batch.sign(await ledger.get_latest_token())
        return batch

    async def test_confirms_on_first_attempt(self):
        ledger = FakeLedger()
        batch = await self.signed_batch(ledger)
        signature = await Submitter(ledger).submit(batch)

        self.assertEqual(signature, batch.transaction.signatures[0])
        self.assertEqual(batch.state, BatchState.CONFIRMED)
        self.assertEqual(batch.attempts, 1)
        self.assertEqual(len(ledger.submitted), 1)

    async def test_rejections_resend_same_payload_until_budget_is_spent(self):
        ledger = FakeLedger(outcomes=[SubmitRejectedError("insufficient funds")] * 10)
        batch = await self.signed_batch(ledger)
        original = batch.transaction

        with self.assertRaises(RetryBudgetExhausted) as ctx:
            await Submitter(ledger).submit(batch)

        self.assertEqual(ctx.exception.attempts, MAX_RETRIES)
        self.assertIsInstance(ctx.exception.last_error, SubmitRejectedError)
        self.assertEqual(len(ledger.submitted), MAX_RETRIES)
        self.assertTrue(all(tx == original for tx in ledger.submitted))
        self.assertEqual(len(ledger.tokens), 1)
        self.assertEqual(batch.state, BatchState.FAILED)

    async def test_expiry_re_signs_once_before_next_attempt(self):
        ledger = FakeLedger(outcomes=[TokenExpiredError("blockhash not found"), None])
        batch = await self.signed_batch(ledger)

        await Submitter(ledger).submit(batch)

        self.assertEqual(len(ledger.tokens), 2)
        first, second = ledger.submitted
        self.assertEqual(first.message.recent_blockhash, ledger.tokens[0].blockhash)
        self.assertEqual(second.message.recent_blockhash, ledger.tokens[1].blockhash)
        self.assertEqual(first.message.instructions, second.message.instructions)
        self.assertEqual(batch.state, BatchState.CONFIRMED)

    async def test_expiry_every_attempt_never_exceeds_budget(self):
        ledger = FakeLedger(outcomes=[TokenExpiredError("expired")] * 10)
        batch = await self.signed_batch(ledger)

        with self.assertRaises(RetryBudgetExhausted):
            await Submitter(ledger).submit(batch)

        self.assertEqual(len(ledger.submitted), MAX_RETRIES)
        # one token to sign, one re-sign between each pair of attempts
        self.assertEqual(len(ledger.tokens), MAX_RETRIES)

    async def test_budget_is_shared_between_error_kinds(self):
        ledger = FakeLedger(outcomes=[
            TokenExpiredError("expired"),
            RemoteError("connection reset"),
            TokenExpiredError("expired"),
            None,
        ])
        batch = await self.signed_batch(ledger)

        await Submitter(ledger).submit(batch)

        self.assertEqual(batch.attempts, 4)
        self.assertEqual(len(ledger.tokens), 3)
        # attempt 3 resent attempt 2's payload, attempt 4 was re-signed
        self.assertEqual(ledger.submitted[2], ledger.submitted[1])
        self.assertEqual(ledger.submitted[1].message.recent_blockhash, ledger.tokens[1].blockhash)
        self.assertEqual(ledger.submitted[3].message.recent_blockhash, ledger.tokens[2].blockhash)

    async def test_uses_one_commitment_level_for_every_attempt(self):
        ledger = FakeLedger(outcomes=[TokenExpiredError("expired"), RemoteError("timeout"), None])
        batch = await self.signed_batch(ledger)

        await Submitter(ledger, Commitment.FINALIZED).submit(batch)

        self.assertEqual(set(ledger.commitments), {Commitment.FINALIZED})

    async def test_failed_re_sign_marks_batch_failed(self):
        ledger = FakeLedger(outcomes=[TokenExpiredError("expired")])
        batch = await self.signed_batch(ledger)
        # no longer fits in a packet once it has to be signed again
        batch.instructions.append(Instruction(Pubkey.new_unique(), bytes(1300), []))

        with self.assertRaises(BuildError):
            await Submitter(ledger).submit(batch)

        self.assertEqual(batch.state, BatchState.FAILED)
        self.assertEqual(len(ledger.submitted), 1)

    async def test_failed_token_refresh_marks_batch_failed(self):
        ledger = FakeLedger(outcomes=[TokenExpiredError("expired")])
        batch = await self.signed_batch(ledger)

        async def unreachable():
            raise RemoteError("connection refused")

        ledger.get_latest_token = unreachable
        with self.assertRaises(RemoteError):
            await Submitter(ledger).submit(batch)

        self.assertEqual(batch.state, BatchState.FAILED)

    async def test_unsigned_batch_is_refused(self):
        batch = TransactionBatch(index=0, recipients=[], instructions=[],
                                 payer=self.authority.public_address(), signers=[self.authority])
        with self.assertRaises(ValueError):
            await Submitter(FakeLedger()).submit(batch)

    def test_remote_error_kind_maps_to_subclass(self):
        self.assertIsInstance(RemoteError.of(RemoteErrorKind.EXPIRED, "x"), TokenExpiredError)
        self.assertIsInstance(RemoteError.of(RemoteErrorKind.REJECTED, "x"), SubmitRejectedError)
        self.assertIs(RemoteError.of(RemoteErrorKind.NOT_FOUND, "x").kind, RemoteErrorKind.NOT_FOUND)
