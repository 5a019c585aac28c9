import argparse
import asyncio
import logging
import sys
from pathlib import Path

from airdrop import __version__
from airdrop.config import Settings, load_settings
from airdrop.errors import AirdropError, ParseError
from airdrop.extra_metas import create_extra_account_metas, update_extra_account_metas
from airdrop.fee_info import FeeInfo
from airdrop.logging_config import setup_logging
from airdrop.pipeline import AirdropPipeline
from airdrop.recipients import parse_address, read_recipients, recipients_from_addresses
from airdrop.rpc import SolanaLedgerService
from airdrop.signer import load_authority
from airdrop.submitter import Submitter
from airdrop.transfer_hook import parse_transfer_hook_account_arg

log = logging.getLogger("airdrop.cli")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="airdrop", description="Airdrop SPL tokens in batched transactions.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-C", "--config", type=Path, metavar="PATH", help="Configuration file to use.")
    parser.add_argument("--fee-payer", metavar="KEYPAIR",
                        help="Keypair file or base58 secret key paying fees [default: configured keypair].")
    parser.add_argument("-u", "--url", metavar="URL",
                        help="JSON RPC URL or moniker (mainnet-beta, testnet, devnet, localhost).")
    parser.add_argument("--commitment", choices=["processed", "confirmed", "finalized"],
                        help="Commitment level to confirm transactions at.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show additional information.")
    sub = parser.add_subparsers(dest="command", required=True)

    drop = sub.add_parser("airdrop", help="Airdrop a given number of tokens to a list of addresses.")
    drop.add_argument("token", metavar="TOKEN_MINT_ADDRESS", help="Token to airdrop.")
    drop.add_argument("amount", metavar="TOKEN_AMOUNT",
                      help="Amount to send per recipient, in tokens. A CSV amount column overrides it.")
    drop.add_argument("recipients", metavar="RECIPIENT_ACCOUNTS", nargs="*", help="Accounts to airdrop to.")
    drop.add_argument("-f", "--file", type=Path, metavar="RECIPIENTS_CSV_FILE",
                      help="CSV file containing a list of recipient accounts.")
    drop.add_argument("--recovery", type=Path, metavar="PATH",
                      help="Where to write recipients that were not confirmed.")
    drop.add_argument("--batch-size", type=int, metavar="N", help="Transfers per transaction.")

    for name, about in (("create-extra-metas", "Create the extra account metas account for a transfer hook."),
                        ("update-extra-metas", "Update the extra account metas account for a transfer hook.")):
        p = sub.add_parser(name, help=about)
        p.add_argument("program_id", metavar="TRANSFER_HOOK_PROGRAM", help="The transfer hook program id.")
        p.add_argument("token", metavar="TOKEN_MINT_ADDRESS", help="The token mint address.")
        p.add_argument("transfer_hook_accounts", metavar="ADDRESS:ROLE", nargs="*",
                       help="Extra accounts, ROLE one of readonly, writable, readonly-signer, writable-signer.")
        p.add_argument("--mint-authority", metavar="KEYPAIR",
                       help="Mint authority keypair [default: configured keypair].")

    return parser.parse_args(argv)


def settings_from_args(a: argparse.Namespace) -> Settings:
    overrides = {
        "keypair": a.fee_payer,
        "rpc": {"url": a.url, "commitment": a.commitment},
        "batch": {
            "max_transfers_per_tx": getattr(a, "batch_size", None),
            "recovery_file": getattr(a, "recovery", None),
        },
    }
    return load_settings(a.config, overrides)


async def run_airdrop(settings: Settings, a: argparse.Namespace) -> int:
    mint = parse_address(a.token)
    if a.file is not None:
        recipients = read_recipients(a.file, default_amount=a.amount)
    elif a.recipients:
        recipients = recipients_from_addresses(a.recipients, a.amount)
    else:
        raise ParseError("no recipients given; pass addresses or --file")

    authority = load_authority(settings.keypair)
    async with SolanaLedgerService(settings.rpc.url, commitment=settings.rpc.commitment,
                                   timeout=settings.rpc.timeout) as ledger:
        pipeline = AirdropPipeline(
            ledger,
            authority,
            mint,
            recovery_path=settings.batch.recovery_file,
            batch_size=settings.batch.max_transfers_per_tx,
            fee_info=FeeInfo.from_settings(settings.fees),
            commitment=settings.rpc.commitment,
        )
        result = await pipeline.run(recipients)
    print(result.summary())
    return 0


async def run_extra_metas(settings: Settings, a: argparse.Namespace) -> int:
    program_id = parse_address(a.program_id)
    mint = parse_address(a.token)
    metas = [parse_transfer_hook_account_arg(arg) for arg in a.transfer_hook_accounts]
    payer = load_authority(settings.keypair)
    mint_authority = load_authority(a.mint_authority) if a.mint_authority else payer
    action = create_extra_account_metas if a.command == "create-extra-metas" else update_extra_account_metas

    async with SolanaLedgerService(settings.rpc.url, commitment=settings.rpc.commitment,
                                   timeout=settings.rpc.timeout) as ledger:
        signature = await action(
            ledger,
            Submitter(ledger, settings.rpc.commitment),
            program_id=program_id,
            mint=mint,
            metas=metas,
            mint_authority=mint_authority,
            payer=payer,
        )
    print(f"Signature: {signature}")
    return 0


def main(argv: list[str] | None = None) -> int:
    a = parse_args(argv)
    try:
        settings = settings_from_args(a)
        setup_logging("DEBUG" if a.verbose else settings.log_level)
        if a.verbose:
            print(f"JSON RPC URL: {settings.rpc.url}")
        if a.command == "airdrop":
            return asyncio.run(run_airdrop(settings, a))
        return asyncio.run(run_extra_metas(settings, a))
    except AirdropError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
