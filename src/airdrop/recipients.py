"""Recipient source: ordered (address, amount) pairs from a CSV file or the command line."""
from __future__ import annotations

import csv
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path

from solders.pubkey import Pubkey

from airdrop.errors import ParseError

log = logging.getLogger("airdrop.recipients")

ADDRESS_COLUMNS = ("pubkey", "address", "recipient", "wallet")
AMOUNT_COLUMN = "amount"


@dataclass(frozen=True, slots=True)
class Recipient:
    """Amount is in whole tokens; it is scaled to base units when the transfer is built."""

    address: Pubkey
    amount: Decimal


def parse_amount(text: str | Decimal) -> Decimal:
    try:
        amount = text if isinstance(text, Decimal) else Decimal(str(text).strip())
    except InvalidOperation as e:
        raise ParseError(f"invalid amount: {text!r}") from e
    if not amount.is_finite() or amount <= 0:
        raise ParseError(f"amount must be a positive number: {text!r}")
    return amount


def parse_address(text: str) -> Pubkey:
    try:
        return Pubkey.from_string(text.strip())
    except ValueError as e:
        raise ParseError(f"invalid address: {text!r}") from e


def _looks_like_address(text: str) -> bool:
    try:
        Pubkey.from_string(text.strip())
    except ValueError:
        return False
    return True


def recipients_from_addresses(addresses: Iterable[str], amount: str | Decimal) -> list[Recipient]:
    fixed = parse_amount(amount)
    return [Recipient(parse_address(a), fixed) for a in addresses]


def read_recipients(path: str | Path, default_amount: str | Decimal | None = None) -> list[Recipient]:
    """Read recipients in file order.

    The file may have a header naming an address column (pubkey, address,
    recipient or wallet; otherwise the first column) and an optional
    ``amount`` column. A file without a header is address[,amount] per row.
    Rows with no amount use ``default_amount``.
    """
    fixed = parse_amount(default_amount) if default_amount is not None else None
    p = Path(path)
    try:
        with p.open(newline="") as f_in:
            rows = [(n, row) for n, row in enumerate(csv.reader(f_in), start=1)
                    if any(cell.strip() for cell in row)]
    except FileNotFoundError as e:
        raise ParseError(f"recipient file not found: {p}") from e

    if not rows:
        return []

    first_line, first = rows[0]
    if _looks_like_address(first[0]):
        addr_col, amount_col = 0, 1
    else:
        header = [h.strip().lower() for h in first]
        addr_col = next((header.index(c) for c in ADDRESS_COLUMNS if c in header), 0)
        amount_col = header.index(AMOUNT_COLUMN) if AMOUNT_COLUMN in header else None
        rows = rows[1:]

    out: list[Recipient] = []
    for line, row in rows:
        try:
            address = parse_address(row[addr_col])
            cell = row[amount_col].strip() if amount_col is not None and amount_col < len(row) else ""
        except IndexError as e:
            raise ParseError(f"{p}:{line}: missing address column") from e
        except ParseError as e:
            raise ParseError(f"{p}:{line}: {e}") from e

        if cell:
            try:
                amount = parse_amount(cell)
            except ParseError as e:
                raise ParseError(f"{p}:{line}: {e}") from e
        elif fixed is not None:
            amount = fixed
        else:
            raise ParseError(f"{p}:{line}: no amount in row and no fixed amount given")
        out.append(Recipient(address, amount))

    log.info("Read %d recipients from %s", len(out), p)
    return out
