"""Failure recorder: the flat list of recipients a re-run still has to pay."""
import csv
import logging
import os
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from solders.pubkey import Pubkey

from airdrop.constants import RECOVERY_HEADER

log = logging.getLogger("airdrop.recovery")


@dataclass(frozen=True, slots=True)
class RecoveryRow:
    pubkey: Pubkey
    amount: Decimal


def slice_unconfirmed(
    all_recipients: Sequence[Pubkey],
    all_amounts: Sequence[Decimal],
    failed_batch_index: int,
    batch_size: int,
) -> list[RecoveryRow]:
    """Every recipient from the start of the failed batch onward, in source order."""
    if len(all_recipients) != len(all_amounts):
        raise ValueError("recipient and amount lists differ in length")
    if failed_batch_index < 0 or batch_size <= 0:
        raise ValueError("failed_batch_index must be >= 0 and batch_size > 0")
    start = failed_batch_index * batch_size
    return [RecoveryRow(p, a) for p, a in zip(all_recipients[start:], all_amounts[start:])]


def write_recovery_list(path: str | Path, rows: Sequence[RecoveryRow]) -> Path:
    """Overwrite ``path`` with ``rows``. An empty ``rows`` leaves just the header."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{p.name}.", dir=p.parent)
    try:
        with os.fdopen(fd, "w", newline="") as f_out:
            writer = csv.writer(f_out)
            writer.writerow(RECOVERY_HEADER)
            writer.writerows((str(r.pubkey), str(r.amount)) for r in rows)
        os.replace(tmp, p)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    log.debug("Wrote %d recovery rows to %s", len(rows), p)
    return p

