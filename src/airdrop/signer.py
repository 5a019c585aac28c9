"""Signing authority: a loaded keypair that signs transaction messages."""
import json
import logging
from collections.abc import Sequence
from pathlib import Path

import base58
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from airdrop.errors import ConfigurationError

log = logging.getLogger("airdrop.signer")


def _keypair_from_bytes(raw: bytes) -> Keypair:
    if len(raw) != 64:
        raise ValueError(f"expected 64 secret key bytes, got {len(raw)}")
    return Keypair.from_bytes(raw)


class Authority:
    def __init__(self, keypair: Keypair) -> None:
        self._keypair = keypair

    def public_address(self) -> Pubkey:
        return self._keypair.pubkey()

    def sign(self, message: bytes) -> Signature:
        return self._keypair.sign_message(message)

    def __repr__(self) -> str:
        return f"Authority({self.public_address()})"

    @classmethod
    def from_keypair_file(cls, path: str | Path) -> "Authority":
        """Load a Solana CLI keypair file (a JSON array of 64 bytes)."""
        p = Path(path).expanduser()
        try:
            raw = bytes(json.loads(p.read_text()))
            return cls(_keypair_from_bytes(raw))
        except FileNotFoundError as e:
            raise ConfigurationError(f"keypair file not found: {p}") from e
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            raise ConfigurationError(f"invalid keypair file {p}: {e}") from e

    @classmethod
    def from_base58(cls, secret: str) -> "Authority":
        try:
            return cls(_keypair_from_bytes(base58.b58decode(secret.strip())))
        except ValueError as e:
            raise ConfigurationError(f"invalid base58 secret key: {e}") from e


def load_authority(source: str | Path) -> Authority:
    """Load an authority from a keypair file path, falling back to a base58 secret key."""
    path = Path(source).expanduser()
    if path.is_file():
        log.debug("Loading keypair from %s", path)
        return Authority.from_keypair_file(path)
    if isinstance(source, str) and not any(sep in source for sep in ("/", "\\", "~")):
        return Authority.from_base58(source)
    raise ConfigurationError(f"keypair file not found: {path}")


def sign_message(message: Message, authorities: Sequence[Authority]) -> Transaction:
    """Sign ``message`` with every authority whose key the message requires."""
    by_key = {a.public_address(): a for a in authorities}
    required = message.account_keys[: message.header.num_required_signatures]
    missing = [str(k) for k in required if k not in by_key]
    if missing:
        raise ConfigurationError(f"missing signers: {', '.join(missing)}")
    payload = bytes(message)
    return Transaction.populate(message, [by_key[k].sign(payload) for k in required])
