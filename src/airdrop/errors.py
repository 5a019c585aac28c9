"""Exception hierarchy for the airdrop pipeline."""
from __future__ import annotations

from enum import StrEnum


class AirdropError(Exception):
    """Base class for every error the pipeline raises on purpose."""


class ConfigurationError(AirdropError):
    """Raised when settings or keypairs cannot be loaded or validated."""


class ParseError(AirdropError):
    """Raised for malformed recipient rows or command line values."""


class BuildError(AirdropError):
    """Raised when instructions or transactions for a batch cannot be built."""


class RemoteErrorKind(StrEnum):
    NOT_FOUND = "NOT_FOUND"
    EXPIRED   = "EXPIRED"
    REJECTED  = "REJECTED"
    OTHER     = "OTHER"


class RemoteError(AirdropError):
    """A failed call against the RPC node, tagged with what went wrong."""

    kind: RemoteErrorKind = RemoteErrorKind.OTHER

    def __init__(self, message: str, *, kind: RemoteErrorKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    @classmethod
    def of(cls, kind: RemoteErrorKind, message: str) -> "RemoteError":
        """Return the most specific subclass for ``kind``."""
        if kind is RemoteErrorKind.EXPIRED:
            return TokenExpiredError(message)
        if kind is RemoteErrorKind.REJECTED:
            return SubmitRejectedError(message)
        return cls(message, kind=kind)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value}, {str(self)!r})"


class TokenExpiredError(RemoteError):
    """The blockhash a transaction was signed with is no longer accepted."""

    kind = RemoteErrorKind.EXPIRED


class SubmitRejectedError(RemoteError):
    """The node refused the transaction (preflight failure, on-chain error)."""

    kind = RemoteErrorKind.REJECTED


class RetryBudgetExhausted(AirdropError):
    """A batch used every submission attempt without being confirmed."""

    def __init__(self, batch_index: int, attempts: int, last_error: BaseException | None = None) -> None:
        self.batch_index = batch_index
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"batch {batch_index} failed after {attempts} attempts: {last_error}")
