"""Priority fee settings for airdrop transactions.

NOTE: The two compute budget instructions always lead a transaction.
"""

from dataclasses import dataclass

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import Instruction

from airdrop.constants import DEFAULT_COMPUTE_UNIT_LIMIT, DEFAULT_COMPUTE_UNIT_PRICE


@dataclass(frozen=True)
class FeeInfo:
    """Compute budget requested for every batch.

    compute_unit_limit caps the compute units a transaction may consume.
    compute_unit_price is the priority fee in micro-lamports per compute unit.
    """

    compute_unit_limit: int = DEFAULT_COMPUTE_UNIT_LIMIT
    compute_unit_price: int = DEFAULT_COMPUTE_UNIT_PRICE  # micro-lamports

    @classmethod
    def from_settings(cls, settings) -> "FeeInfo":
        """Build from the ``[fees]`` section of the settings.

        Args:
            settings: A FeeSettings model or any object with the same attributes

        Returns:
            FeeInfo instance with the configured values
        """
        return cls(
            compute_unit_limit=int(settings.compute_unit_limit),
            compute_unit_price=int(settings.compute_unit_price),
        )

    def instructions(self) -> list[Instruction]:
        return [
            set_compute_unit_limit(self.compute_unit_limit),
            set_compute_unit_price(self.compute_unit_price),
        ]
