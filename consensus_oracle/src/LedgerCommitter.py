"""LedgerCommitter: Abstract capability for committing prices to a ledger."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class CommitReceipt:
    """Confirmation of a ledger write.

    :ivar tx_hash: Transaction handle (hex string).
    :ivar block_number: Block that included the write, if known.
    :ivar gas_used: Gas consumed, if known.
    """

    tx_hash: str
    block_number: int | None = None
    gas_used: int | None = None


class LedgerCommitter(ABC):
    """Abstract base class for ledger commit implementations.

    Implementations must raise CommitError on failure rather than returning
    a partial receipt. The scheduler bounds every call with its own timeout.
    """

    @abstractmethod
    async def commit(self, scaled_price: int) -> CommitReceipt:
        """Commit a scaled reference price.

        :param scaled_price: Reference price multiplied by 10**PRICE_DECIMALS.
        :returns: Receipt of the confirmed write.
        :raises CommitError: If the write fails or is reverted.
        """
        pass

    def describe(self) -> str:
        """Short description for logging."""
        return type(self).__name__
