"""UpdateDecisionPolicy: Decides when a consensus value is worth a ledger write.

Ledger writes cost fees, so values are committed only when one of:

    - nothing has been committed yet (cold start)
    - no ledger is configured (local-only mode, commit is a no-op)
    - the last commit is older than the staleness threshold
    - the reference asset moved more than the deviation threshold

Declined values are still recorded in history.

.. code-block:: python

    >>> policy = UpdateDecisionPolicy("btc", staleness_seconds=900, deviation_percent=5.0)
    >>> policy.should_commit(current, last_committed=None)
    True
"""

from __future__ import annotations

import logging

from .ConsensusEngine import ConsensusResult

logger = logging.getLogger(__name__)


class UpdateDecisionPolicy:
    """Commit hysteresis based on staleness and price movement.

    :ivar reference_asset: Asset whose movement is measured.
    :ivar staleness_seconds: Max age of the last commit.
    :ivar deviation_percent: Max relative move before committing.
    :ivar local_only: True when no ledger is configured.
    """

    def __init__(
        self,
        reference_asset: str,
        staleness_seconds: float = 900.0,
        deviation_percent: float = 5.0,
        local_only: bool = False,
    ) -> None:
        """Initialize the policy.

        :param reference_asset: Asset symbol whose change is measured.
        :param staleness_seconds: Commit when the last commit is older than
            this (default: 900 = 15 minutes).
        :param deviation_percent: Commit when the price moved more than this
            percentage (default: 5.0).
        :param local_only: Whether the oracle runs without a ledger.
        :raises ValueError: If thresholds are not positive.
        """
        if staleness_seconds <= 0:
            raise ValueError("staleness_seconds must be positive")
        if deviation_percent <= 0:
            raise ValueError("deviation_percent must be positive")

        self.reference_asset = reference_asset
        self.staleness_seconds = staleness_seconds
        self.deviation_percent = deviation_percent
        self.local_only = local_only

    def should_commit(
        self,
        current: ConsensusResult,
        last_committed: ConsensusResult | None,
    ) -> bool:
        """Decide whether current should be committed to the ledger.

        :param current: Newly accepted consensus value.
        :param last_committed: Last value confirmed on the ledger, if any.
        :returns: True if a commit is warranted.
        """
        reason = self.commit_reason(current, last_committed)
        if reason is None:
            logger.debug("Commit not needed: within staleness and deviation thresholds")
            return False
        logger.debug(f"Commit warranted: {reason}")
        return True

    def commit_reason(
        self,
        current: ConsensusResult,
        last_committed: ConsensusResult | None,
    ) -> str | None:
        """Explain why a commit is warranted.

        :param current: Newly accepted consensus value.
        :param last_committed: Last committed value, if any.
        :returns: Human readable reason, or None if no commit is needed.
        """
        if self.local_only:
            return "local-only mode"
        if last_committed is None:
            return "no prior commit"

        elapsed = current.captured_at - last_committed.captured_at
        if elapsed > self.staleness_seconds:
            return f"last commit is {elapsed:.0f}s old"

        previous = last_committed.price(self.reference_asset)
        price = current.price(self.reference_asset)
        if previous is None or price is None or previous <= 0:
            return "reference price unavailable for comparison"

        change = abs(price - previous) / previous * 100
        if change > self.deviation_percent:
            return f"{self.reference_asset} moved {change:.2f}%"
        return None
