"""Exception taxonomy for the consensus oracle.

Only ``AllFeedsFailedError``, ``PlausibilityError``, ``NoPriceDataError`` and
``AlertRuleError`` ever reach callers. ``CommitError`` and ``DeliveryError``
are recovered inside the update cycle and only logged.
"""

from __future__ import annotations


class OracleError(Exception):
    """Base exception for consensus oracle errors."""

    pass


class AllFeedsFailedError(OracleError):
    """Raised when no configured source returned a usable reading.

    :ivar attempted: Number of sources that were queried.
    :ivar errors: Dict mapping source name to its error message.
    """

    def __init__(self, attempted: int, errors: dict[str, str] | None = None):
        """Initialize the error.

        :param attempted: Number of sources queried.
        :param errors: Per-source error messages.
        """
        self.attempted = attempted
        self.errors = dict(errors or {})
        super().__init__(f"All {attempted} price feeds failed")


class PlausibilityError(OracleError):
    """Raised when a candidate price fails sanity checks.

    :ivar failures: Human readable list of failed checks.
    """

    def __init__(self, failures: list[str]):
        """Initialize the error.

        :param failures: Failed check messages.
        """
        self.failures = list(failures)
        super().__init__(f"Price data failed validation: {'; '.join(self.failures)}")


class CommitError(OracleError):
    """Raised when a ledger commit fails or times out."""

    pass


class DeliveryError(OracleError):
    """Raised when an alert notification cannot be delivered."""

    pass


class NoPriceDataError(OracleError):
    """Raised by read APIs before any price has been accepted."""

    pass


class AlertRuleError(OracleError, ValueError):
    """Raised when an alert rule definition is invalid."""

    pass
