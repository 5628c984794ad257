"""AssetPair: The two priced assets and their common quote currency.

The oracle prices a *reference* asset (used for confidence, deviation, commit
decisions and the ledger value) and a *counter* asset, both against the same
quote currency. Conversions go between reference and counter.

.. code-block:: python

    >>> pair = AssetPair("btc", "eth")
    >>> str(pair)
    'btc,eth/usd'
    >>> pair = AssetPair.from_string("BTC,ETH/usd")
    >>> pair.assets
    ['btc', 'eth']
"""

from __future__ import annotations


class AssetPair:
    """Reference and counter asset priced in a common quote currency.

    :ivar reference: Reference asset symbol (lowercase).
    :ivar counter: Counter asset symbol (lowercase).
    :ivar quote: Quote currency symbol (lowercase).
    """

    def __init__(self, reference: str, counter: str, quote: str = "usd") -> None:
        """Initialize an asset pair.

        :param reference: Reference asset symbol (e.g., "btc").
        :param counter: Counter asset symbol (e.g., "eth").
        :param quote: Quote currency symbol (default: "usd").
        :raises ValueError: If a symbol is empty or reference equals counter.
        """
        self.reference = reference.strip().lower()
        self.counter = counter.strip().lower()
        self.quote = quote.strip().lower()

        if not self.reference or not self.counter or not self.quote:
            raise ValueError("Asset and quote symbols must be non-empty")
        if self.reference == self.counter:
            raise ValueError(
                f"Reference and counter asset must differ, got '{self.reference}' twice"
            )

    @property
    def assets(self) -> list[str]:
        """Both assets, reference first."""
        return [self.reference, self.counter]

    def other(self, asset: str) -> str:
        """Return the asset on the opposite side of the pair.

        :param asset: One of the two assets.
        :returns: The other asset.
        :raises ValueError: If asset is not part of the pair.
        """
        asset = asset.lower()
        if asset == self.reference:
            return self.counter
        if asset == self.counter:
            return self.reference
        raise ValueError(f"Unknown asset '{asset}'. Expected one of {self.assets}")

    def __str__(self) -> str:
        """Return the pair identifier string."""
        return f"{self.reference},{self.counter}/{self.quote}"

    def __repr__(self) -> str:
        """Return a developer-friendly string representation."""
        return f"AssetPair({self.reference!r}, {self.counter!r}, {self.quote!r})"

    def __hash__(self) -> int:
        """Return hash for use in dicts and sets."""
        return hash(str(self))

    def __eq__(self, other: object) -> bool:
        """Check equality based on string representation."""
        if not isinstance(other, AssetPair):
            return NotImplemented
        return str(self) == str(other)

    @classmethod
    def from_string(cls, pair_str: str) -> AssetPair:
        """Parse a pair string in format "reference,counter[/quote]".

        :param pair_str: Pair string like "btc,eth/usd" or "btc,eth".
        :returns: New AssetPair instance.
        :raises ValueError: If pair string format is invalid.

        .. code-block:: python

            >>> pair = AssetPair.from_string("btc,eth")
            >>> pair.quote
            'usd'
        """
        assets_part, sep, quote = pair_str.partition("/")
        assets = [a.strip() for a in assets_part.split(",") if a.strip()]
        if len(assets) != 2 or (sep and not quote.strip()):
            raise ValueError(
                f"Invalid pair format '{pair_str}'. "
                "Expected 'reference,counter/quote' (e.g., 'btc,eth/usd')"
            )
        return cls(assets[0], assets[1], quote or "usd")
