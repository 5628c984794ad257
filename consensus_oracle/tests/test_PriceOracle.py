"""Unit tests for the PriceOracle read API."""

import pytest

from consensus_oracle.src.AssetPair import AssetPair
from consensus_oracle.src.errors import AlertRuleError, NoPriceDataError, PlausibilityError
from consensus_oracle.src.fetchers import BaseFetcher
from consensus_oracle.src.HistoryStore import HourlyBucket
from consensus_oracle.src.PriceOracle import PriceOracle


class FixedFetcher(BaseFetcher):
    """Fetcher returning fixed prices."""

    name = "fixed"

    def __init__(self, prices: dict[str, float], weight: float = 0.3) -> None:
        super().__init__(weight=weight)
        self.prices = prices

    async def fetch(self, assets: list[str], quote: str) -> dict[str, float]:
        return dict(self.prices)


@pytest.fixture
def oracle() -> PriceOracle:
    """Local-only oracle over three fixed sources."""
    return PriceOracle(
        fetchers={
            "coingecko": FixedFetcher({"btc": 41000.0, "eth": 2500.0}, weight=0.4),
            "coinmarketcap": FixedFetcher({"btc": 41500.0, "eth": 2510.0}),
            "binance": FixedFetcher({"btc": 40800.0, "eth": 2490.0}),
        }
    )


class TestPriceOracleInit:
    """Test PriceOracle construction."""

    def test_default_sources(self) -> None:
        """Default configuration uses the three reference feeds."""
        oracle = PriceOracle()
        assert oracle.sources == ["coingecko", "coinmarketcap", "binance"]
        assert [f.weight for f in oracle.fetchers.values()] == [0.4, 0.3, 0.3]
        assert oracle.pair == AssetPair("btc", "eth", "usd")
        assert oracle.ledger is None

    def test_custom_weights_and_keys(self) -> None:
        """Weights and API keys are passed to fetchers."""
        oracle = PriceOracle(
            sources=["coinmarketcap", "kraken"],
            weights={"kraken": 0.5},
            api_keys={"coinmarketcap": "secret"},
        )
        assert oracle.fetchers["kraken"].weight == 0.5
        assert oracle.fetchers["coinmarketcap"].api_key == "secret"

    def test_unknown_source(self) -> None:
        """Unknown sources are rejected."""
        with pytest.raises(ValueError, match="Unknown sources"):
            PriceOracle(sources=["coingecko", "nope"])

    def test_weight_for_unconfigured_source(self) -> None:
        """Weights must name configured sources."""
        with pytest.raises(ValueError):
            PriceOracle(sources=["coingecko"], weights={"binance": 0.3})

    def test_empty_sources(self) -> None:
        """At least one source is required."""
        with pytest.raises(ValueError):
            PriceOracle(sources=[])

    def test_pair_string(self) -> None:
        """Pair strings are parsed."""
        oracle = PriceOracle(pair="ETH,BTC/usd", sources=["coingecko"])
        assert oracle.pair.reference == "eth"
        assert oracle.engine.reference_asset == "eth"


class TestReadApi:
    """Test read API before and after the first cycle."""

    def test_no_data_yet(self, oracle: PriceOracle) -> None:
        """Read API before the first cycle."""
        assert oracle.get_current_prices() is None
        with pytest.raises(NoPriceDataError):
            oracle.convert(1.0)
        assert oracle.get_history() == []

    @pytest.mark.asyncio
    async def test_current_prices(self, oracle: PriceOracle) -> None:
        """Current prices reflect the last accepted value."""
        result = await oracle.update_now()
        assert oracle.get_current_prices() is result
        assert result.asset_prices["btc"] == pytest.approx(41090.0)

    @pytest.mark.asyncio
    async def test_convert_reference_to_counter(self, oracle: PriceOracle) -> None:
        """Default direction converts reference into counter."""
        await oracle.update_now()
        conversion = oracle.convert(2.0)

        assert conversion.from_asset == "btc"
        assert conversion.to_asset == "eth"
        assert conversion.rate == pytest.approx(41090.0 / 2500.0)
        assert conversion.amount_out == pytest.approx(2 * 41090.0 / 2500.0)
        assert conversion.confidence == oracle.get_current_prices().confidence

    @pytest.mark.asyncio
    async def test_convert_counter_to_reference(self, oracle: PriceOracle) -> None:
        """from_asset=counter converts the other way."""
        await oracle.update_now()
        conversion = oracle.convert(2500.0, from_asset="ETH")

        assert conversion.to_asset == "btc"
        assert conversion.amount_out == pytest.approx(2500.0 * 2500.0 / 41090.0)

    @pytest.mark.asyncio
    async def test_convert_zero(self, oracle: PriceOracle) -> None:
        """Zero converts to zero."""
        await oracle.update_now()
        assert oracle.convert(0).amount_out == 0

    @pytest.mark.asyncio
    async def test_convert_invalid(self, oracle: PriceOracle) -> None:
        """Negative amounts and unknown assets are rejected."""
        await oracle.update_now()
        with pytest.raises(ValueError):
            oracle.convert(-1.0)
        with pytest.raises(ValueError):
            oracle.convert(1.0, from_asset="sol")

    @pytest.mark.asyncio
    async def test_history(self, oracle: PriceOracle) -> None:
        """History is available raw and hourly."""
        await oracle.update_now()
        await oracle.update_now()

        raw = oracle.get_history(3600)
        hourly = oracle.get_history(3600, resolution="hourly")

        assert len(raw) == 2
        assert len(hourly) == 1
        assert isinstance(hourly[0], HourlyBucket)
        assert hourly[0].sample_count == 2
        with pytest.raises(ValueError):
            oracle.get_history(resolution="daily")

    @pytest.mark.asyncio
    async def test_status(self, oracle: PriceOracle) -> None:
        """Status reports stats, sources and history."""
        await oracle.update_now()
        oracle.create_alert_rule({"btc": {"upper": 50000}})
        status = oracle.get_status()

        assert status.stats.successful_cycles == 1
        assert status.stats.success_rate == 100.0
        assert status.local_only is True
        assert status.history_length == 1
        assert status.active_alert_count == 1
        assert status.configured_sources == [
            ("coingecko", 0.4),
            ("coinmarketcap", 0.3),
            ("binance", 0.3),
        ]
        assert status.last_update_timestamp is not None
        assert status.last_commit_timestamp is None
        assert set(status.source_health) == {"coingecko", "coinmarketcap", "binance"}

    def test_status_snapshot_is_copy(self, oracle: PriceOracle) -> None:
        """Mutating the returned stats does not affect the oracle."""
        oracle.get_status().stats.total_cycles = 99
        assert oracle.get_status().stats.total_cycles == 0


class TestOperatorApi:
    """Test alert and override operations."""

    def test_create_and_deactivate_alert(self, oracle: PriceOracle) -> None:
        """Rules can be created and deactivated."""
        rule = oracle.create_alert_rule({"btc": {"upper": 50000}}, "https://hooks.example.com/x")
        assert oracle.deactivate_alert_rule(rule.id).active is False

    def test_invalid_alert(self, oracle: PriceOracle) -> None:
        """Invalid rules are rejected."""
        with pytest.raises(AlertRuleError):
            oracle.create_alert_rule({"doge": {"upper": 1}})

    @pytest.mark.asyncio
    async def test_force_override(self, oracle: PriceOracle) -> None:
        """Overrides become the current price."""
        result = await oracle.force_override({"btc": 40000.0, "eth": 2000.0}, "feeds down")

        assert oracle.get_current_prices() is result
        assert oracle.convert(1.0).amount_out == pytest.approx(20.0)

    @pytest.mark.asyncio
    async def test_invalid_override(self, oracle: PriceOracle) -> None:
        """Invalid overrides raise and leave the current price untouched."""
        with pytest.raises(PlausibilityError):
            await oracle.force_override({"btc": 40000.0}, "feeds down")
        assert oracle.get_current_prices() is None

    @pytest.mark.asyncio
    async def test_shutdown_closes_clients(self, oracle: PriceOracle) -> None:
        """Shutdown closes the shared HTTP client."""
        BaseFetcher.get_shared_client()
        await oracle.shutdown()
        assert BaseFetcher._shared_client is None
