"""Unit tests for CLI configuration parsing."""

import sys

import pytest

from consensus_oracle.main import (
    main,
    parse_api_keys,
    parse_env_api_keys,
    parse_ranges,
    parse_weights,
)


class TestParseApiKeys:
    """Test API key parsing."""

    def test_parse(self) -> None:
        """Comma-separated source=key pairs are parsed."""
        assert parse_api_keys("CoinGecko=demo:abc, coinmarketcap=xyz") == {
            "coingecko": "demo:abc",
            "coinmarketcap": "xyz",
        }

    def test_empty(self) -> None:
        """Missing values yield no keys."""
        assert parse_api_keys(None) == {}
        assert parse_api_keys("") == {}

    def test_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """API_KEY_<SOURCE> variables are picked up."""
        monkeypatch.setenv("API_KEY_COINMARKETCAP", "xyz")
        monkeypatch.setenv("API_KEY_EMPTY", "")
        keys = parse_env_api_keys()
        assert keys["coinmarketcap"] == "xyz"
        assert "empty" not in keys


class TestParseWeights:
    """Test weight parsing."""

    def test_parse(self) -> None:
        """Weights are parsed to floats."""
        assert parse_weights("coingecko=0.4, Binance=0.3") == {"coingecko": 0.4, "binance": 0.3}

    def test_empty(self) -> None:
        """No weights configured."""
        assert parse_weights(None) == {}

    @pytest.mark.parametrize("value", ["coingecko", "coingecko=abc", "coingecko=0", "binance=1.5"])
    def test_invalid(self, value: str) -> None:
        """Malformed or out-of-range weights raise ValueError."""
        with pytest.raises(ValueError):
            parse_weights(value)


class TestMainValidation:
    """Test CLI argument validation."""

    @pytest.mark.parametrize(
        "flag", ["--commit-deviation", "--sample-period", "--fetch-timeout"]
    )
    def test_non_positive_rejected(self, flag: str, monkeypatch: pytest.MonkeyPatch) -> None:
        """Zero values are a usage error, not a runtime failure."""
        monkeypatch.setattr(sys, "argv", ["consensus-oracle", flag, "0"])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 2


class TestParseRanges:
    """Test plausible range parsing."""

    def test_parse(self) -> None:
        """Ranges are parsed to (low, high) tuples."""
        assert parse_ranges("btc=1000:500000,ETH=100:50000") == {
            "btc": (1000.0, 500000.0),
            "eth": (100.0, 50000.0),
        }

    def test_empty(self) -> None:
        """Unset ranges fall back to defaults downstream."""
        assert parse_ranges(None) is None

    @pytest.mark.parametrize("value", ["btc=1000", "btc:1000:2000", "btc=2000:1000", "btc=a:b"])
    def test_invalid(self, value: str) -> None:
        """Malformed ranges raise ValueError."""
        with pytest.raises(ValueError):
            parse_ranges(value)
