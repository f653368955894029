"""
Tests for QuoteProvider - live ticker with cache and reference fallback.
"""

import asyncio

import aiohttp
import pytest
from unittest.mock import AsyncMock

from cryptotrade.services.quote_provider import QuoteProvider, REFERENCE_PRICES


@pytest.fixture
def provider():
    return QuoteProvider(base_url="http://quotes.test/api/v3", timeout=1, cache_ttl=60)


class TestGetPrice:

    @pytest.mark.asyncio
    async def test_live_price_then_cache(self, provider):
        provider._fetch_ticker_price = AsyncMock(return_value=43000.0)

        first = await provider.get_price("BTC/USDT")
        second = await provider.get_price("BTC/USDT")

        assert (first.price, first.source, first.stale) == (43000.0, "live", False)
        assert (second.price, second.source, second.stale) == (43000.0, "cache", False)
        provider._fetch_ticker_price.assert_awaited_once_with("BTC/USDT")

    @pytest.mark.asyncio
    async def test_expired_cache_used_when_feed_down(self, provider):
        provider.cache_ttl = 0
        provider._fetch_ticker_price = AsyncMock(return_value=43000.0)
        await provider.get_price("BTC/USDT")

        provider._fetch_ticker_price.side_effect = aiohttp.ClientError("down")
        quote = await provider.get_price("BTC/USDT")

        assert quote.price == 43000.0
        assert quote.source == "cache"
        assert quote.stale is True

    @pytest.mark.asyncio
    async def test_reference_price_when_nothing_cached(self, provider):
        provider._fetch_ticker_price = AsyncMock(side_effect=asyncio.TimeoutError())

        quote = await provider.get_price("ETH/USDT")

        assert quote.price == REFERENCE_PRICES["ETH/USDT"]["price"]
        assert quote.source == "mock"
        assert quote.stale is True

    @pytest.mark.asyncio
    async def test_unknown_pair_without_data(self, provider):
        provider._fetch_ticker_price = AsyncMock(return_value=None)

        assert await provider.get_price("ABC/USDT") is None


class TestListPrices:

    @pytest.mark.asyncio
    async def test_live_24h_tickers(self):
        provider = QuoteProvider(reference_prices={"BTC/USDT": REFERENCE_PRICES["BTC/USDT"]})
        provider._fetch_24h_tickers = AsyncMock(return_value=[{
            "symbol": "BTCUSDT",
            "lastPrice": "44000.0",
            "priceChangePercent": "1.5",
            "highPrice": "45000",
            "lowPrice": "43000",
            "quoteVolume": "1000000",
        }])

        prices = await provider.list_prices()

        assert prices == [{
            "pair": "BTC/USDT",
            "price": 44000.0,
            "change24h": 1.5,
            "high24h": 45000.0,
            "low24h": 43000.0,
            "volume24h": 1000000.0,
            "stale": False,
        }]

    @pytest.mark.asyncio
    async def test_reference_table_when_feed_down(self, provider):
        provider._fetch_24h_tickers = AsyncMock(side_effect=aiohttp.ClientError("down"))

        prices = await provider.list_prices()

        assert len(prices) == len(REFERENCE_PRICES)
        assert all(p["stale"] for p in prices)
        assert prices[0]["pair"] == "BTC/USDT"
        assert prices[0]["price"] == 43250.50


class TestUsdPrices:

    @pytest.mark.asyncio
    async def test_stablecoins_are_one(self, provider):
        provider._fetch_ticker_price = AsyncMock(return_value=2600.0)

        prices = await provider.usd_prices(["USDT", "ETH", "USDC"])

        assert prices == {"USDT": 1.0, "ETH": 2600.0, "USDC": 1.0}
