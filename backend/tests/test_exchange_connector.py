"""
Tests for ExchangeConnector - Binance order execution wrapper.
"""

import pytest
import requests
from unittest.mock import MagicMock

from cryptotrade.exceptions import ExchangeExecutionFailed
from cryptotrade.services.exchange_connector import (
    ExchangeConnector,
    ExchangeOrder,
    format_quantity,
    to_exchange_symbol,
)


@pytest.fixture
def connector():
    connector = ExchangeConnector(api_key="key", secret_key="secret")
    connector._client = MagicMock()
    return connector


class TestHelpers:

    def test_exchange_symbol(self):
        assert to_exchange_symbol("btc/usdt") == "BTCUSDT"

    @pytest.mark.parametrize("symbol, quantity, expected", [
        ("BTC/USDT", 0.0123456789, 0.01234),
        ("ETHUSDT", 1.23456, 1.2345),
        ("DOGE/USDT", 123.9, 123.0),
        ("XRP/USDT", 10.99, 10.9),
        ("NEW/USDT", 0.123456789, 0.12345),
    ])
    def test_format_quantity_rounds_down(self, symbol, quantity, expected):
        assert format_quantity(symbol, quantity) == pytest.approx(expected)


class TestExchangeOrder:

    def test_vwap_over_fills(self):
        order = ExchangeOrder.from_response({
            "orderId": 42,
            "symbol": "BTCUSDT",
            "side": "BUY",
            "fills": [
                {"price": "43000.00", "qty": "0.004"},
                {"price": "43100.00", "qty": "0.006"},
            ],
        }, requested_qty=0.01)

        assert order.order_id == "42"
        assert order.executed_qty == pytest.approx(0.01)
        assert order.average_price == pytest.approx(43060.0)

    def test_cumulative_quote_when_fills_missing(self):
        order = ExchangeOrder.from_response({
            "orderId": 7,
            "executedQty": "0.5",
            "cummulativeQuoteQty": "1300",
        }, requested_qty=0.5)

        assert order.average_price == pytest.approx(2600.0)
        assert order.executed_qty == pytest.approx(0.5)

    def test_no_fills_has_zero_price(self):
        order = ExchangeOrder.from_response({"orderId": 1}, requested_qty=0.1)
        assert order.average_price == 0.0
        assert order.executed_qty == 0.1


class TestConnector:

    @pytest.mark.asyncio
    async def test_market_order_sends_rounded_quantity(self, connector):
        connector._client.create_order.return_value = {
            "orderId": 99,
            "symbol": "BTCUSDT",
            "side": "BUY",
            "fills": [{"price": "43250.5", "qty": "0.01234"}],
        }

        order = await connector.place_market_order("BTC/USDT", "BUY", 0.0123456789)

        connector._client.create_order.assert_called_once_with(
            symbol="BTCUSDT", side="BUY", type="MARKET", quantity=0.01234
        )
        assert order.average_price == pytest.approx(43250.5)

    @pytest.mark.asyncio
    async def test_quantity_below_minimum(self, connector):
        with pytest.raises(ExchangeExecutionFailed):
            await connector.place_market_order("BTCUSDT", "SELL", 0.000001)
        connector._client.create_order.assert_not_called()

    @pytest.mark.asyncio
    async def test_exchange_error_is_wrapped(self, connector):
        connector._client.create_order.side_effect = requests.exceptions.ConnectionError("down")

        with pytest.raises(ExchangeExecutionFailed, match="Binance API Error"):
            await connector.place_market_order("BTCUSDT", "BUY", 0.01)

    @pytest.mark.asyncio
    async def test_ping_and_key_validation(self, connector):
        assert await connector.ping() is True
        assert await connector.validate_keys() is True

        connector._client.get_account.side_effect = requests.exceptions.Timeout("slow")
        assert await connector.validate_keys() is False

    @pytest.mark.asyncio
    async def test_balances_skip_empty_assets(self, connector):
        connector._client.get_account.return_value = {"balances": [
            {"asset": "BTC", "free": "0.5", "locked": "0.1"},
            {"asset": "ETH", "free": "0.0", "locked": "0.0"},
            {"asset": "USDT", "free": "0.0", "locked": "12.0"},
        ]}

        balances = await connector.get_balances()

        assert balances == {
            "BTC": {"free": 0.5, "locked": 0.1},
            "USDT": {"free": 0.0, "locked": 12.0},
        }
