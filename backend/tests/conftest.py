"""
Pytest configuration and fixtures.
Adds backend/ to Python path so tests can import cryptotrade.
"""

import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

backend_path = Path(__file__).parent.parent
if str(backend_path) not in sys.path:
    sys.path.insert(0, str(backend_path))

from cryptotrade.database import build_engine, build_session_factory, init_db  # noqa: E402
from cryptotrade.services.ledger import LedgerStore  # noqa: E402
from cryptotrade.services.quote_provider import Quote  # noqa: E402

BTC_PRICE = 43250.50


class FakeQuoteProvider:
    """Quote provider backed by a fixed price table."""

    def __init__(self, prices: Optional[Dict[str, float]] = None):
        self.prices = dict(prices if prices is not None else {"BTC/USDT": BTC_PRICE, "ETH/USDT": 2635.75})
        self.calls: List[str] = []

    async def get_price(self, pair: str) -> Optional[Quote]:
        self.calls.append(pair)
        price = self.prices.get(pair)
        if price is None:
            return None
        return Quote(pair=pair, price=price, source="live")

    async def list_prices(self):
        return [{"pair": pair, "price": price, "stale": False} for pair, price in self.prices.items()]

    async def usd_prices(self, currencies):
        prices = {}
        for currency in currencies:
            if currency == "USDT":
                prices[currency] = 1.0
            elif f"{currency}/USDT" in self.prices:
                prices[currency] = self.prices[f"{currency}/USDT"]
        return prices


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def quotes():
    return FakeQuoteProvider()


@pytest.fixture
def fund(session_factory):
    """Credit a wallet in its own committed transaction."""
    async def _fund(user_id: str, currency: str, amount: float):
        async with session_factory() as session:
            await LedgerStore(session).credit(user_id, currency, amount)
            await session.commit()
    return _fund


@pytest.fixture
def balance_of(session_factory):
    """Read (balance, locked_balance) from a fresh session."""
    async def _balance_of(user_id: str, currency: str):
        async with session_factory() as session:
            wallet = await LedgerStore(session).get_wallet(user_id, currency)
            if wallet is None:
                return None
            return wallet.balance, wallet.locked_balance
    return _balance_of
