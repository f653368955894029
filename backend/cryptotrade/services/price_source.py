"""
시장가 주문 체결가 결정
- SimulatedQuote: 시세 제공자 가격으로 내부 원장만 정산
- ExchangeExecution: REAL 모드 - 거래소에 실제 주문 후 체결 평균가 사용
정산 1회당 PlatformSettings 기준으로 한 번 선택
"""

from dataclasses import dataclass
from typing import Optional
import logging

from cryptotrade.exceptions import QuoteUnavailable, ExchangeExecutionFailed
from cryptotrade.services.exchange_connector import ExchangeConnector, to_exchange_symbol
from cryptotrade.services.quote_provider import QuoteProvider

logger = logging.getLogger(__name__)


@dataclass
class Execution:
    price: float
    amount: float
    source: str
    order_id: Optional[str] = None
    is_real: bool = False


class PriceSource:
    """시장가 체결 인터페이스"""
    is_real = False

    async def estimate(self, pair: str) -> float:
        """주문 전 잔고 사전 확인용 예상가"""
        raise NotImplementedError

    async def execute(self, pair: str, side: str, amount: float) -> Execution:
        raise NotImplementedError


class SimulatedQuote(PriceSource):
    def __init__(self, quote_provider: QuoteProvider):
        self.quote_provider = quote_provider

    async def estimate(self, pair: str) -> float:
        quote = await self.quote_provider.get_price(pair)
        if quote is None or quote.price <= 0:
            raise QuoteUnavailable(f"No price available for {pair}")
        if quote.stale:
            logger.warning(f"⚠️ Using stale {quote.source} price for {pair}: {quote.price}")
        return quote.price

    async def execute(self, pair: str, side: str, amount: float) -> Execution:
        price = await self.estimate(pair)
        return Execution(price=price, amount=amount, source="simulated")


class ExchangeExecution(PriceSource):
    is_real = True

    def __init__(self, connector: ExchangeConnector, quote_provider: QuoteProvider):
        self.connector = connector
        self.quote_provider = quote_provider

    async def estimate(self, pair: str) -> float:
        quote = await self.quote_provider.get_price(pair)
        if quote is None or quote.price <= 0:
            raise QuoteUnavailable(f"No price available for {pair}")
        return quote.price

    async def execute(self, pair: str, side: str, amount: float) -> Execution:
        order = await self.connector.place_market_order(to_exchange_symbol(pair), side, amount)
        price = order.average_price
        executed = order.executed_qty
        if price <= 0 or executed <= 0:
            raise ExchangeExecutionFailed(f"Order {order.order_id} returned no fills")
        return Execution(
            price=price,
            amount=executed,
            source="exchange",
            order_id=order.order_id,
            is_real=True
        )
