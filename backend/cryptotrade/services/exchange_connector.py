"""
Binance 주문 실행 커넥터 (REAL 트레이딩 모드 전용)
- 시장가 주문 실행 및 체결가 반환
- 관리자 설정 화면의 연결 테스트 (ping / 키 검증 / 잔고)
"""

from binance.client import Client
from binance.enums import SIDE_BUY, SIDE_SELL, ORDER_TYPE_MARKET
from binance.exceptions import BinanceAPIException, BinanceRequestException
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_DOWN
from functools import partial
from typing import Dict, List, Optional, Any
import asyncio
import logging

import requests

from cryptotrade.exceptions import ExchangeExecutionFailed

logger = logging.getLogger(__name__)

BINANCE_TESTNET_URL = "https://testnet.binance.vision/api"

# 심볼별 최소 주문 수량
BINANCE_MIN_QUANTITIES: Dict[str, float] = {
    "BTCUSDT": 0.00001,
    "ETHUSDT": 0.0001,
    "BNBUSDT": 0.001,
    "SOLUSDT": 0.01,
    "XRPUSDT": 0.1,
    "DOGEUSDT": 1,
    "ADAUSDT": 1,
    "DOTUSDT": 0.1,
    "MATICUSDT": 1,
    "LTCUSDT": 0.001,
}
DEFAULT_MIN_QUANTITY = 0.00001

EXCHANGE_ERRORS = (BinanceAPIException, BinanceRequestException, requests.exceptions.RequestException)


def to_exchange_symbol(pair: str) -> str:
    """BTC/USDT -> BTCUSDT"""
    return pair.replace('/', '').upper()


def format_quantity(symbol: str, quantity: float) -> float:
    """최소 수량 단위로 내림"""
    min_qty = BINANCE_MIN_QUANTITIES.get(to_exchange_symbol(symbol), DEFAULT_MIN_QUANTITY)
    step = Decimal(str(min_qty))
    return float(Decimal(str(quantity)).quantize(step, rounding=ROUND_DOWN))


@dataclass
class Fill:
    price: float
    qty: float


@dataclass
class ExchangeOrder:
    order_id: str
    symbol: str
    side: str
    fills: List[Fill] = field(default_factory=list)
    requested_qty: float = 0.0

    @property
    def executed_qty(self) -> float:
        if not self.fills:
            return self.requested_qty
        return sum(f.qty for f in self.fills)

    @property
    def average_price(self) -> float:
        """체결 수량 가중 평균가"""
        qty = sum(f.qty for f in self.fills)
        if qty <= 0:
            return 0.0
        return sum(f.price * f.qty for f in self.fills) / qty

    @classmethod
    def from_response(cls, order: Dict[str, Any], requested_qty: float) -> "ExchangeOrder":
        fills = [Fill(price=float(f["price"]), qty=float(f["qty"])) for f in order.get("fills", [])]
        if not fills and float(order.get("executedQty", 0) or 0) > 0:
            # fills 가 없으면 누적 체결금액으로 평균가 계산
            executed = float(order["executedQty"])
            quote_qty = float(order.get("cummulativeQuoteQty", 0) or 0)
            if quote_qty > 0:
                fills = [Fill(price=quote_qty / executed, qty=executed)]
        return cls(
            order_id=str(order.get("orderId", "")),
            symbol=order.get("symbol", ""),
            side=order.get("side", ""),
            fills=fills,
            requested_qty=requested_qty
        )


class ExchangeConnector:
    def __init__(self, api_key: str, secret_key: str, testnet: bool = False, timeout: float = 10.0):
        self.api_key = api_key
        self.secret_key = secret_key
        self.testnet = testnet
        self.timeout = timeout
        self._client: Optional[Client] = None

    @property
    def client(self) -> Client:
        # 생성자에서 네트워크 호출이 발생하므로 최초 사용 시점에 생성
        if self._client is None:
            self._client = Client(
                self.api_key,
                self.secret_key,
                requests_params={"timeout": self.timeout},
                testnet=self.testnet
            )
            if self.testnet:
                self._client.API_URL = BINANCE_TESTNET_URL
        return self._client

    async def _run_sync(self, func, *args, **kwargs):
        """동기 함수를 비동기로 실행"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def place_market_order(self, symbol: str, side: str, quantity: float) -> ExchangeOrder:
        """
        시장가 주문

        Args:
            symbol: BTCUSDT 또는 BTC/USDT
            side: BUY / SELL
            quantity: 주문 수량 (최소 단위로 내림 후 전송)

        Returns:
            ExchangeOrder (주문 ID, 체결 목록)
        """
        symbol = to_exchange_symbol(symbol)
        qty = format_quantity(symbol, quantity)
        if qty <= 0:
            raise ExchangeExecutionFailed(f"Quantity {quantity} is below the minimum for {symbol}")

        try:
            order = await self._run_sync(
                self.client.create_order,
                symbol=symbol,
                side=SIDE_BUY if side == "BUY" else SIDE_SELL,
                type=ORDER_TYPE_MARKET,
                quantity=qty
            )
        except EXCHANGE_ERRORS as e:
            logger.error(f"❌ Binance market order failed: {symbol} {side} {qty}: {e}")
            raise ExchangeExecutionFailed(f"Binance API Error: {e}") from e

        result = ExchangeOrder.from_response(order, requested_qty=qty)
        logger.info(f"✅ Binance order {result.order_id} filled: {symbol} {side} {result.executed_qty} @ {result.average_price}")
        return result

    async def ping(self) -> bool:
        """연결 확인"""
        try:
            await self._run_sync(self.client.ping)
            return True
        except EXCHANGE_ERRORS as e:
            logger.warning(f"⚠️ Binance ping failed: {e}")
            return False

    async def validate_keys(self) -> bool:
        """API 키 검증 (계정 정보 조회 성공 여부)"""
        try:
            await self._run_sync(self.client.get_account)
            return True
        except EXCHANGE_ERRORS as e:
            logger.warning(f"⚠️ Binance key validation failed: {e}")
            return False

    async def get_balances(self) -> Dict[str, Dict[str, float]]:
        """잔고 조회 (0 이 아닌 자산만)"""
        try:
            account = await self._run_sync(self.client.get_account)
        except EXCHANGE_ERRORS as e:
            raise ExchangeExecutionFailed(f"Binance API Error: {e}") from e

        balances = {}
        for balance in account["balances"]:
            free = float(balance["free"])
            locked = float(balance["locked"])
            if free > 0 or locked > 0:
                balances[balance["asset"]] = {"free": free, "locked": locked}
        return balances
