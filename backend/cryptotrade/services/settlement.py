"""
정산 엔진
- 매수/매도 의도를 받아 잔고 검증, 수수료 계산, 원장 반영, Trade 기록
- 한 번의 정산은 호출자의 DB 트랜잭션 하나 안에서 전부 반영되거나 전부 취소됨
- REAL 모드 시장가 주문은 지출 잔고를 예약한 뒤 거래소 주문을 먼저 실행
- 체결 후 원장 반영이 불가능하면 거래소 주문 ID 와 함께 FAILED Trade 로 기록
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple
import logging
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cryptotrade.database import utcnow
from cryptotrade.exceptions import (
    InsufficientFunds,
    InvalidAmount,
    InvalidPair,
    InvalidPrice,
    ValidationError,
)
from cryptotrade.models.platform_settings import PlatformSettings
from cryptotrade.models.trade import Trade, TradeSide, OrderKind, TradeStatus
from cryptotrade.services.ledger import LedgerStore
from cryptotrade.services.platform_settings_service import PlatformSettingsService
from cryptotrade.services.price_source import (
    Execution,
    ExchangeExecution,
    PriceSource,
    SimulatedQuote,
)
from cryptotrade.services.quote_provider import QuoteProvider

logger = logging.getLogger(__name__)

QUOTE_CURRENCIES = ("USDT", "USDC", "BUSD", "USD", "BTC", "ETH")

# REAL 모드 매수 예약 여유분 (예상 비용 대비)
REAL_ORDER_SLIPPAGE = 0.02


def split_pair(pair: str) -> Tuple[str, str]:
    """
    거래쌍 분리

    Args:
        pair: BTC/USDT 형식

    Returns:
        (base, quote)

    Raises:
        InvalidPair: 형식 오류 또는 지원하지 않는 quote 통화
    """
    if not pair or pair.count('/') != 1:
        raise InvalidPair(f"Invalid trading pair: {pair}")
    base, quote = (part.strip().upper() for part in pair.split('/'))
    if not base or quote not in QUOTE_CURRENCIES or base == quote:
        raise InvalidPair(f"Invalid trading pair: {pair}")
    return base, quote


@dataclass
class Settlement:
    trade: Trade
    amount: float
    price: float
    total: float
    fee: float
    error: Optional[str] = None  # 거래소 체결 후 원장 반영 실패 사유

    @property
    def failed(self) -> bool:
        return self.trade.status == TradeStatus.FAILED.value

    @property
    def net_proceeds(self) -> float:
        """매도 순수익 (total - fee)"""
        return self.total - self.fee

    @property
    def cost(self) -> float:
        """매수 총비용 (total + fee)"""
        return self.total + self.fee


class SettlementEngine:
    """매수/매도 정산"""

    def __init__(
        self,
        db: AsyncSession,
        quote_provider: QuoteProvider,
        settings_service: Optional[PlatformSettingsService] = None
    ):
        self.db = db
        self.quote_provider = quote_provider
        self.ledger = LedgerStore(db)
        self.settings_service = settings_service or PlatformSettingsService(db)

    def select_price_source(self, platform: PlatformSettings) -> PriceSource:
        """거래 모드에 맞는 체결 방식 선택"""
        if platform.is_real and platform.binance_configured:
            return ExchangeExecution(self.settings_service.connector_for(platform), self.quote_provider)
        if platform.is_real:
            logger.warning("⚠️ REAL mode without Binance credentials - settling against simulated quotes")
        return SimulatedQuote(self.quote_provider)

    async def settle_trade(
        self,
        user_id: str,
        pair: str,
        side: str,
        order_kind: str,
        amount: float,
        limit_price: Optional[float] = None,
        price_source: Optional[PriceSource] = None
    ) -> Trade:
        settlement = await self.execute(user_id, pair, side, order_kind, amount, limit_price, price_source)
        return settlement.trade

    async def execute(
        self,
        user_id: str,
        pair: str,
        side: str,
        order_kind: str,
        amount: float,
        limit_price: Optional[float] = None,
        price_source: Optional[PriceSource] = None
    ) -> Settlement:
        """
        정산 실행

        Args:
            user_id: 사용자 ID
            pair: 거래쌍 (BTC/USDT)
            side: BUY / SELL
            order_kind: MARKET / LIMIT
            amount: base 통화 수량
            limit_price: LIMIT 주문 가격
            price_source: 시장가 체결 방식 (없으면 PlatformSettings 기준 선택)

        Returns:
            Settlement (Trade 및 체결 내역)

        Raises:
            InvalidAmount, InvalidPair, InvalidPrice, InsufficientFunds,
            QuoteUnavailable, ExchangeExecutionFailed
        """
        side = self._normalize(side, TradeSide, "side")
        order_kind = self._normalize(order_kind, OrderKind, "order type")
        if amount is None or amount <= 0:
            raise InvalidAmount(f"Invalid amount: {amount}")
        base, quote = split_pair(pair)
        pair = f"{base}/{quote}"

        platform = await self.settings_service.load_or_initialize()
        fee_rate = platform.trading_fee_rate

        if order_kind == OrderKind.LIMIT.value:
            # LIMIT 은 REAL 모드에서도 거래소로 보내지 않음
            if limit_price is None or limit_price <= 0:
                raise InvalidPrice(f"Invalid limit price: {limit_price}")
            execution = Execution(price=limit_price, amount=amount, source="limit")
        else:
            source = price_source or self.select_price_source(platform)
            if source.is_real:
                # 거래소 주문 전에 잔고 확인 + 예약 (실패시 주문 자체를 하지 않음)
                estimate = await source.estimate(pair)
                await self._precheck(user_id, base, quote, side, amount, estimate, fee_rate)
                held_currency, held = await self._hold_funds(user_id, base, quote, side, amount, estimate, fee_rate)
                try:
                    execution = await source.execute(pair, side, amount)
                finally:
                    await self.ledger.unreserve(user_id, held_currency, held)
            else:
                execution = await source.execute(pair, side, amount)

        if execution.price <= 0:
            raise InvalidPrice(f"Invalid price: {execution.price}")

        amount = execution.amount
        price = execution.price
        total = amount * price
        fee = total * fee_rate

        try:
            if side == TradeSide.BUY.value:
                await self.ledger.debit(user_id, quote, total + fee)
                await self.ledger.credit(user_id, base, amount)
            else:
                await self.ledger.debit(user_id, base, amount)
                await self.ledger.credit(user_id, quote, total - fee)
        except InsufficientFunds as e:
            if not execution.is_real:
                raise
            return await self._record_unsettled(user_id, pair, side, order_kind, execution, total, fee, e)

        is_market = order_kind == OrderKind.MARKET.value
        trade = Trade(
            user_id=user_id,
            pair=pair,
            side=side,
            order_type=order_kind,
            amount=amount,
            price=price,
            total=total,
            fee=fee,
            status=TradeStatus.FILLED.value if is_market else TradeStatus.PENDING.value,
            exchange_order_id=execution.order_id,
            is_real=execution.is_real,
            filled_at=utcnow() if is_market else None
        )
        self.db.add(trade)
        await self.db.flush()

        logger.info(
            f"✅ Settled {side} {amount} {pair} @ {price} "
            f"(total={total:.8f}, fee={fee:.8f}, source={execution.source}, user={user_id})"
        )
        return Settlement(trade=trade, amount=amount, price=price, total=total, fee=fee)

    async def _hold_funds(
        self,
        user_id: str,
        base: str,
        quote: str,
        side: str,
        amount: float,
        price: float,
        fee_rate: float
    ) -> Tuple[str, float]:
        """
        거래소 주문 동안 지출 통화 예약 (balance -> locked_balance)

        매수는 예상 비용에 슬리피지 여유분을 더한 금액 (가용 잔고 한도 내)

        Returns:
            (예약 통화, 예약 금액)
        """
        if side == TradeSide.BUY.value:
            buffered = amount * price * (1 + fee_rate) * (1 + REAL_ORDER_SLIPPAGE)
            held = min(buffered, await self.ledger.available(user_id, quote))
            await self.ledger.reserve(user_id, quote, held)
            return quote, held
        await self.ledger.reserve(user_id, base, amount)
        return base, amount

    async def _record_unsettled(
        self,
        user_id: str,
        pair: str,
        side: str,
        order_kind: str,
        execution: Execution,
        total: float,
        fee: float,
        error: InsufficientFunds
    ) -> Settlement:
        """체결된 거래소 주문을 원장에 반영하지 못한 경우 FAILED Trade 로 기록"""
        logger.error(
            f"❌ Exchange order {execution.order_id} filled ({side} {execution.amount} {pair} @ {execution.price}) "
            f"but ledger settlement failed for user {user_id}: {error.message}"
        )
        trade = Trade(
            user_id=user_id,
            pair=pair,
            side=side,
            order_type=order_kind,
            amount=execution.amount,
            price=execution.price,
            total=total,
            fee=fee,
            status=TradeStatus.FAILED.value,
            exchange_order_id=execution.order_id,
            is_real=True,
            filled_at=utcnow()
        )
        self.db.add(trade)
        await self.db.flush()
        return Settlement(
            trade=trade,
            amount=execution.amount,
            price=execution.price,
            total=total,
            fee=fee,
            error=f"Exchange order {execution.order_id} filled but could not be settled: {error.message}"
        )

    async def _precheck(
        self,
        user_id: str,
        base: str,
        quote: str,
        side: str,
        amount: float,
        price: float,
        fee_rate: float
    ):
        if side == TradeSide.BUY.value:
            required = amount * price * (1 + fee_rate)
            if await self.ledger.available(user_id, quote) < required:
                raise InsufficientFunds(f"Insufficient {quote} balance")
        elif await self.ledger.available(user_id, base) < amount:
            raise InsufficientFunds(f"Insufficient {base} balance")

    async def fill_limit_order(self, trade: Trade) -> Trade:
        """LIMIT 주문 체결 처리 (PENDING -> FILLED, 원장은 주문시 이미 반영됨)"""
        if trade.order_type != OrderKind.LIMIT.value or trade.status != TradeStatus.PENDING.value:
            return trade
        trade.status = TradeStatus.FILLED.value
        trade.filled_at = utcnow()
        await self.db.flush()
        logger.info(f"✅ Limit order {trade.id} filled ({trade.side} {trade.amount} {trade.pair} @ {trade.price})")
        return trade

    async def fill_crossed_limit_orders(self, pair: str, market_price: float) -> List[Trade]:
        """시장가가 지정가를 통과한 대기 LIMIT 주문 체결"""
        stmt = select(Trade).where(
            Trade.pair == pair,
            Trade.order_type == OrderKind.LIMIT.value,
            Trade.status == TradeStatus.PENDING.value
        )
        result = await self.db.execute(stmt)
        filled = []
        for trade in result.scalars().all():
            crossed = (
                market_price <= trade.price if trade.side == TradeSide.BUY.value
                else market_price >= trade.price
            )
            if crossed:
                filled.append(await self.fill_limit_order(trade))
        return filled

    async def list_trades(
        self,
        user_id: str,
        pair: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100
    ) -> List[Trade]:
        stmt = select(Trade).where(Trade.user_id == user_id)
        if pair:
            stmt = stmt.where(Trade.pair == pair)
        if status:
            stmt = stmt.where(Trade.status == status)
        stmt = stmt.order_by(Trade.created_at.desc(), Trade.id.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    def _normalize(value: str, enum_cls, label: str) -> str:
        if isinstance(value, enum_cls):
            return value.value
        try:
            return enum_cls(str(value).upper()).value
        except ValueError:
            raise ValidationError(f"Invalid {label}: {value}")
