"""
봇 스케줄러
- 외부 트리거(cron / 수동 호출) 1회당 활성 봇을 순차 실행
- 봇별: 주기 확인 -> 시세 조회 -> 가격 이력 갱신 -> 전략 결정 -> 정산
- 봇 하나의 실패가 나머지 봇 실행을 막지 않음 (봇별 ERROR 결과)
- 지갑 변경은 전부 정산 엔진을 통해서만 수행
"""

import logging
import math
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cryptotrade.config import get_settings
from cryptotrade.database import utcnow
from cryptotrade.exceptions import ExternalServiceError, InsufficientFunds
from cryptotrade.models.bot import TradingBot, BotTrade
from cryptotrade.models.trade import OrderKind, TradeSide
from cryptotrade.services.price_history import PriceHistory
from cryptotrade.services.quote_provider import QuoteProvider
from cryptotrade.services.settlement import Settlement, SettlementEngine, split_pair
from cryptotrade.services.strategies import evaluate_strategy, BUY, SELL, HOLD

logger = logging.getLogger(__name__)

SKIP = "SKIP"
ERROR = "ERROR"


@dataclass
class BotRunResult:
    bot_id: int
    pair: str
    strategy: str
    action: str
    reason: str
    amount: Optional[float] = None
    price: Optional[float] = None
    total: Optional[float] = None
    fee: Optional[float] = None
    profit: Optional[float] = None

    @property
    def executed(self) -> bool:
        return self.action in (BUY, SELL)

    def to_dict(self) -> Dict[str, Any]:
        data = {k: v for k, v in asdict(self).items() if v is not None}
        data["botId"] = data.pop("bot_id")
        return data


def execution_summary(results: List[BotRunResult]) -> Dict[str, Any]:
    return {
        "success": True,
        "executed": sum(1 for r in results if r.executed),
        "total": len(results),
        "results": [r.to_dict() for r in results],
    }


class BotScheduler:
    """활성 봇 일괄 실행"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        quote_provider: QuoteProvider,
        price_history: Optional[PriceHistory] = None,
        settlement_factory: Optional[Callable[[AsyncSession], SettlementEngine]] = None,
        rsi_period: Optional[int] = None
    ):
        config = get_settings()
        self.session_factory = session_factory
        self.quote_provider = quote_provider
        self.price_history = price_history or PriceHistory(config.price_history_size)
        self.settlement_factory = settlement_factory or (lambda db: SettlementEngine(db, quote_provider))
        self.rsi_period = rsi_period or config.rsi_period

    async def run_due_bots(self, now: Optional[datetime] = None) -> List[BotRunResult]:
        """
        활성 봇 전체 실행

        Args:
            now: 기준 시각 (naive UTC, 기본 현재)

        Returns:
            봇별 실행 결과 목록
        """
        now = now or utcnow()
        async with self.session_factory() as db:
            result = await db.execute(
                select(TradingBot).where(TradingBot.enabled == True).order_by(TradingBot.id)  # noqa: E712
            )
            bots = list(result.scalars().all())

        results: List[BotRunResult] = []
        market_prices: Dict[str, float] = {}
        for bot in bots:
            try:
                run_result = await self.run_bot(bot, now, market_prices)
            except Exception as e:
                logger.exception(f"❌ Bot {bot.id} error: {e}")
                run_result = self._result(bot, ERROR, "Trade execution failed")
            results.append(run_result)

        await self._sweep_limit_orders(market_prices)

        executed = sum(1 for r in results if r.executed)
        logger.info(f"✅ Bot run finished: {executed} executed / {len(results)} bots")
        return results

    async def run_bot(
        self,
        bot: TradingBot,
        now: datetime,
        market_prices: Optional[Dict[str, float]] = None
    ) -> BotRunResult:
        """봇 1개 실행"""
        if bot.last_trade_at:
            minutes_since = (now - bot.last_trade_at).total_seconds() / 60
            if minutes_since < bot.interval:
                wait = math.ceil(bot.interval - minutes_since)
                return self._result(bot, SKIP, f"Next trade in {wait} minutes")

        quote = await self.quote_provider.get_price(bot.pair)
        if quote is None:
            return self._result(bot, ERROR, "Failed to fetch price")
        price = quote.price
        if market_prices is not None:
            market_prices[bot.pair] = price

        previous_price, history = await self.price_history.append(bot.pair, price)
        decision = evaluate_strategy(
            bot.strategy,
            current_price=price,
            previous_price=previous_price,
            avg_entry_price=bot.avg_entry_price,
            holdings=bot.holdings,
            price_history=history,
            params=bot.strategy_params(),
            rsi_period=self.rsi_period
        )

        if decision.action == HOLD:
            return self._result(bot, HOLD, decision.reason)

        base_currency, quote_currency = split_pair(bot.pair)
        spend_currency = quote_currency if decision.action == BUY else base_currency
        try:
            async with self.session_factory() as db, db.begin():
                fresh = await db.get(TradingBot, bot.id, with_for_update=True)
                if fresh is None or not fresh.enabled:
                    return self._result(bot, SKIP, "Bot disabled")
                engine = self.settlement_factory(db)
                if decision.action == BUY:
                    return await self._buy(db, engine, fresh, price, decision.reason, now)
                return await self._sell(db, engine, fresh, decision.reason, now)
        except InsufficientFunds:
            return self._result(bot, SKIP, f"Insufficient {spend_currency} balance")
        except ExternalServiceError as e:
            logger.error(f"❌ Bot {bot.id} external service error: {e}")
            return self._result(bot, ERROR, e.message)

    async def _buy(
        self,
        db: AsyncSession,
        engine: SettlementEngine,
        bot: TradingBot,
        price: float,
        reason: str,
        now: datetime
    ) -> BotRunResult:
        _, quote_currency = split_pair(bot.pair)
        if await engine.ledger.available(bot.user_id, quote_currency) < bot.investment:
            return self._result(bot, SKIP, f"Insufficient {quote_currency} balance")

        settlement = await engine.execute(
            bot.user_id,
            bot.pair,
            TradeSide.BUY.value,
            OrderKind.MARKET.value,
            bot.investment / price
        )
        if settlement.failed:
            return self._unsettled(bot, settlement, now)

        bot.total_invested += settlement.total
        bot.holdings += settlement.amount
        bot.avg_entry_price = bot.total_invested / bot.holdings
        bot.trades_count += 1
        bot.last_trade_at = now

        db.add(BotTrade(
            bot_id=bot.id,
            trade_id=settlement.trade.id,
            side=TradeSide.BUY.value,
            amount=settlement.amount,
            price=settlement.price,
            total=settlement.total,
            fee=settlement.fee,
            profit=0.0,
            reason=reason
        ))
        await db.flush()
        logger.info(f"✅ Bot {bot.id} BUY {settlement.amount} {bot.pair} @ {settlement.price} ({reason})")
        return self._result(
            bot, BUY, reason,
            amount=settlement.amount,
            price=settlement.price,
            total=settlement.total,
            fee=settlement.fee
        )

    async def _sell(
        self,
        db: AsyncSession,
        engine: SettlementEngine,
        bot: TradingBot,
        reason: str,
        now: datetime
    ) -> BotRunResult:
        if bot.holdings <= 0:
            return self._result(bot, SKIP, "No holdings to sell")

        settlement = await engine.execute(
            bot.user_id,
            bot.pair,
            TradeSide.SELL.value,
            OrderKind.MARKET.value,
            bot.holdings
        )
        if settlement.failed:
            return self._unsettled(bot, settlement, now)

        # 거래소 수량 내림으로 일부만 팔린 경우 남은 수량의 원가는 유지
        sold_ratio = min(settlement.amount / bot.holdings, 1.0)
        cost_basis = bot.total_invested * sold_ratio
        profit = settlement.net_proceeds - cost_basis

        remaining = bot.holdings - settlement.amount
        if remaining > 0:
            bot.holdings = remaining
            bot.total_invested -= cost_basis
        else:
            bot.total_invested = 0.0
            bot.holdings = 0.0
            bot.avg_entry_price = 0.0
        bot.total_profit += profit
        bot.trades_count += 1
        bot.last_trade_at = now

        db.add(BotTrade(
            bot_id=bot.id,
            trade_id=settlement.trade.id,
            side=TradeSide.SELL.value,
            amount=settlement.amount,
            price=settlement.price,
            total=settlement.total,
            fee=settlement.fee,
            profit=profit,
            reason=reason
        ))
        await db.flush()
        logger.info(f"✅ Bot {bot.id} SELL {settlement.amount} {bot.pair} @ {settlement.price} profit={profit:.4f} ({reason})")
        return self._result(
            bot, SELL, reason,
            amount=settlement.amount,
            price=settlement.price,
            total=settlement.total,
            fee=settlement.fee,
            profit=profit
        )

    async def _sweep_limit_orders(self, market_prices: Dict[str, float]):
        """이번 실행에서 조회한 시세로 대기 LIMIT 주문 체결 처리"""
        for pair, price in market_prices.items():
            try:
                async with self.session_factory() as db, db.begin():
                    filled = await self.settlement_factory(db).fill_crossed_limit_orders(pair, price)
                if filled:
                    logger.info(f"✅ Filled {len(filled)} limit orders for {pair} @ {price}")
            except Exception as e:
                logger.error(f"❌ Limit order sweep failed for {pair}: {e}")

    def _unsettled(self, bot: TradingBot, settlement: Settlement, now: datetime) -> BotRunResult:
        # 보유량/원가는 그대로, 다음 실행은 interval 이후
        bot.last_trade_at = now
        logger.error(f"❌ Bot {bot.id} {settlement.trade.side} left unsettled: {settlement.error}")
        return self._result(
            bot, ERROR, settlement.error,
            amount=settlement.amount,
            price=settlement.price,
            total=settlement.total,
            fee=settlement.fee
        )

    @staticmethod
    def _result(bot: TradingBot, action: str, reason: str, **kwargs) -> BotRunResult:
        return BotRunResult(
            bot_id=bot.id,
            pair=bot.pair,
            strategy=bot.strategy,
            action=action,
            reason=reason,
            **kwargs
        )
