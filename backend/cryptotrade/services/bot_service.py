"""
봇 관리 서비스
- 봇 생성/수정/삭제/조회 (사용자 소유 봇만)
- 활성화시 quote 통화 잔고 확인
- 봇 전체 통계
"""

from typing import Any, Dict, List, Optional
import logging
from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from cryptotrade.exceptions import (
    BotAlreadyExists,
    BotNotFound,
    InsufficientFunds,
    InvalidAmount,
    ValidationError,
)
from cryptotrade.models.bot import TradingBot, BotTrade, StrategyKind, DEFAULT_INVESTMENT, DEFAULT_INTERVAL
from cryptotrade.services.ledger import LedgerStore
from cryptotrade.services.settlement import split_pair

logger = logging.getLogger(__name__)

RECENT_BOT_TRADES = 10


class BotService:
    """사용자 봇 관리"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerStore(db)

    async def create_bot(
        self,
        user_id: str,
        pair: str,
        strategy: str,
        investment: Optional[float] = None,
        interval: Optional[int] = None,
        settings: Optional[Dict[str, Any]] = None
    ) -> TradingBot:
        """
        봇 생성 (비활성 상태)

        Raises:
            ValidationError: pair/strategy 누락 또는 잘못된 전략
            BotAlreadyExists: 같은 pair/strategy 봇 존재
        """
        if not pair or not strategy:
            raise ValidationError("Pair and strategy are required")
        strategy = str(strategy).upper()
        if strategy not in [s.value for s in StrategyKind]:
            raise ValidationError("Invalid strategy. Use DCA, GRID, or SCALPER")
        base, quote = split_pair(pair)
        pair = f"{base}/{quote}"
        self._check_limits(investment, interval)

        existing = await self.db.execute(
            select(TradingBot.id).where(
                TradingBot.user_id == user_id,
                TradingBot.pair == pair,
                TradingBot.strategy == strategy
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise BotAlreadyExists()

        bot = TradingBot(
            user_id=user_id,
            pair=pair,
            strategy=strategy,
            investment=investment or DEFAULT_INVESTMENT,
            interval=interval or DEFAULT_INTERVAL,
            settings=settings or {},
            enabled=False
        )
        self.db.add(bot)
        await self.db.flush()
        logger.info(f"✅ Bot {bot.id} created: {strategy} {pair} (user {user_id})")
        return bot

    async def get_bot(self, user_id: str, bot_id: int) -> TradingBot:
        result = await self.db.execute(
            select(TradingBot).where(TradingBot.id == bot_id, TradingBot.user_id == user_id)
        )
        bot = result.scalar_one_or_none()
        if bot is None:
            raise BotNotFound()
        return bot

    async def update_bot(
        self,
        user_id: str,
        bot_id: int,
        enabled: Optional[bool] = None,
        investment: Optional[float] = None,
        interval: Optional[int] = None,
        settings: Optional[Dict[str, Any]] = None
    ) -> TradingBot:
        """
        봇 설정 변경 / 활성화 토글

        Raises:
            BotNotFound: 사용자 소유 봇이 아님
            InsufficientFunds: 활성화시 quote 잔고 < investment
        """
        if bot_id is None:
            raise ValidationError("Bot ID required")
        self._check_limits(investment, interval)
        bot = await self.get_bot(user_id, bot_id)

        if enabled and not bot.enabled:
            _, quote = split_pair(bot.pair)
            required = investment or bot.investment
            if await self.ledger.available(user_id, quote) < required:
                raise InsufficientFunds(f"Insufficient {quote} balance. Need at least ${required}")

        if enabled is not None:
            bot.enabled = bool(enabled)
        if investment:
            bot.investment = investment
        if interval:
            bot.interval = interval
        if settings:
            bot.settings = settings

        await self.db.flush()
        logger.info(f"✅ Bot {bot.id} updated (enabled={bot.enabled})")
        return bot

    async def delete_bot(self, user_id: str, bot_id: int):
        """봇 삭제 (봇 체결 기록 먼저 삭제)"""
        if bot_id is None:
            raise ValidationError("Bot ID required")
        bot = await self.get_bot(user_id, bot_id)
        await self.db.execute(delete(BotTrade).where(BotTrade.bot_id == bot.id))
        await self.db.delete(bot)
        await self.db.flush()
        logger.info(f"✅ Bot {bot_id} deleted (user {user_id})")

    async def list_bots(self, user_id: str) -> List[Dict[str, Any]]:
        """사용자 봇 목록 (봇별 최근 체결 10건 포함)"""
        result = await self.db.execute(
            select(TradingBot)
            .where(TradingBot.user_id == user_id)
            .order_by(TradingBot.created_at.desc(), TradingBot.id.desc())
        )
        bots = []
        for bot in result.scalars().all():
            trades = await self.db.execute(
                select(BotTrade)
                .where(BotTrade.bot_id == bot.id)
                .order_by(BotTrade.created_at.desc(), BotTrade.id.desc())
                .limit(RECENT_BOT_TRADES)
            )
            data = bot.to_dict()
            data["botTrades"] = [t.to_dict() for t in trades.scalars().all()]
            bots.append(data)
        return bots

    async def bot_stats(self) -> Dict[str, Any]:
        """전체 봇 통계"""
        active = await self.db.scalar(
            select(func.count(TradingBot.id)).where(TradingBot.enabled == True)  # noqa: E712
        )
        total = await self.db.scalar(select(func.count(TradingBot.id)))
        trade_stats = await self.db.execute(
            select(
                func.count(BotTrade.id),
                func.coalesce(func.sum(BotTrade.profit), 0.0),
                func.coalesce(func.sum(BotTrade.fee), 0.0)
            )
        )
        trade_count, total_profit, total_fees = trade_stats.one()
        return {
            "activeBots": active or 0,
            "totalBots": total or 0,
            "totalBotTrades": trade_count or 0,
            "totalProfit": float(total_profit),
            "totalFees": float(total_fees),
        }

    @staticmethod
    def _check_limits(investment: Optional[float], interval: Optional[int]):
        if investment is not None and investment < 0:
            raise InvalidAmount(f"Invalid investment: {investment}")
        if interval is not None and interval < 0:
            raise ValidationError(f"Invalid interval: {interval}")
