"""
자동매매 봇
- 사용자/페어/전략 조합당 하나
- 봇 상태(holdings, total_invested ...)는 스케줄러만 수정
"""

from enum import Enum
from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, JSON, Index, ForeignKey

from cryptotrade.database import Base, utcnow


class StrategyKind(str, Enum):
    DCA = "DCA"
    GRID = "GRID"
    SCALPER = "SCALPER"


# 전략 파라미터 기본값
DEFAULT_BOT_SETTINGS = {
    "dcaBuyOnDip": 2.0,  # %
    "gridLevels": 5,
    "gridSpread": 1.0,  # %
    "scalperProfit": 0.5,  # %
    "scalperStopLoss": 1.0,  # %
}

DEFAULT_INVESTMENT = 10.0  # 1회 매수 금액 (quote 통화)
DEFAULT_INTERVAL = 60  # 분


class TradingBot(Base):
    __tablename__ = "trading_bots"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    pair = Column(String(20), nullable=False)
    strategy = Column(String(20), nullable=False)
    enabled = Column(Boolean, default=False, index=True)

    investment = Column(Float, nullable=False, default=DEFAULT_INVESTMENT)
    interval = Column(Integer, nullable=False, default=DEFAULT_INTERVAL)

    # 누적 상태
    holdings = Column(Float, nullable=False, default=0.0)
    total_invested = Column(Float, nullable=False, default=0.0)
    avg_entry_price = Column(Float, nullable=False, default=0.0)
    total_profit = Column(Float, nullable=False, default=0.0)
    trades_count = Column(Integer, nullable=False, default=0)
    last_trade_at = Column(DateTime)

    settings = Column(JSON, default=dict)  # 전략별 파라미터

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('idx_bot_user_pair_strategy', 'user_id', 'pair', 'strategy', unique=True),
    )

    def strategy_params(self) -> dict:
        params = dict(DEFAULT_BOT_SETTINGS)
        for key, value in (self.settings or {}).items():
            if value:
                params[key] = value
        return params

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pair": self.pair,
            "strategy": self.strategy,
            "enabled": self.enabled,
            "investment": self.investment,
            "interval": self.interval,
            "holdings": self.holdings,
            "totalInvested": self.total_invested,
            "avgEntryPrice": self.avg_entry_price,
            "totalProfit": self.total_profit,
            "tradesCount": self.trades_count,
            "lastTradeAt": self.last_trade_at.isoformat() if self.last_trade_at else None,
            "settings": self.settings or {},
        }


class BotTrade(Base):
    """봇 체결 기록 (Trade 와 같은 트랜잭션에서 생성)"""
    __tablename__ = "bot_trades"

    id = Column(Integer, primary_key=True, index=True)
    bot_id = Column(Integer, ForeignKey('trading_bots.id'), nullable=False, index=True)
    trade_id = Column(Integer, ForeignKey('trades.id'))
    side = Column(String(10), nullable=False)
    amount = Column(Float, nullable=False)
    price = Column(Float, nullable=False)
    total = Column(Float, nullable=False)
    fee = Column(Float, nullable=False, default=0.0)
    profit = Column(Float, nullable=False, default=0.0)  # SELL 실현 손익
    reason = Column(String(255))
    created_at = Column(DateTime, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.side,
            "amount": self.amount,
            "price": self.price,
            "total": self.total,
            "fee": self.fee,
            "profit": self.profit,
            "reason": self.reason,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
