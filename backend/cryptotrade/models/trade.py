from enum import Enum
from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, Index

from cryptotrade.database import Base, utcnow


class TradeSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderKind(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"


class TradeStatus(str, Enum):
    PENDING = "PENDING"
    FILLED = "FILLED"
    FAILED = "FAILED"


class Trade(Base):
    __tablename__ = "trades"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    pair = Column(String(20), nullable=False, index=True)  # BTC/USDT
    side = Column(String(10), nullable=False)  # BUY or SELL
    order_type = Column(String(10), nullable=False, default=OrderKind.MARKET.value)
    amount = Column(Float, nullable=False)
    price = Column(Float, nullable=False)
    total = Column(Float, nullable=False)
    fee = Column(Float, nullable=False, default=0.0)
    status = Column(String(20), default=TradeStatus.PENDING.value)
    exchange_order_id = Column(String(64))  # REAL 모드 주문 ID
    is_real = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)
    filled_at = Column(DateTime)

    __table_args__ = (
        Index('idx_trade_user_created', 'user_id', 'created_at'),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pair": self.pair,
            "type": self.side,
            "orderType": self.order_type,
            "amount": self.amount,
            "price": self.price,
            "total": self.total,
            "fee": self.fee,
            "status": self.status,
            "exchangeOrderId": self.exchange_order_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "filledAt": self.filled_at.isoformat() if self.filled_at else None,
        }
