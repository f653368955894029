from sqlalchemy import Column, Integer, String, Float, DateTime, Index, CheckConstraint

from cryptotrade.database import Base, utcnow


class Wallet(Base):
    """사용자별/통화별 잔고"""
    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    currency = Column(String(20), nullable=False)  # USDT, BTC ...

    balance = Column(Float, nullable=False, default=0.0)  # 사용 가능 잔고
    locked_balance = Column(Float, nullable=False, default=0.0)  # 출금 진행 중 예약분
    address = Column(String(128))

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('idx_wallet_user_currency', 'user_id', 'currency', unique=True),
        CheckConstraint('balance >= 0', name='ck_wallet_balance_non_negative'),
        CheckConstraint('locked_balance >= 0', name='ck_wallet_locked_non_negative'),
    )

    @property
    def total(self) -> float:
        return (self.balance or 0.0) + (self.locked_balance or 0.0)
