"""
입출금 트랜잭션
- 결제 게이트웨이(Cryptomus) 웹훅으로 PENDING -> COMPLETED/FAILED 전이
"""

from enum import Enum
from sqlalchemy import Column, Integer, String, Float, DateTime, Index

from cryptotrade.database import Base, utcnow


class TransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    type = Column(String(20), nullable=False)  # DEPOSIT or WITHDRAWAL
    currency = Column(String(20), nullable=False)
    amount = Column(Float, nullable=False)
    fee = Column(Float, nullable=False, default=0.0)
    status = Column(String(20), nullable=False, default=TransactionStatus.PENDING.value)

    # 게이트웨이 상관관계 ID (인보이스/페이아웃 uuid, 없으면 order_id)
    external_id = Column(String(64), index=True)
    # 로컬에서 생성한 주문 ID
    order_id = Column(String(64), nullable=False, unique=True)

    tx_hash = Column(String(128))  # 온체인 참조
    wallet_address = Column(String(128))  # 출금 주소
    network = Column(String(32))

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('idx_tx_user_type', 'user_id', 'type'),
        Index('idx_tx_status', 'status'),
    )

    @property
    def reserved_amount(self) -> float:
        """출금시 locked_balance 로 예약한 금액 (amount + fee)"""
        return self.amount + (self.fee or 0.0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "currency": self.currency,
            "amount": self.amount,
            "fee": self.fee,
            "status": self.status,
            "externalId": self.external_id,
            "orderId": self.order_id,
            "txHash": self.tx_hash,
            "address": self.wallet_address,
            "network": self.network,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
