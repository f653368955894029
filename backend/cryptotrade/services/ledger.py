"""
원장(지갑 잔고) 저장소
- 사용자/통화별 balance, locked_balance 관리
- 모든 차감은 조건부 UPDATE (balance >= amount) 한 문장으로 수행
  -> 같은 지갑에 대한 동시 요청도 lost update 없이 직렬화
- commit 은 호출자(get_db / 스케줄러)가 담당
"""

from typing import Dict, List, Optional
import logging
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cryptotrade.exceptions import InsufficientFunds, InvalidAmount, LedgerInconsistency
from cryptotrade.models.wallet import Wallet

logger = logging.getLogger(__name__)


class LedgerStore:
    """지갑 잔고 원장"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_wallet(self, user_id: str, currency: str) -> Optional[Wallet]:
        """지갑 조회 (항상 DB 최신값으로 갱신)"""
        stmt = (
            select(Wallet)
            .where(Wallet.user_id == user_id, Wallet.currency == currency.upper())
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_wallets(self, user_id: str) -> List[Wallet]:
        stmt = (
            select(Wallet)
            .where(Wallet.user_id == user_id)
            .order_by(Wallet.currency)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def available(self, user_id: str, currency: str) -> float:
        wallet = await self.get_wallet(user_id, currency)
        return wallet.balance if wallet else 0.0

    async def get_or_create_wallet(self, user_id: str, currency: str) -> Wallet:
        """
        지갑 조회, 없으면 생성

        동시에 같은 지갑을 생성하려는 경우 unique 인덱스 충돌을
        INSERT ... ON CONFLICT DO NOTHING 으로 흡수
        """
        currency = currency.upper()
        wallet = await self.get_wallet(user_id, currency)
        if wallet:
            return wallet

        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            insert = None

        if insert is not None:
            stmt = insert(Wallet).values(
                user_id=user_id,
                currency=currency,
                balance=0.0,
                locked_balance=0.0
            ).on_conflict_do_nothing(index_elements=["user_id", "currency"])
            await self.db.execute(stmt)
        else:
            self.db.add(Wallet(user_id=user_id, currency=currency, balance=0.0, locked_balance=0.0))
            await self.db.flush()

        logger.info(f"✅ Created {currency} wallet for user {user_id}")
        return await self.get_wallet(user_id, currency)

    async def credit(self, user_id: str, currency: str, amount: float) -> Wallet:
        """잔고 증가 (지갑 없으면 생성)"""
        self._check_amount(amount)
        wallet = await self.get_or_create_wallet(user_id, currency)
        await self.db.execute(
            update(Wallet)
            .where(Wallet.id == wallet.id)
            .values(balance=Wallet.balance + amount)
            .execution_options(synchronize_session=False)
        )
        return await self.get_wallet(user_id, currency)

    async def debit(self, user_id: str, currency: str, amount: float) -> Wallet:
        """
        잔고 차감

        Raises:
            InsufficientFunds: 지갑이 없거나 balance < amount
        """
        self._check_amount(amount)
        currency = currency.upper()
        result = await self.db.execute(
            update(Wallet)
            .where(
                Wallet.user_id == user_id,
                Wallet.currency == currency,
                Wallet.balance >= amount
            )
            .values(balance=Wallet.balance - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InsufficientFunds(f"Insufficient {currency} balance")
        return await self.get_wallet(user_id, currency)

    async def reserve(self, user_id: str, currency: str, amount: float) -> Wallet:
        """balance -> locked_balance 이동 (출금 예약)"""
        self._check_amount(amount)
        currency = currency.upper()
        result = await self.db.execute(
            update(Wallet)
            .where(
                Wallet.user_id == user_id,
                Wallet.currency == currency,
                Wallet.balance >= amount
            )
            .values(
                balance=Wallet.balance - amount,
                locked_balance=Wallet.locked_balance + amount
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InsufficientFunds(f"Insufficient {currency} balance")
        return await self.get_wallet(user_id, currency)

    async def release_reserved(self, user_id: str, currency: str, amount: float) -> Wallet:
        """예약분 소멸 (출금 완료 - 자금이 플랫폼을 떠남)"""
        return await self._move_locked(user_id, currency, amount, restore=False)

    async def unreserve(self, user_id: str, currency: str, amount: float) -> Wallet:
        """예약 취소 (locked_balance -> balance 복원)"""
        return await self._move_locked(user_id, currency, amount, restore=True)

    async def _move_locked(self, user_id: str, currency: str, amount: float, restore: bool) -> Wallet:
        self._check_amount(amount)
        currency = currency.upper()
        values = {"locked_balance": Wallet.locked_balance - amount}
        if restore:
            values["balance"] = Wallet.balance + amount

        result = await self.db.execute(
            update(Wallet)
            .where(
                Wallet.user_id == user_id,
                Wallet.currency == currency,
                Wallet.locked_balance >= amount
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.error(f"❌ Locked balance mismatch: user={user_id} {currency} amount={amount}")
            raise LedgerInconsistency(f"Locked {currency} balance is lower than {amount}")
        return await self.get_wallet(user_id, currency)

    @staticmethod
    def portfolio_value(wallets: List[Wallet], prices: Dict[str, float]) -> float:
        """
        총 평가액 (USD 기준)

        Args:
            wallets: 지갑 목록
            prices: 통화별 USD 가격 (없는 통화는 0 으로 평가)
        """
        return sum(w.balance * prices.get(w.currency, 0.0) for w in wallets)

    @staticmethod
    def _check_amount(amount: float):
        if amount is None or amount <= 0:
            raise InvalidAmount(f"Invalid amount: {amount}")
