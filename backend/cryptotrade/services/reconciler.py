"""
입출금 정산 (Deposit/Withdrawal Reconciler)
- 입금: PENDING 트랜잭션 생성 -> 인보이스 발급 -> 웹훅으로 잔고 반영
- 출금: 잔고를 locked_balance 로 예약 -> 페이아웃 요청
        -> 실패시 예약 복원 (보상 트랜잭션)
- 웹훅: 서명 검증 -> 트랜잭션 조회 -> 상태 전이 (PENDING 에서 단 한 번)
"""

import json
import logging
import uuid as uuid_lib
from typing import Any, Dict, List, Optional, Union
from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from cryptotrade.config import get_settings
from cryptotrade.exceptions import (
    InvalidAmount,
    PaymentGatewayError,
    SignatureInvalid,
    TransactionNotFound,
    ValidationError,
    WalletNotFound,
)
from cryptotrade.models.transaction import Transaction, TransactionType, TransactionStatus
from cryptotrade.services.ledger import LedgerStore
from cryptotrade.services.payment_gateway import CryptomusGateway
from cryptotrade.services.platform_settings_service import PlatformSettingsService

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = ("paid", "paid_over")
FAILURE_STATUSES = ("cancel", "fail", "wrong_amount", "system_fail")

WEBHOOK_PATH = "/api/webhook/cryptomus"


class PaymentReconciler:
    """입출금 라이프사이클 관리"""

    def __init__(
        self,
        db: AsyncSession,
        gateway: CryptomusGateway,
        settings_service: Optional[PlatformSettingsService] = None,
        app_url: Optional[str] = None
    ):
        self.db = db
        self.gateway = gateway
        self.ledger = LedgerStore(db)
        self.settings_service = settings_service or PlatformSettingsService(db)
        self.app_url = (app_url or get_settings().app_url).rstrip('/')

    @property
    def callback_url(self) -> str:
        return f"{self.app_url}{WEBHOOK_PATH}"

    # ------------------------------------------------------------------
    # 입금
    # ------------------------------------------------------------------

    async def initiate_deposit(self, user_id: str, amount: float, currency: str) -> Dict[str, Any]:
        """
        입금 요청

        Args:
            user_id: 사용자 ID
            amount: 입금 금액
            currency: 통화

        Returns:
            {'transaction': Transaction, 'payment': Invoice}
        """
        self._validate_amount(amount)
        currency = self._validate_currency(currency)
        platform = await self.settings_service.load_or_initialize()

        order_id = str(uuid_lib.uuid4())
        transaction = Transaction(
            user_id=user_id,
            type=TransactionType.DEPOSIT.value,
            currency=currency,
            amount=amount,
            fee=amount * platform.deposit_fee_rate,
            status=TransactionStatus.PENDING.value,
            external_id=order_id,
            order_id=order_id
        )
        self.db.add(transaction)
        # 웹훅이 먼저 도착해도 찾을 수 있도록 인보이스 요청 전에 커밋
        await self.db.commit()

        try:
            invoice = await self.gateway.create_invoice(
                amount=amount,
                currency=currency,
                order_id=order_id,
                callback_url=self.callback_url,
                return_url=f"{self.app_url}/dashboard/wallet",
                success_url=f"{self.app_url}/dashboard/wallet?success=true"
            )
        except PaymentGatewayError:
            transaction.status = TransactionStatus.FAILED.value
            await self.db.commit()
            logger.error(f"❌ Deposit invoice failed for transaction {transaction.id}")
            raise

        transaction.external_id = invoice.uuid or order_id
        await self.db.flush()
        logger.info(f"✅ Deposit {transaction.id} pending: {amount} {currency} (invoice {transaction.external_id})")
        return {"transaction": transaction, "payment": invoice}

    # ------------------------------------------------------------------
    # 출금
    # ------------------------------------------------------------------

    async def initiate_withdrawal(
        self,
        user_id: str,
        amount: float,
        currency: str,
        address: str,
        network: str
    ) -> Dict[str, Any]:
        """
        출금 요청

        1. balance >= amount + fee 확인
        2. amount + fee 를 locked_balance 로 예약하고 PENDING 트랜잭션 생성 (한 트랜잭션)
        3. 페이아웃 요청, 실패시 예약 복원 후 FAILED

        Raises:
            WalletNotFound, InsufficientFunds, PaymentGatewayError
        """
        self._validate_amount(amount)
        currency = self._validate_currency(currency)
        if not address or not network:
            raise ValidationError("Amount, currency, address, and network are required")

        wallet = await self.ledger.get_wallet(user_id, currency)
        if wallet is None:
            raise WalletNotFound(f"{currency} wallet not found")

        platform = await self.settings_service.load_or_initialize()
        fee = amount * platform.withdrawal_fee_rate
        reserved = amount + fee

        order_id = str(uuid_lib.uuid4())
        await self.ledger.reserve(user_id, currency, reserved)
        transaction = Transaction(
            user_id=user_id,
            type=TransactionType.WITHDRAWAL.value,
            currency=currency,
            amount=amount,
            fee=fee,
            status=TransactionStatus.PENDING.value,
            external_id=order_id,
            order_id=order_id,
            wallet_address=address,
            network=network
        )
        self.db.add(transaction)
        await self.db.commit()
        logger.info(f"✅ Reserved {reserved} {currency} for withdrawal {transaction.id}")

        try:
            payout = await self.gateway.create_payout(
                amount=amount,
                currency=currency,
                order_id=order_id,
                address=address,
                network=network,
                callback_url=self.callback_url
            )
        except Exception:
            # 어떤 실패든 예약 복원
            await self._compensate_withdrawal(transaction)
            await self.db.commit()
            raise

        transaction.external_id = payout.uuid or order_id
        await self.db.flush()
        logger.info(f"✅ Withdrawal {transaction.id} submitted (payout {transaction.external_id}, status {payout.status})")
        return {"transaction": transaction, "payout": payout}

    async def _compensate_withdrawal(self, transaction: Transaction):
        """예약분 복원 + FAILED (보상 트랜잭션)"""
        if not await self._transition(transaction, TransactionStatus.FAILED):
            return
        await self.ledger.unreserve(transaction.user_id, transaction.currency, transaction.reserved_amount)
        logger.warning(
            f"⚠️ Withdrawal {transaction.id} failed - returned {transaction.reserved_amount} "
            f"{transaction.currency} to available balance"
        )

    # ------------------------------------------------------------------
    # 웹훅
    # ------------------------------------------------------------------

    async def handle_callback(self, raw_body: Union[str, bytes], signature: str) -> Dict[str, Any]:
        """
        게이트웨이 웹훅 처리

        Args:
            raw_body: 요청 원문 (서명 검증 대상)
            signature: sign 헤더

        Returns:
            처리 결과

        Raises:
            SignatureInvalid: 서명 불일치 (조회 없이 거부)
            TransactionNotFound: uuid / order_id 모두 불일치
        """
        if not self.gateway.verify_webhook(raw_body, signature):
            logger.error("❌ Invalid webhook signature")
            raise SignatureInvalid()

        try:
            data = json.loads(raw_body)
        except ValueError:
            raise ValidationError("Malformed webhook body")
        if not isinstance(data, dict):
            raise ValidationError("Malformed webhook body")

        external_uuid = data.get("uuid")
        order_id = data.get("order_id")
        status = str(data.get("status", "")).lower()
        logger.info(f"Cryptomus webhook received: uuid={external_uuid} order_id={order_id} status={status} type={data.get('type')}")

        transaction = await self._find_transaction(external_uuid, order_id)
        if transaction is None:
            logger.error(f"❌ Transaction not found: uuid={external_uuid} order_id={order_id}")
            raise TransactionNotFound()

        if transaction.status == TransactionStatus.COMPLETED.value:
            return {"success": True, "message": "Already processed"}
        if transaction.status == TransactionStatus.FAILED.value:
            logger.warning(f"⚠️ Webhook for failed transaction {transaction.id} ignored (status={status})")
            return {"success": True, "message": "Already failed"}

        if status in SUCCESS_STATUSES:
            await self._complete(transaction, data)
        elif status in FAILURE_STATUSES:
            await self._fail(transaction)
        else:
            logger.info(f"Transaction {transaction.id} in progress (status={status})")

        return {"success": True}

    async def _complete(self, transaction: Transaction, data: Dict[str, Any]):
        if transaction.type == TransactionType.DEPOSIT.value:
            platform = await self.settings_service.load_or_initialize()
            paid = self._parse_amount(data.get("amount"), transaction.amount)
            platform_fee = paid * platform.deposit_fee_rate
            if not await self._transition(
                transaction,
                TransactionStatus.COMPLETED,
                amount=paid,
                fee=platform_fee,
                tx_hash=data.get("txid")
            ):
                return
            net = paid - platform_fee
            if net > 0:
                await self.ledger.credit(transaction.user_id, transaction.currency, net)
            logger.info(f"✅ Deposit {transaction.id} completed: +{net} {transaction.currency} (fee {platform_fee})")
        else:
            if not await self._transition(transaction, TransactionStatus.COMPLETED, tx_hash=data.get("txid")):
                return
            await self.ledger.release_reserved(transaction.user_id, transaction.currency, transaction.reserved_amount)
            logger.info(f"✅ Withdrawal {transaction.id} completed: released {transaction.reserved_amount} {transaction.currency}")

    async def _fail(self, transaction: Transaction):
        if transaction.type == TransactionType.WITHDRAWAL.value:
            await self._compensate_withdrawal(transaction)
        elif await self._transition(transaction, TransactionStatus.FAILED):
            logger.warning(f"⚠️ Deposit {transaction.id} failed")

    async def _transition(self, transaction: Transaction, status: TransactionStatus, **fields) -> bool:
        """
        PENDING -> status 조건부 전이

        동시에 같은 웹훅이 처리되어도 한 번만 성공 (잔고 중복 반영 방지)
        """
        result = await self.db.execute(
            update(Transaction)
            .where(Transaction.id == transaction.id, Transaction.status == TransactionStatus.PENDING.value)
            .values(status=status.value, **fields)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(f"Transaction {transaction.id} already left PENDING - skipping {status.value}")
            return False
        await self.db.refresh(transaction)
        return True

    async def _find_transaction(self, external_uuid: Optional[str], order_id: Optional[str]) -> Optional[Transaction]:
        conditions = []
        if external_uuid:
            conditions.append(Transaction.external_id == external_uuid)
        if order_id:
            conditions.append(Transaction.external_id == order_id)
            conditions.append(Transaction.order_id == order_id)
        if not conditions:
            return None

        result = await self.db.execute(
            select(Transaction)
            .where(or_(*conditions))
            .execution_options(populate_existing=True)
        )
        candidates = list(result.scalars().all())
        # uuid 일치 우선
        for tx in candidates:
            if external_uuid and tx.external_id == external_uuid:
                return tx
        return candidates[0] if candidates else None

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------

    async def list_transactions(
        self,
        user_id: str,
        type: str,
        currency: Optional[str] = None,
        limit: int = 50
    ) -> List[Transaction]:
        stmt = select(Transaction).where(Transaction.user_id == user_id, Transaction.type == type)
        if currency:
            stmt = stmt.where(Transaction.currency == currency.upper())
        stmt = stmt.order_by(Transaction.created_at.desc(), Transaction.id.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    def _validate_amount(amount: float):
        if amount is None or amount <= 0:
            raise InvalidAmount("Invalid amount")

    @staticmethod
    def _validate_currency(currency: str) -> str:
        if not currency or not currency.strip().isalnum():
            raise ValidationError("Amount and currency are required")
        return currency.strip().upper()

    @staticmethod
    def _parse_amount(value: Any, default: float) -> float:
        try:
            parsed = float(value)
        except (TypeError, ValueError):
            return default
        return parsed if parsed > 0 else default
