from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from cryptotrade.api.deps import Session, get_session, get_quote_provider, get_payment_gateway
from cryptotrade.database import get_db
from cryptotrade.models.transaction import TransactionType
from cryptotrade.services.ledger import LedgerStore
from cryptotrade.services.payment_gateway import CryptomusGateway
from cryptotrade.services.quote_provider import QuoteProvider
from cryptotrade.services.reconciler import PaymentReconciler

router = APIRouter()


class DepositRequest(BaseModel):
    amount: float
    currency: str


class WithdrawRequest(BaseModel):
    amount: float
    currency: str
    address: str
    network: str


def get_reconciler(
    db: AsyncSession = Depends(get_db),
    gateway: CryptomusGateway = Depends(get_payment_gateway)
) -> PaymentReconciler:
    return PaymentReconciler(db, gateway)


@router.get("/balance")
async def get_balance(
    session: Session = Depends(get_session),
    db: AsyncSession = Depends(get_db),
    quote_provider: QuoteProvider = Depends(get_quote_provider)
):
    """지갑 잔고 + USD 평가액"""
    wallets = await LedgerStore(db).list_wallets(session.user_id)
    prices = await quote_provider.usd_prices([w.currency for w in wallets])
    return {
        "wallets": [
            {
                "id": w.id,
                "currency": w.currency,
                "balance": w.balance,
                "lockedBalance": w.locked_balance,
                "address": w.address,
            }
            for w in wallets
        ],
        "totalUSD": LedgerStore.portfolio_value(wallets, prices),
    }


@router.post("/deposit")
async def create_deposit(
    request: DepositRequest,
    session: Session = Depends(get_session),
    reconciler: PaymentReconciler = Depends(get_reconciler)
):
    """입금 인보이스 생성"""
    result = await reconciler.initiate_deposit(session.user_id, request.amount, request.currency)
    transaction = result["transaction"]
    invoice = result["payment"]
    return {
        "success": True,
        "transaction": {
            "id": transaction.id,
            "amount": transaction.amount,
            "fee": transaction.fee,
            "netAmount": transaction.amount - transaction.fee,
            "currency": transaction.currency,
        },
        "payment": {
            "url": invoice.url,
            "address": invoice.address,
            "uuid": invoice.uuid,
        },
    }


@router.get("/deposit")
async def list_deposits(
    currency: Optional[str] = None,
    session: Session = Depends(get_session),
    reconciler: PaymentReconciler = Depends(get_reconciler)
):
    transactions = await reconciler.list_transactions(session.user_id, TransactionType.DEPOSIT.value, currency)
    return {"transactions": [t.to_dict() for t in transactions]}


@router.post("/withdraw")
async def create_withdrawal(
    request: WithdrawRequest,
    session: Session = Depends(get_session),
    reconciler: PaymentReconciler = Depends(get_reconciler)
):
    """출금 요청 (amount + fee 예약 후 페이아웃)"""
    result = await reconciler.initiate_withdrawal(
        session.user_id,
        request.amount,
        request.currency,
        request.address,
        request.network
    )
    transaction = result["transaction"]
    payout = result["payout"]
    return {
        "success": True,
        "transaction": {
            "id": transaction.id,
            "amount": transaction.amount,
            "fee": transaction.fee,
            "netAmount": transaction.amount,
            "currency": transaction.currency,
            "address": transaction.wallet_address,
            "network": transaction.network,
            "status": transaction.status,
        },
        "payout": {
            "uuid": payout.uuid,
            "status": payout.status,
        },
    }


@router.get("/withdraw")
async def list_withdrawals(
    currency: Optional[str] = None,
    session: Session = Depends(get_session),
    reconciler: PaymentReconciler = Depends(get_reconciler)
):
    transactions = await reconciler.list_transactions(session.user_id, TransactionType.WITHDRAWAL.value, currency)
    return {"transactions": [t.to_dict() for t in transactions]}
