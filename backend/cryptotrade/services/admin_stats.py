"""
관리자 통계
- 수수료 수익 (입금/출금/거래)
- 거래량, 건수, 대기 중 입출금
- 잔고 보유 사용자 수, 최근 트랜잭션/거래
"""

from typing import Any, Dict
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from cryptotrade.models.trade import Trade, TradeStatus
from cryptotrade.models.transaction import Transaction, TransactionType, TransactionStatus
from cryptotrade.models.wallet import Wallet

RECENT_LIMIT = 10


async def _transaction_totals(db: AsyncSession, tx_type: TransactionType):
    result = await db.execute(
        select(
            func.count(Transaction.id),
            func.coalesce(func.sum(Transaction.amount), 0.0),
            func.coalesce(func.sum(Transaction.fee), 0.0)
        ).where(
            Transaction.type == tx_type.value,
            Transaction.status == TransactionStatus.COMPLETED.value
        )
    )
    return result.one()


async def _pending_count(db: AsyncSession, tx_type: TransactionType) -> int:
    count = await db.scalar(
        select(func.count(Transaction.id)).where(
            Transaction.type == tx_type.value,
            Transaction.status == TransactionStatus.PENDING.value
        )
    )
    return count or 0


async def platform_stats(db: AsyncSession) -> Dict[str, Any]:
    """
    플랫폼 통계 집계

    Returns:
        revenue / volume / counts / users / recent
    """
    deposit_count, deposit_volume, deposit_fees = await _transaction_totals(db, TransactionType.DEPOSIT)
    withdrawal_count, withdrawal_volume, withdrawal_fees = await _transaction_totals(db, TransactionType.WITHDRAWAL)

    trade_result = await db.execute(
        select(
            func.count(Trade.id),
            func.coalesce(func.sum(Trade.total), 0.0),
            func.coalesce(func.sum(Trade.fee), 0.0)
        ).where(Trade.status == TradeStatus.FILLED.value)
    )
    trade_count, trade_volume, trading_fees = trade_result.one()

    total_users = await db.scalar(select(func.count(func.distinct(Wallet.user_id))))
    users_with_balance = await db.scalar(
        select(func.count(func.distinct(Wallet.user_id))).where(Wallet.balance > 0)
    )

    recent_transactions = await db.execute(
        select(Transaction).order_by(Transaction.created_at.desc(), Transaction.id.desc()).limit(RECENT_LIMIT)
    )
    recent_trades = await db.execute(
        select(Trade).order_by(Trade.created_at.desc(), Trade.id.desc()).limit(RECENT_LIMIT)
    )

    return {
        "revenue": {
            "totalFees": float(deposit_fees + withdrawal_fees + trading_fees),
            "depositFees": float(deposit_fees),
            "withdrawalFees": float(withdrawal_fees),
            "tradingFees": float(trading_fees),
        },
        "volume": {
            "totalDeposits": float(deposit_volume),
            "totalWithdrawals": float(withdrawal_volume),
            "totalTradeVolume": float(trade_volume),
        },
        "counts": {
            "deposits": deposit_count,
            "withdrawals": withdrawal_count,
            "trades": trade_count,
            "pendingDeposits": await _pending_count(db, TransactionType.DEPOSIT),
            "pendingWithdrawals": await _pending_count(db, TransactionType.WITHDRAWAL),
        },
        "users": {
            "total": total_users or 0,
            "withBalance": users_with_balance or 0,
        },
        "recent": {
            "transactions": [
                {**t.to_dict(), "user": t.user_id} for t in recent_transactions.scalars().all()
            ],
            "trades": [
                {**t.to_dict(), "user": t.user_id} for t in recent_trades.scalars().all()
            ],
        },
    }
