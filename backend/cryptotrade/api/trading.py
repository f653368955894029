from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Literal
from sqlalchemy.ext.asyncio import AsyncSession

from cryptotrade.api.deps import Session, get_session, get_quote_provider
from cryptotrade.database import get_db
from cryptotrade.services.quote_provider import QuoteProvider
from cryptotrade.services.settlement import SettlementEngine

router = APIRouter()


class TradeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pair: str  # e.g., "BTC/USDT"
    side: Literal["BUY", "SELL"] = Field(alias="type")
    order_type: Literal["MARKET", "LIMIT"] = Field("MARKET", alias="orderType")
    amount: float
    price: Optional[float] = None  # LIMIT 주문시 필요


def get_settlement_engine(
    db: AsyncSession = Depends(get_db),
    quote_provider: QuoteProvider = Depends(get_quote_provider)
) -> SettlementEngine:
    return SettlementEngine(db, quote_provider)


@router.post("")
async def create_trade(
    request: TradeRequest,
    session: Session = Depends(get_session),
    engine: SettlementEngine = Depends(get_settlement_engine)
):
    """매수/매도 주문"""
    settlement = await engine.execute(
        user_id=session.user_id,
        pair=request.pair,
        side=request.side,
        order_kind=request.order_type,
        amount=request.amount,
        limit_price=request.price
    )
    if settlement.failed:
        # FAILED Trade 는 커밋 후 502 응답
        return JSONResponse(
            status_code=502,
            content={"success": False, "error": settlement.error, "trade": settlement.trade.to_dict()}
        )
    return {"success": True, "trade": settlement.trade.to_dict()}


@router.get("")
async def list_trades(
    pair: Optional[str] = None,
    status: Optional[str] = None,
    session: Session = Depends(get_session),
    engine: SettlementEngine = Depends(get_settlement_engine)
):
    """거래 내역 조회 (최근 100건)"""
    trades = await engine.list_trades(session.user_id, pair=pair, status=status)
    return {"trades": [t.to_dict() for t in trades]}


@router.get("/prices")
async def get_prices(quote_provider: QuoteProvider = Depends(get_quote_provider)):
    """지원 페어 시세"""
    return {"prices": await quote_provider.list_prices()}
