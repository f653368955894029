from fastapi import APIRouter, Depends, Header, Request

from cryptotrade.api.wallet import get_reconciler
from cryptotrade.services.reconciler import PaymentReconciler

router = APIRouter()


@router.post("/cryptomus")
async def cryptomus_webhook(
    request: Request,
    sign: str = Header(""),
    reconciler: PaymentReconciler = Depends(get_reconciler)
):
    """Cryptomus 결제/페이아웃 상태 웹훅 (원문 본문으로 서명 검증)"""
    raw_body = await request.body()
    return await reconciler.handle_callback(raw_body, sign)
