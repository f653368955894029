"""
API 공통 의존성
- 세션(사용자) 식별: X-User-Id / X-User-Email 헤더
- 관리자 권한 확인
- 외부 연동 클라이언트 싱글톤 (시세, 결제, 봇 스케줄러)
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional
from fastapi import Depends, Header, Request
from fastapi.responses import JSONResponse

from cryptotrade import database
from cryptotrade.config import get_settings
from cryptotrade.exceptions import AdminRequired, TradingError, Unauthorized
from cryptotrade.services.bot_scheduler import BotScheduler
from cryptotrade.services.payment_gateway import CryptomusGateway
from cryptotrade.services.quote_provider import QuoteProvider


@dataclass
class Session:
    user_id: str
    email: Optional[str] = None


async def get_session(
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None)
) -> Session:
    if not x_user_id:
        raise Unauthorized()
    return Session(user_id=x_user_id, email=x_user_email)


def is_admin(session: Session) -> bool:
    if not session.email:
        return False
    admins = [email.lower() for email in get_settings().admin_emails]
    return session.email.lower() in admins


async def require_admin(session: Session = Depends(get_session)) -> Session:
    if not is_admin(session):
        raise AdminRequired()
    return session


@lru_cache()
def get_quote_provider() -> QuoteProvider:
    return QuoteProvider()


@lru_cache()
def get_payment_gateway() -> CryptomusGateway:
    return CryptomusGateway()


@lru_cache()
def get_bot_scheduler() -> BotScheduler:
    if database.AsyncSessionLocal is None:
        raise RuntimeError("Database not initialized")
    return BotScheduler(database.AsyncSessionLocal, get_quote_provider())


async def trading_error_handler(request: Request, exc: TradingError) -> JSONResponse:
    """도메인 예외 -> {"error": message} + status_code"""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})
