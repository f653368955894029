import logging
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from cryptotrade.api.deps import Session, get_session, get_bot_scheduler
from cryptotrade.database import get_db
from cryptotrade.services.bot_scheduler import BotScheduler, execution_summary
from cryptotrade.services.bot_service import BotService

logger = logging.getLogger(__name__)

router = APIRouter()


class BotCreateRequest(BaseModel):
    pair: str
    strategy: str  # DCA, GRID, SCALPER
    investment: Optional[float] = None
    interval: Optional[int] = None  # 분
    settings: Optional[Dict[str, Any]] = None


class BotUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    bot_id: int = Field(alias="botId")
    enabled: Optional[bool] = None
    investment: Optional[float] = None
    interval: Optional[int] = None
    settings: Optional[Dict[str, Any]] = None


def get_bot_service(db: AsyncSession = Depends(get_db)) -> BotService:
    return BotService(db)


@router.get("")
async def list_bots(
    session: Session = Depends(get_session),
    service: BotService = Depends(get_bot_service)
):
    """사용자 봇 목록"""
    return {"bots": await service.list_bots(session.user_id)}


@router.post("")
async def create_bot(
    request: BotCreateRequest,
    session: Session = Depends(get_session),
    service: BotService = Depends(get_bot_service)
):
    """봇 생성 (비활성 상태로 생성)"""
    bot = await service.create_bot(
        session.user_id,
        request.pair,
        request.strategy,
        investment=request.investment,
        interval=request.interval,
        settings=request.settings
    )
    return {"success": True, "bot": bot.to_dict()}


@router.patch("")
async def update_bot(
    request: BotUpdateRequest,
    session: Session = Depends(get_session),
    service: BotService = Depends(get_bot_service)
):
    """봇 설정 변경 / 활성화 토글"""
    bot = await service.update_bot(
        session.user_id,
        request.bot_id,
        enabled=request.enabled,
        investment=request.investment,
        interval=request.interval,
        settings=request.settings
    )
    return {"success": True, "bot": bot.to_dict()}


@router.delete("")
async def delete_bot(
    botId: int,
    session: Session = Depends(get_session),
    service: BotService = Depends(get_bot_service)
):
    """봇 삭제"""
    await service.delete_bot(session.user_id, botId)
    return {"success": True}


@router.post("/execute")
async def execute_bots(scheduler: BotScheduler = Depends(get_bot_scheduler)):
    """활성 봇 전체 실행 (cron 또는 수동 호출)"""
    results = await scheduler.run_due_bots()
    return execution_summary(results)


@router.get("/execute")
async def bot_stats(service: BotService = Depends(get_bot_service)):
    """봇 전체 통계"""
    return await service.bot_stats()
