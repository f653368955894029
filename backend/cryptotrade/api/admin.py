from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from cryptotrade.api.deps import Session, require_admin
from cryptotrade.database import get_db
from cryptotrade.services.admin_stats import platform_stats
from cryptotrade.services.platform_settings_service import PlatformSettingsService

router = APIRouter()


class SettingsUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    trading_mode: Optional[str] = Field(None, alias="tradingMode")  # SIMULATED or REAL
    binance_api_key: Optional[str] = Field(None, alias="binanceApiKey")
    binance_secret: Optional[str] = Field(None, alias="binanceSecret")
    deposit_fee: Optional[float] = Field(None, alias="depositFee")  # %
    withdrawal_fee: Optional[float] = Field(None, alias="withdrawalFee")  # %
    trading_fee: Optional[float] = Field(None, alias="tradingFee")  # %


class ConnectionTestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(alias="apiKey")
    secret: str


def get_settings_service(db: AsyncSession = Depends(get_db)) -> PlatformSettingsService:
    return PlatformSettingsService(db)


@router.get("/settings")
async def get_platform_settings(
    admin: Session = Depends(require_admin),
    service: PlatformSettingsService = Depends(get_settings_service)
):
    """플랫폼 설정 조회 (secret 마스킹)"""
    settings = await service.load_or_initialize()
    return {"settings": service.public_view(settings)}


@router.patch("/settings")
async def update_platform_settings(
    request: SettingsUpdateRequest,
    admin: Session = Depends(require_admin),
    service: PlatformSettingsService = Depends(get_settings_service)
):
    """플랫폼 설정 변경 (REAL 전환시 Binance 키 검증)"""
    settings = await service.update(
        trading_mode=request.trading_mode,
        binance_api_key=request.binance_api_key,
        binance_secret=request.binance_secret,
        deposit_fee=request.deposit_fee,
        withdrawal_fee=request.withdrawal_fee,
        trading_fee=request.trading_fee
    )
    return {"success": True, "settings": service.public_view(settings)}


@router.post("/settings")
async def test_binance_connection(
    request: ConnectionTestRequest,
    admin: Session = Depends(require_admin),
    service: PlatformSettingsService = Depends(get_settings_service)
):
    """Binance 연결 테스트 (저장하지 않음)"""
    return await service.test_connection(request.api_key, request.secret)


@router.get("/stats")
async def get_platform_stats(
    admin: Session = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """수수료 수익 / 거래량 / 사용자 통계"""
    return await platform_stats(db)
