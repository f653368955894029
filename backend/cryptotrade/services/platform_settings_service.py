"""
플랫폼 설정 관리
- 단일 행 설정 로드/초기화
- 거래 모드 전환 (REAL 전환시 Binance 키 검증 필수)
- Binance 연결 테스트
"""

from typing import Any, Callable, Dict, Optional
import logging
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cryptotrade.config import get_settings
from cryptotrade.exceptions import ValidationError
from cryptotrade.models.platform_settings import PlatformSettings, TradingMode, SETTINGS_ROW_ID
from cryptotrade.services.exchange_connector import ExchangeConnector

logger = logging.getLogger(__name__)

ConnectorFactory = Callable[[str, str], ExchangeConnector]

MASKED_SECRET = "********"


def default_connector_factory(api_key: str, secret: str) -> ExchangeConnector:
    config = get_settings()
    return ExchangeConnector(
        api_key=api_key,
        secret_key=secret,
        testnet=config.binance_testnet,
        timeout=config.http_timeout_seconds
    )


class PlatformSettingsService:
    """플랫폼 전역 설정"""

    def __init__(self, db: AsyncSession, connector_factory: Optional[ConnectorFactory] = None):
        self.db = db
        self.connector_factory = connector_factory or default_connector_factory

    async def load_or_initialize(self) -> PlatformSettings:
        """설정 행 조회, 없으면 기본값으로 생성"""
        result = await self.db.execute(
            select(PlatformSettings).where(PlatformSettings.id == SETTINGS_ROW_ID)
        )
        settings = result.scalar_one_or_none()
        if settings:
            return settings

        config = get_settings()
        settings = PlatformSettings(
            id=SETTINGS_ROW_ID,
            trading_mode=TradingMode.SIMULATED.value,
            deposit_fee=config.deposit_fee_percent,
            withdrawal_fee=config.withdrawal_fee_percent,
            trading_fee=config.trading_fee_percent
        )
        self.db.add(settings)
        await self.db.flush()
        logger.info("✅ Platform settings initialized with defaults")
        return settings

    def connector_for(self, settings: PlatformSettings) -> ExchangeConnector:
        return self.connector_factory(settings.binance_api_key, settings.binance_secret)

    @staticmethod
    def public_view(settings: PlatformSettings) -> Dict[str, Any]:
        """응답용 (secret 마스킹)"""
        return {
            "tradingMode": settings.trading_mode,
            "binanceApiKey": settings.binance_api_key,
            "binanceSecret": MASKED_SECRET if settings.binance_secret else None,
            "binanceConfigured": settings.binance_configured,
            "depositFee": settings.deposit_fee,
            "withdrawalFee": settings.withdrawal_fee,
            "tradingFee": settings.trading_fee,
            "updatedAt": settings.updated_at.isoformat() if settings.updated_at else None,
        }

    async def update(
        self,
        trading_mode: Optional[str] = None,
        binance_api_key: Optional[str] = None,
        binance_secret: Optional[str] = None,
        deposit_fee: Optional[float] = None,
        withdrawal_fee: Optional[float] = None,
        trading_fee: Optional[float] = None
    ) -> PlatformSettings:
        """
        설정 업데이트

        REAL 모드 전환은 자격 증명이 있고 실제 검증에 성공해야만 허용
        (실패시 아무것도 저장하지 않음)
        """
        if trading_mode and trading_mode not in (TradingMode.SIMULATED.value, TradingMode.REAL.value):
            raise ValidationError("Invalid trading mode. Must be SIMULATED or REAL")

        for name, value in (("depositFee", deposit_fee), ("withdrawalFee", withdrawal_fee), ("tradingFee", trading_fee)):
            if value is not None and not 0 <= value < 100:
                raise ValidationError(f"Invalid {name}: {value}")

        settings = await self.load_or_initialize()

        if trading_mode == TradingMode.REAL.value:
            api_key = binance_api_key or settings.binance_api_key
            secret = binance_secret or settings.binance_secret
            if not api_key or not secret:
                raise ValidationError("Binance API credentials required for REAL trading mode")

            connector = self.connector_factory(api_key, secret)
            if not await connector.validate_keys():
                logger.warning("⚠️ REAL mode rejected - Binance key validation failed")
                raise ValidationError("Invalid Binance API credentials. Please check your API key and secret.")

        if trading_mode:
            settings.trading_mode = trading_mode
        if binance_api_key:
            settings.binance_api_key = binance_api_key
        if binance_secret:
            settings.binance_secret = binance_secret
        if deposit_fee is not None:
            settings.deposit_fee = deposit_fee
        if withdrawal_fee is not None:
            settings.withdrawal_fee = withdrawal_fee
        if trading_fee is not None:
            settings.trading_fee = trading_fee

        await self.db.flush()
        logger.info(f"✅ Platform settings updated (mode: {settings.trading_mode})")
        return settings

    async def test_connection(self, api_key: str, secret: str) -> Dict[str, Any]:
        """Binance 연결 테스트 (저장하지 않음)"""
        if not api_key or not secret:
            raise ValidationError("API key and secret are required")

        connector = self.connector_factory(api_key, secret)
        if not await connector.ping():
            return {"success": False, "error": "Cannot connect to Binance API"}
        if not await connector.validate_keys():
            return {"success": False, "error": "Invalid API credentials"}

        balances = await connector.get_balances()
        return {
            "success": True,
            "message": "Binance API connection successful",
            "balances": balances,
        }
