from enum import Enum
from sqlalchemy import Column, String, Float, DateTime

from cryptotrade.database import Base, utcnow

SETTINGS_ROW_ID = "settings"


class TradingMode(str, Enum):
    SIMULATED = "SIMULATED"
    REAL = "REAL"


class PlatformSettings(Base):
    """플랫폼 전역 설정 (단일 행)"""
    __tablename__ = "platform_settings"

    id = Column(String(20), primary_key=True, default=SETTINGS_ROW_ID)
    trading_mode = Column(String(20), nullable=False, default=TradingMode.SIMULATED.value)

    # Binance 자격 증명 - 관리자 외에는 쓰기 전용
    binance_api_key = Column(String(128))
    binance_secret = Column(String(128))

    # 수수료 (% 단위)
    deposit_fee = Column(Float, nullable=False, default=1.0)
    withdrawal_fee = Column(Float, nullable=False, default=0.5)
    trading_fee = Column(Float, nullable=False, default=0.1)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_real(self) -> bool:
        return self.trading_mode == TradingMode.REAL.value

    @property
    def binance_configured(self) -> bool:
        return bool(self.binance_api_key and self.binance_secret)

    @property
    def trading_fee_rate(self) -> float:
        return self.trading_fee / 100

    @property
    def deposit_fee_rate(self) -> float:
        return self.deposit_fee / 100

    @property
    def withdrawal_fee_rate(self) -> float:
        return self.withdrawal_fee / 100
