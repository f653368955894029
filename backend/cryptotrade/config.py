from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite+aiosqlite:///./cryptotrade.db"
    sql_echo: bool = False

    # 웹훅/리다이렉트 URL 생성용
    app_url: str = "http://localhost:3000"

    # Binance (시세 + REAL 모드 주문)
    binance_testnet: bool = False
    quote_api_url: str = "https://api.binance.com/api/v3"
    quote_cache_ttl_seconds: float = 10.0

    # 외부 호출 타임아웃 (초)
    http_timeout_seconds: float = 10.0

    # Cryptomus 결제 게이트웨이
    cryptomus_api_url: str = "https://api.cryptomus.com/v1"
    cryptomus_merchant_id: str = ""
    cryptomus_payment_api_key: str = ""
    cryptomus_payout_api_key: str = ""

    # 수수료 기본값 (% 단위) - PlatformSettings 최초 생성시 사용
    deposit_fee_percent: float = 1.0
    withdrawal_fee_percent: float = 0.5
    trading_fee_percent: float = 0.1

    # 관리자
    admin_emails: List[str] = ["admin@cryptotrade.com"]

    # 봇 설정
    price_history_size: int = 100
    rsi_period: int = 14

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
