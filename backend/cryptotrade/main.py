from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from cryptotrade.api import trading, wallet, webhook, bots, admin
from cryptotrade.api.deps import trading_error_handler
from cryptotrade.config import get_settings
from cryptotrade.database import init_db, close_db
from cryptotrade.exceptions import TradingError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """앱 시작/종료 시 DB 연결 관리"""
    await init_db()
    logger.info("✅ CryptoTrade API started")

    yield

    await close_db()


app = FastAPI(
    title="CryptoTrade",
    description="암호화폐 거래/지갑/자동매매 봇 백엔드",
    version="1.0.0",
    lifespan=lifespan
)

# CORS 설정 (프론트엔드 연동)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().app_url, "http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(TradingError, trading_error_handler)

# API 라우터 등록
app.include_router(trading.router, prefix="/api/trade", tags=["Trading"])
app.include_router(wallet.router, prefix="/api/wallet", tags=["Wallet"])
app.include_router(webhook.router, prefix="/api/webhook", tags=["Webhook"])
app.include_router(bots.router, prefix="/api/bot", tags=["Bots"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])


@app.get("/")
async def root():
    return {
        "message": "CryptoTrade API",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    config = get_settings()
    return {
        "status": "healthy",
        "testnet": config.binance_testnet,
        "cryptomus_configured": bool(config.cryptomus_merchant_id and config.cryptomus_payment_api_key)
    }
