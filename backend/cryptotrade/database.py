import logging
import os
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from cryptotrade.config import get_settings

logger = logging.getLogger(__name__)

# Cloud Run에서는 echo=False로 설정하여 로그 과다 출력 방지
is_cloud_run = os.getenv('K_SERVICE') is not None

Base = declarative_base()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """DB 종류에 맞는 옵션으로 비동기 엔진 생성"""
    connect_args = {}
    engine_kwargs = {}
    if "postgresql" in database_url or "asyncpg" in database_url:
        connect_args = {"timeout": 10.0, "command_timeout": 10.0}  # PostgreSQL/asyncpg 전용
        engine_kwargs = {"pool_size": 5, "max_overflow": 10}
    elif "sqlite" in database_url:
        connect_args = {"timeout": 10}

    return create_async_engine(
        database_url,
        echo=echo and not is_cloud_run,
        pool_pre_ping=True,
        connect_args=connect_args,
        **engine_kwargs
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


try:
    settings = get_settings()
    engine = build_engine(settings.database_url, echo=settings.sql_echo)
    logger.info(f"✅ Database engine created (Cloud Run: {is_cloud_run})")
except Exception as e:
    logger.error(f"❌ Failed to create database engine: {e}")
    engine = None

AsyncSessionLocal = build_session_factory(engine) if engine else None


async def get_db():
    """의존성 주입용 DB 세션 생성기"""
    if AsyncSessionLocal is None:
        raise RuntimeError("Database not initialized")

    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(bind: AsyncEngine = None):
    """앱 시작 - 테이블 생성 및 연결 확인"""
    bind = bind or engine
    if bind is None:
        logger.warning("⚠️ Database engine not initialized - skipping schema setup")
        return

    # 모델 등록 (metadata 채우기)
    import cryptotrade.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✅ Database schema ready")


async def close_db():
    """데이터베이스 연결 종료"""
    if engine:
        await engine.dispose()


def utcnow() -> datetime:
    """DB 저장용 naive UTC 시각"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
