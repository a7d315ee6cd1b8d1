from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from gradeflow.core.config import settings
import logging
from typing import AsyncGenerator
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

def _engine_options(database_url: str) -> dict:
    # SQLite 는 풀 설정을 지원하지 않음
    if database_url.startswith("sqlite"):
        return {"echo": False}
    return {
        "pool_size": 30,
        "max_overflow": 30,
        "pool_timeout": 30,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "echo": False,
    }

engine = create_async_engine(
    settings.DATABASE_URL,
    **_engine_options(settings.DATABASE_URL)
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)

Base = declarative_base()

def utcnow() -> datetime:
    """타임스탬프는 모두 UTC (timezone-aware)"""
    return datetime.now(timezone.utc)

async def init_db():
    """데이터베이스 초기화"""
    # 테이블 등록을 위해 모델 import
    from gradeflow import models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            logger.info("데이터베이스 테이블 생성 완료")
    except Exception as e:
        logger.error(f"데이터베이스 초기화 중 오류: {str(e)}")
        raise

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """비동기 세션 생성"""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()

# FastAPI dependency
get_db = get_session
