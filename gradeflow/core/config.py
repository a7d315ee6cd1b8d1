from pydantic_settings import BaseSettings
from typing import Optional
from functools import lru_cache
from pathlib import Path

# 기본 디렉토리 설정
BASE_DIR = Path(__file__).resolve().parent.parent.parent

class Settings(BaseSettings):
    # 기본 경로 설정
    BASE_DIR: Path = BASE_DIR
    UPLOAD_DIR: Path = BASE_DIR / "uploads"

    # OpenAI 설정 (없으면 결정적 채점기로 동작)
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_TIMEOUT: float = 60.0
    OPENAI_MAX_RETRIES: int = 3

    # 채점 설정
    SCORING_BACKEND: str = "openai"  # openai | deterministic
    SCORING_MODEL: str = "gpt-4o-mini"
    SCORING_TIMEOUT_SECONDS: float = 120.0

    # 텍스트 추출 설정
    OCR_MODEL: str = "gpt-4o-mini"
    OCR_LANGUAGE: str = "eng"
    EXTRACTION_TIMEOUT_SECONDS: float = 120.0

    # 처리 상태 추적 설정
    TRACKER_BACKEND: str = "memory"  # memory | redis
    PROCESSING_RETENTION_SECONDS: int = 3600
    PROCESSING_SWEEP_INTERVAL_SECONDS: int = 300

    # 디버그 설정
    DEBUG: bool = True

    # Redis 설정
    REDIS_URL: str = "redis://localhost:6379"
    REDIS_PREFIX: str = "gradeflow:"

    # Database
    SQLALCHEMY_DATABASE_URL: Optional[str] = None
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "gradeflow_user"
    POSTGRES_PASSWORD: str = "gradeflow_password"
    POSTGRES_DB: str = "gradeflow_db"
    POSTGRES_PORT: str = "5432"

    @property
    def DATABASE_URL(self) -> str:
        if self.SQLALCHEMY_DATABASE_URL:
            return self.SQLALCHEMY_DATABASE_URL
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @property
    def use_openai(self) -> bool:
        return bool(self.OPENAI_API_KEY)

    class Config:
        env_file = ".env"
        case_sensitive = True

@lru_cache()
def get_settings():
    settings = Settings()
    # 업로드 디렉토리 생성
    settings.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    return settings

settings = get_settings()
