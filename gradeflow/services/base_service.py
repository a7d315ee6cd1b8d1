from openai import AsyncOpenAI
import logging
from typing import Optional
from gradeflow.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

class BaseService:
    def __init__(self, settings: Optional[Settings] = None, client: Optional[AsyncOpenAI] = None):
        self.settings = settings or default_settings
        self.client = client

    def get_client(self) -> AsyncOpenAI:
        """OpenAI 클라이언트 반환 (최초 호출 시 생성)"""
        if self.client is None:
            if not self.settings.OPENAI_API_KEY:
                raise RuntimeError("OPENAI_API_KEY not found in settings")
            try:
                self.client = AsyncOpenAI(
                    api_key=self.settings.OPENAI_API_KEY,
                    max_retries=self.settings.OPENAI_MAX_RETRIES,
                    timeout=self.settings.OPENAI_TIMEOUT,
                )
                logger.info("OpenAI client initialized successfully")
            except Exception as e:
                logger.error(f"Failed to initialize OpenAI client: {e}")
                raise
        return self.client
