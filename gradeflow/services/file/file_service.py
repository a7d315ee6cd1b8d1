import aiofiles
import os
import logging
from pathlib import Path
from typing import Optional
from gradeflow.core.config import settings

logger = logging.getLogger(__name__)

class FileService:
    """저장된 제출 파일 읽기 (쓰기/삭제는 하지 않음)"""

    def __init__(self, upload_dir: Optional[Path] = None):
        self.upload_dir = Path(upload_dir or settings.UPLOAD_DIR)

    def get_full_path(self, file_path: str) -> Path:
        """상대 경로를 업로드 디렉토리 기준 절대 경로로 변환"""
        path = Path(file_path)
        if path.is_absolute():
            return path
        return self.upload_dir / file_path.lstrip("/")

    async def read_file(self, file_path: str) -> bytes:
        full_path = self.get_full_path(file_path)
        if not os.path.exists(full_path):
            raise FileNotFoundError(f"Stored file not found: {full_path}")

        async with aiofiles.open(full_path, "rb") as f:
            content = await f.read()
        logger.info(f"Read {len(content)} bytes from {full_path}")
        return content
