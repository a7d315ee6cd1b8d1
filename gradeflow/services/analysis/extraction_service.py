import asyncio
import logging
import time
from typing import Dict, Optional
from async_timeout import timeout
from gradeflow.core.config import Settings, settings as default_settings
from gradeflow.services.analysis.ocr_engine import OCREngine
from gradeflow.services.analysis.document_decoders import (
    DocumentDecoder,
    default_decoders,
    placeholder_text
)
from gradeflow.services.file.file_service import FileService

logger = logging.getLogger(__name__)

IMAGE_FAILURE_TEXT = "Failed to extract text from image"
DOCUMENT_FAILURE_TEXT = "Failed to extract text from document"


class ContentExtractor:
    """제출 파일에서 텍스트 추출

    이미지 형식은 OCR 엔진으로, 그 외 형식은 media type 별 디코더로 처리한다.
    디코더가 없는 형식은 placeholder 텍스트를 돌려준다. 어떤 실패도 밖으로
    던지지 않고 진단용 문자열을 반환한다.
    """

    def __init__(
        self,
        ocr_engine: OCREngine,
        file_service: Optional[FileService] = None,
        decoders: Optional[Dict[str, DocumentDecoder]] = None,
        fallback_decoder: DocumentDecoder = placeholder_text,
        settings: Optional[Settings] = None
    ):
        self.settings = settings or default_settings
        self.ocr_engine = ocr_engine
        self.file_service = file_service or FileService()
        self.decoders = default_decoders() if decoders is None else dict(decoders)
        self.fallback_decoder = fallback_decoder
        self.timeout_seconds = self.settings.EXTRACTION_TIMEOUT_SECONDS

    def register_decoder(self, media_type: str, decoder: DocumentDecoder) -> None:
        """디코더 추가 또는 교체"""
        self.decoders[self._normalize(media_type)] = decoder

    @staticmethod
    def _normalize(media_type: Optional[str]) -> str:
        # "text/plain; charset=utf-8" -> "text/plain"
        return (media_type or "").split(";")[0].strip().lower()

    @staticmethod
    def is_image(media_type: Optional[str]) -> bool:
        return ContentExtractor._normalize(media_type).startswith("image/")

    def _failure_text(self, media_type: str) -> str:
        return IMAGE_FAILURE_TEXT if self.is_image(media_type) else DOCUMENT_FAILURE_TEXT

    async def _dispatch(self, data: bytes, media_type: str, file_name: str) -> str:
        normalized = self._normalize(media_type)
        if self.is_image(normalized):
            return await self.ocr_engine.recognize(data, normalized)

        decoder = self.decoders.get(normalized, self.fallback_decoder)
        # 디코더는 동기 CPU 작업
        return await asyncio.to_thread(decoder, data, file_name)

    async def extract(self, data: bytes, media_type: str, file_name: str = "") -> str:
        try:
            start_time = time.time()
            async with timeout(self.timeout_seconds):
                text = await self._dispatch(data, media_type, file_name)
            logger.info(
                f"텍스트 추출 완료 ({media_type}): {len(text or '')}자, {time.time() - start_time:.2f}초 소요"
            )
            return text or ""
        except asyncio.TimeoutError:
            logger.error(f"Extraction timed out after {self.timeout_seconds}s ({media_type})")
            return self._failure_text(media_type)
        except Exception as e:
            logger.error(f"Extraction error ({media_type}): {str(e)}")
            return self._failure_text(media_type)

    async def extract_file(self, file_path: str, media_type: str) -> str:
        """저장된 파일을 읽어서 추출"""
        try:
            data = await self.file_service.read_file(file_path)
        except Exception as e:
            logger.error(f"Failed to read stored file {file_path}: {str(e)}")
            return self._failure_text(media_type)
        return await self.extract(data, media_type, file_name=file_path)
