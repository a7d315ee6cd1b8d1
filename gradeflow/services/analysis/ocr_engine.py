import base64
import logging
from abc import ABC, abstractmethod
from typing import Optional
from openai import AsyncOpenAI
from gradeflow.core.config import Settings
from gradeflow.core.exceptions import ExtractionError
from gradeflow.services.base_service import BaseService

logger = logging.getLogger(__name__)

# tesseract 스타일 언어 코드
LANGUAGE_NAMES = {
    "eng": "English",
    "kor": "Korean",
    "spa": "Spanish",
    "fra": "French",
    "deu": "German",
}


class OCREngine(ABC):
    """이미지 -> 텍스트"""

    @abstractmethod
    async def recognize(self, image: bytes, media_type: str) -> str:
        ...


class OpenAIVisionOCREngine(BaseService, OCREngine):
    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[AsyncOpenAI] = None,
        language: Optional[str] = None
    ):
        super().__init__(settings, client)
        self.language = language or self.settings.OCR_LANGUAGE
        self.model = self.settings.OCR_MODEL

    def _get_instructions(self) -> str:
        language_name = LANGUAGE_NAMES.get(self.language, self.language)
        return f"""
        You are an OCR engine for student assignment submissions.
        Transcribe ALL text visible in the image exactly as written.
        The document language is {language_name}.

        RULES:
        1. Output only the transcribed text, no commentary or markdown fences
        2. Preserve line breaks and the reading order of the page
        3. If the image contains no readable text, output nothing
        """

    async def recognize(self, image: bytes, media_type: str) -> str:
        if not image:
            raise ExtractionError("Empty image")

        client = self.get_client()
        encoded = base64.b64encode(image).decode()
        logger.info(f"OCR 요청 - model={self.model}, language={self.language}, bytes={len(image)}")

        response = await client.chat.completions.create(
            model=self.model,
            temperature=0,
            messages=[
                {"role": "system", "content": self._get_instructions()},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "Extract the text from this image."},
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": f"data:{media_type};base64,{encoded}",
                                "detail": "high"
                            }
                        }
                    ]
                }
            ]
        )
        if not response.choices:
            raise ExtractionError("OCR engine returned no choices")
        return response.choices[0].message.content or ""
