"""텍스트 추출기 테스트"""
import asyncio
import io
from unittest.mock import AsyncMock, MagicMock

import fitz
import pytest
from docx import Document

from gradeflow.core.config import Settings
from gradeflow.services.analysis.document_decoders import DOCX, PDF, PPTX
from gradeflow.services.analysis.extraction_service import (
    DOCUMENT_FAILURE_TEXT,
    IMAGE_FAILURE_TEXT,
    ContentExtractor,
)
from gradeflow.services.analysis.ocr_engine import OCREngine, OpenAIVisionOCREngine
from gradeflow.services.file.file_service import FileService
from tests.conftest import FakeOCREngine


def make_pdf(text: str) -> bytes:
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


def make_docx(*paragraphs: str) -> bytes:
    document = Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    table = document.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Input"
    table.rows[0].cells[1].text = "Output"
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def extractor(fake_ocr, tmp_path):
    return ContentExtractor(ocr_engine=fake_ocr, file_service=FileService(tmp_path))


class SlowOCREngine(OCREngine):
    async def recognize(self, image, media_type):
        await asyncio.sleep(1)
        return "too late"


class TestImageExtraction:
    @pytest.mark.asyncio
    async def test_images_go_through_ocr(self, extractor, fake_ocr):
        text = await extractor.extract(b"\x89PNG...", "image/PNG")

        assert text == "recognized text"
        assert fake_ocr.calls == [(b"\x89PNG...", "image/png")]

    @pytest.mark.asyncio
    async def test_ocr_failure_returns_placeholder(self, tmp_path):
        extractor = ContentExtractor(
            ocr_engine=FakeOCREngine(error=RuntimeError("engine crashed")),
            file_service=FileService(tmp_path)
        )
        assert await extractor.extract(b"img", "image/jpeg") == IMAGE_FAILURE_TEXT

    @pytest.mark.asyncio
    async def test_ocr_timeout_returns_placeholder(self, tmp_path):
        extractor = ContentExtractor(
            ocr_engine=SlowOCREngine(),
            file_service=FileService(tmp_path),
            settings=Settings(EXTRACTION_TIMEOUT_SECONDS=0.01)
        )
        assert await extractor.extract(b"img", "image/png") == IMAGE_FAILURE_TEXT

    @pytest.mark.asyncio
    async def test_empty_ocr_output_is_empty_string(self, tmp_path):
        extractor = ContentExtractor(ocr_engine=FakeOCREngine(text=None), file_service=FileService(tmp_path))
        assert await extractor.extract(b"img", "image/png") == ""


class TestDocumentExtraction:
    @pytest.mark.asyncio
    async def test_pdf_text_is_decoded(self, extractor):
        text = await extractor.extract(make_pdf("Recursion needs a base case"), PDF)
        assert "Recursion needs a base case" in text

    @pytest.mark.asyncio
    async def test_docx_paragraphs_and_tables(self, extractor):
        text = await extractor.extract(make_docx("Loop invariant holds", "Terminates"), DOCX)

        assert "Loop invariant holds" in text
        assert "Terminates" in text
        assert "Input | Output" in text

    @pytest.mark.asyncio
    async def test_plain_text_with_charset(self, extractor):
        text = await extractor.extract("héllo".encode(), "text/plain; charset=utf-8")
        assert text == "héllo"

    @pytest.mark.asyncio
    async def test_unknown_type_uses_placeholder(self, extractor, fake_ocr):
        text = await extractor.extract(b"PK...", PPTX, file_name="uploads/slides.pptx")

        assert "slides.pptx" in text
        assert "placeholder" in text
        assert fake_ocr.calls == []

    @pytest.mark.asyncio
    async def test_corrupt_document_returns_placeholder(self, extractor):
        assert await extractor.extract(b"not a pdf", PDF) == DOCUMENT_FAILURE_TEXT

    @pytest.mark.asyncio
    async def test_registered_decoder_replaces_fallback(self, extractor):
        extractor.register_decoder("Text/Markdown", lambda data, name: data.decode().upper())
        assert await extractor.extract(b"# title", "text/markdown") == "# TITLE"


class TestFileExtraction:
    @pytest.mark.asyncio
    async def test_reads_relative_path_from_upload_dir(self, extractor, tmp_path):
        (tmp_path / "student-1").mkdir()
        (tmp_path / "student-1" / "answer.txt").write_bytes(b"stored answer")

        assert await extractor.extract_file("student-1/answer.txt", "text/plain") == "stored answer"

    @pytest.mark.asyncio
    async def test_missing_file_returns_placeholder(self, extractor):
        assert await extractor.extract_file("missing.png", "image/png") == IMAGE_FAILURE_TEXT
        assert await extractor.extract_file("missing.pdf", PDF) == DOCUMENT_FAILURE_TEXT


class TestOpenAIVisionOCREngine:
    @pytest.mark.asyncio
    async def test_sends_image_and_language(self):
        message = MagicMock()
        message.content = "x = 42"
        response = MagicMock()
        response.choices = [MagicMock(message=message)]
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=response)

        engine = OpenAIVisionOCREngine(client=client, language="eng")
        text = await engine.recognize(b"image-bytes", "image/png")

        assert text == "x = 42"
        messages = client.chat.completions.create.await_args.kwargs["messages"]
        assert "English" in messages[0]["content"]
        image_part = messages[1]["content"][1]
        assert image_part["image_url"]["url"].startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_empty_image_is_rejected(self):
        engine = OpenAIVisionOCREngine(client=MagicMock())
        with pytest.raises(Exception):
            await engine.recognize(b"", "image/png")
