import io
import logging
from pathlib import Path
from typing import Callable, Dict

import fitz  # PyMuPDF
from docx import Document

logger = logging.getLogger(__name__)

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PPTX = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
PLAIN_TEXT = "text/plain"

# (data, file_name) -> text
DocumentDecoder = Callable[[bytes, str], str]


def decode_pdf(data: bytes, file_name: str = "") -> str:
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        return "\n".join(page.get_text() for page in doc).strip()
    finally:
        doc.close()


def decode_docx(data: bytes, file_name: str = "") -> str:
    doc = Document(io.BytesIO(data))
    lines = [para.text for para in doc.paragraphs if para.text.strip()]
    for table in doc.tables:
        for row in table.rows:
            row_text = " | ".join(cell.text.strip() for cell in row.cells if cell.text.strip())
            if row_text:
                lines.append(row_text)
    return "\n".join(lines)


def decode_plain_text(data: bytes, file_name: str = "") -> str:
    return data.decode("utf-8", errors="replace")


def placeholder_text(data: bytes, file_name: str = "") -> str:
    """실제 디코더가 없는 형식용 (pptx 등)"""
    name = Path(file_name).name if file_name else "the submitted file"
    return (
        f"Document content extracted from {name}. "
        "This is a placeholder for the actual document content that would be "
        "extracted using a format-specific decoder."
    )


def default_decoders() -> Dict[str, DocumentDecoder]:
    return {
        PDF: decode_pdf,
        DOCX: decode_docx,
        PLAIN_TEXT: decode_plain_text,
    }
