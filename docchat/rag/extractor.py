"""Text extraction from uploaded files (PDF, DOCX, plain text)."""
import io

import fitz  # PyMuPDF
import mammoth
import structlog

from docchat.errors import UnsupportedFormatError

logger = structlog.get_logger()

MEDIA_TYPES = {
    "pdf": "pdf",
    "application/pdf": "pdf",
    "docx": "docx",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "txt": "txt",
    "text/plain": "txt",
}


def resolve_media_type(media_type: str) -> str:
    """Map an extension or MIME type to 'pdf', 'docx' or 'txt'.

    Raises:
        UnsupportedFormatError: For anything else
    """
    key = (media_type or "").strip().lower().lstrip(".")
    try:
        return MEDIA_TYPES[key]
    except KeyError:
        raise UnsupportedFormatError(f"Unsupported file type: {media_type}") from None


class TextExtractor:
    """Extracts plain text from raw file bytes keyed by media type."""

    async def extract(self, data: bytes, media_type: str) -> str:
        kind = resolve_media_type(media_type)

        if kind == "pdf":
            text = self._extract_pdf(data)
        elif kind == "docx":
            text = self._extract_docx(data)
        else:
            text = data.decode("utf-8", errors="replace")

        logger.info("text_extracted", media_type=kind, size=len(data), text_length=len(text))
        return text

    def _extract_pdf(self, data: bytes) -> str:
        doc = fitz.open(stream=data, filetype="pdf")
        try:
            return "\n".join(page.get_text() or "" for page in doc)
        finally:
            doc.close()

    def _extract_docx(self, data: bytes) -> str:
        result = mammoth.extract_raw_text(io.BytesIO(data))
        return result.value
