"""
Document text extraction.

Turns an uploaded file into plain text for indexing. Text-like files are
read directly; PDFs need the optional `pdf` extra (pypdfium2). Image OCR is not
supported and is reported as an extraction failure.
"""

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Optional, Union

from utils.exceptions import ExtractionError

logger = logging.getLogger(__name__)

TEXT_MIME_TYPES = {
    "application/json",
    "application/x-yaml",
    "application/yaml",
    "application/xml",
}


def guess_mime_type(path: Union[str, Path]) -> str:
    """Best-effort MIME type from the file name."""
    mime, _ = mimetypes.guess_type(str(path))
    return mime or "application/octet-stream"


class TextExtractor:
    """
    Extract text from uploaded documents.

    Usage:
        text = await TextExtractor().extract_text("cert.pdf", "application/pdf")
    """

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    async def extract_text(self, path: Union[str, Path], mime_type: Optional[str] = None) -> str:
        """
        Extract text from a file.

        Raises:
            ExtractionError: Unsupported type, unreadable file or no text found.
        """
        path = Path(path)
        mime_type = mime_type or guess_mime_type(path)

        if not path.is_file():
            raise ExtractionError(f"File not found: {path}")

        if mime_type == "application/pdf":
            text = await asyncio.to_thread(self._extract_pdf, path)
        elif mime_type.startswith("text/") or mime_type in TEXT_MIME_TYPES:
            text = await asyncio.to_thread(self._extract_plain, path)
        else:
            raise ExtractionError(f"Unsupported file type: {mime_type}")

        if not text.strip():
            raise ExtractionError(f"No text could be extracted from {path.name}")

        logger.info(f"Extracted {len(text)} characters from {path.name} ({mime_type})")
        return text

    def _extract_plain(self, path: Path) -> str:
        try:
            return path.read_text(encoding=self.encoding)
        except (OSError, UnicodeDecodeError) as e:
            raise ExtractionError(f"Could not read {path.name}: {e}") from e

    def _extract_pdf(self, path: Path) -> str:
        try:
            import pypdfium2 as pdfium
        except ImportError:
            raise ImportError("pypdfium2 package required: pip install certeval[pdf]")

        try:
            pdf = pdfium.PdfDocument(str(path))
        except Exception as e:
            raise ExtractionError(f"Could not parse PDF {path.name}: {e}") from e

        pages = []
        try:
            for i in range(len(pdf)):
                text_page = pdf[i].get_textpage()
                try:
                    pages.append(text_page.get_text_range())
                finally:
                    text_page.close()
        except Exception as e:
            raise ExtractionError(f"Could not read text from PDF {path.name}: {e}") from e
        finally:
            pdf.close()
        return "\n".join(pages)
