"""Document text layer: PDF text, image OCR and spreadsheet flattening.

Production-grade implementation with:
- pdfplumber for PDFs with a text layer, Tesseract for scanned pages
- Tesseract for JPEG/PNG images
- openpyxl for spreadsheets, flattened row by row
- Type-safe results using Pydantic

Based on:
- pytesseract: https://github.com/madmaze/pytesseract
- pdfplumber: https://github.com/jsvine/pdfplumber
"""

import io
import logging
import os

import openpyxl
import pdfplumber
import pytesseract
from PIL import Image
from pydantic import BaseModel

from services.shared.config import Settings
from services.shared.media import IMAGE_TYPES, PDF, SPREADSHEET_TYPES

logger = logging.getLogger(__name__)


class OCRResult(BaseModel):
    """Result of text extraction.

    Attributes:
        text: Extracted text content
        success: Whether operation succeeded
        error: Error message if operation failed
    """

    text: str
    success: bool
    error: str | None = None


class OCRService:
    """Extracts plain text from any accepted invoice document."""

    def __init__(self, settings: Settings) -> None:
        """Initialize OCR service.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self._configure_tesseract()

    def _configure_tesseract(self) -> None:
        """Configure Tesseract command path from environment.

        Allows overriding default Tesseract path via TESSERACT_CMD environment variable.
        """
        tesseract_cmd = os.getenv("TESSERACT_CMD")
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def extract_text(self, file_bytes: bytes, mime_type: str) -> OCRResult:
        """Extract text from a document.

        Args:
            file_bytes: Raw document content
            mime_type: Document media type

        Returns:
            OCRResult with extracted text or error information
        """
        if not file_bytes:
            return OCRResult(text="", success=False, error="Empty document")

        try:
            if mime_type == PDF:
                text = self._pdf_text(file_bytes)
            elif mime_type in IMAGE_TYPES:
                text = self._image_text(file_bytes)
            elif mime_type in SPREADSHEET_TYPES:
                text = self._spreadsheet_text(file_bytes)
            else:
                return OCRResult(
                    text="", success=False, error=f"Unsupported media type: {mime_type}"
                )
            return OCRResult(text=text, success=True)

        except Exception as e:
            logger.warning(f"Text extraction failed for {mime_type}: {e}")
            return OCRResult(text="", success=False, error=f"OCR processing failed: {str(e)}")

    def _pdf_text(self, file_bytes: bytes) -> str:
        pages: list[str] = []
        with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
            for page in pdf.pages:
                page_text = page.extract_text()
                if page_text and page_text.strip():
                    pages.append(page_text)
                else:
                    # Scanned page without a text layer
                    image = page.to_image(resolution=300).original
                    pages.append(pytesseract.image_to_string(image))
        return "\n".join(pages)

    def _image_text(self, file_bytes: bytes) -> str:
        image = Image.open(io.BytesIO(file_bytes))
        text: str = pytesseract.image_to_string(image)
        return text

    def _spreadsheet_text(self, file_bytes: bytes) -> str:
        workbook = openpyxl.load_workbook(io.BytesIO(file_bytes), data_only=True, read_only=True)
        lines: list[str] = []
        try:
            for sheet in workbook.worksheets:
                for row in sheet.iter_rows(values_only=True):
                    cells = [str(cell) for cell in row if cell is not None and str(cell).strip()]
                    if cells:
                        lines.append(" ".join(cells))
        finally:
            workbook.close()
        return "\n".join(lines)
