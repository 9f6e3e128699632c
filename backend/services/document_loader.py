"""Document loading service for PDF, DOCX and plain-text uploads."""
import io
import logging
import re
from functools import lru_cache
from pathlib import PurePath
from typing import Optional

import docx

from config import MAX_UPLOAD_SIZE
from models.document import ExtractedText, FileType

logger = logging.getLogger(__name__)

MIME_TYPES = {
    "application/pdf": FileType.PDF,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": FileType.DOCX,
    "text/plain": FileType.TXT,
}

EXTENSIONS = {
    ".pdf": FileType.PDF,
    ".docx": FileType.DOCX,
    ".txt": FileType.TXT,
}

PAGE_ERROR_PLACEHOLDER = "[Error extracting text from this page]"


class DocumentProcessingError(Exception):
    """Base error for a single uploaded file that could not be processed."""

    def __init__(self, message: str, filename: Optional[str] = None):
        self.filename = filename
        super().__init__(message)


class UnsupportedFormatError(DocumentProcessingError):
    """File type could not be determined from MIME type or extension."""


class OversizeFileError(DocumentProcessingError):
    """File exceeds the upload size limit."""


class NoTextContentError(DocumentProcessingError):
    """Extraction ran but produced no usable text."""


class ExtractionError(DocumentProcessingError):
    """The document could not be read at all."""


@lru_cache(maxsize=1)
def get_pdf_engine():
    """
    Load the PDF parsing engine once per process.

    Returns:
        The PyMuPDF module
    """
    import fitz  # PyMuPDF

    logger.info(f"PDF engine initialized: PyMuPDF {getattr(fitz, 'VersionBind', 'unknown')}")
    return fitz


class DocumentLoader:
    """Validates uploads and extracts plain text from them."""

    def __init__(self, max_upload_size: int = MAX_UPLOAD_SIZE):
        """
        Initialize DocumentLoader.

        Args:
            max_upload_size: Largest accepted file, in bytes
        """
        self.max_upload_size = max_upload_size

    def detect_file_type(self, filename: str, content_type: Optional[str] = None) -> FileType:
        """
        Determine the file format from the declared MIME type, then the extension.

        Raises:
            UnsupportedFormatError: If neither identifies a supported format
        """
        if content_type:
            mime = content_type.split(";")[0].strip().lower()
            if mime in MIME_TYPES:
                return MIME_TYPES[mime]

        extension = PurePath(filename or "").suffix.lower()
        if extension in EXTENSIONS:
            return EXTENSIONS[extension]

        raise UnsupportedFormatError(
            f"Unsupported file type: {content_type or extension or 'unknown'}. "
            "Supported formats: PDF, DOCX, TXT",
            filename=filename
        )

    def validate_file(self, filename: str, size: int, content_type: Optional[str] = None) -> FileType:
        """
        Check size and format before any processing starts.

        Returns:
            Detected file type

        Raises:
            OversizeFileError: If the file is larger than the upload limit
            UnsupportedFormatError: If the format is not supported
        """
        if size > self.max_upload_size:
            limit_mb = self.max_upload_size // (1024 * 1024)
            raise OversizeFileError(f"File size must be less than {limit_mb}MB", filename=filename)

        return self.detect_file_type(filename, content_type)

    def extract_text(self, data: bytes, filename: str, content_type: Optional[str] = None) -> ExtractedText:
        """
        Extract plain text from raw file bytes.

        Args:
            data: File contents
            filename: Original file name (used for type detection and messages)
            content_type: Declared MIME type, if any

        Returns:
            ExtractedText with the text, detected type and page count for PDFs

        Raises:
            UnsupportedFormatError: If the format is not supported
            NoTextContentError: If no text could be extracted
            ExtractionError: If the file could not be read
        """
        file_type = self.detect_file_type(filename, content_type)

        if file_type == FileType.PDF:
            text, total_pages = self._extract_pdf(data, filename)
        elif file_type == FileType.DOCX:
            text, total_pages = self._extract_docx(data, filename), None
        else:
            text, total_pages = data.decode("utf-8", errors="replace"), None

        if not text.strip():
            raise NoTextContentError(
                f"No text content found in {filename}. "
                "It may be a scanned document or an image-only file.",
                filename=filename
            )

        logger.info(f"Extracted {len(text)} characters from {filename} ({file_type.value})")
        return ExtractedText(text=text, file_type=file_type, total_pages=total_pages)

    def _extract_pdf(self, data: bytes, filename: str):
        """
        Extract text page-by-page, marking each page with [Page i].

        A page that fails is replaced by a placeholder and the rest of the
        document is still processed.
        """
        fitz = get_pdf_engine()

        try:
            pdf_document = fitz.open(stream=data, filetype="pdf")
        except Exception as e:
            logger.error(f"Failed to open PDF {filename}: {str(e)}")
            raise ExtractionError(f"Invalid PDF file {filename}: {str(e)}", filename=filename) from e

        parts = []
        try:
            total_pages = len(pdf_document)
            for page_num in range(total_pages):
                try:
                    page_text = pdf_document[page_num].get_text()
                    page_text = re.sub(r"\s+", " ", page_text).strip()
                except Exception as e:
                    logger.warning(f"Failed to extract text from page {page_num + 1} of {filename}: {str(e)}")
                    parts.append(f"\n[Page {page_num + 1}]\n{PAGE_ERROR_PLACEHOLDER}\n")
                    continue

                if page_text:
                    parts.append(f"\n[Page {page_num + 1}]\n{page_text}\n")
        finally:
            pdf_document.close()

        logger.debug(f"Processed {total_pages} pages from {filename}")
        return "".join(parts), total_pages

    def _extract_docx(self, data: bytes, filename: str) -> str:
        """Extract raw text from a DOCX body: paragraphs, then table rows."""
        try:
            document = docx.Document(io.BytesIO(data))
        except Exception as e:
            logger.error(f"Failed to open DOCX {filename}: {str(e)}")
            raise ExtractionError(f"Invalid DOCX file {filename}: {str(e)}", filename=filename) from e

        text_parts = [paragraph.text for paragraph in document.paragraphs]

        for table in document.tables:
            for row in table.rows:
                row_text = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if row_text:
                    text_parts.append(" | ".join(row_text))

        return "\n".join(text_parts)
