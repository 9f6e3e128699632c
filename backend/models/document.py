"""Document data models."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from .chunk import Chunk


class FileType(str, Enum):
    """Supported upload formats."""
    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"


@dataclass
class ExtractedText:
    """Plain text pulled out of an uploaded file."""
    text: str
    file_type: FileType
    total_pages: Optional[int] = None


@dataclass
class Document:
    """Represents a processed document owned by the corpus."""
    document_id: str
    name: str
    file_type: FileType
    chunks: List[Chunk]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    total_pages: Optional[int] = None

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)


@dataclass
class IngestionResult:
    """Outcome of ingesting one file from a batch."""
    filename: str
    document: Optional[Document] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.document is not None and self.error is None
