"""Chunking engine splitting text on sentence boundaries with word overlap."""
import logging
import re
import uuid
from typing import List, Optional

from models.chunk import Chunk, ChunkMetadata
from models.document import FileType
from config import CHUNK_SIZE, CHUNK_OVERLAP, MIN_CHUNK_LENGTH

logger = logging.getLogger(__name__)

SENTENCE_BOUNDARY = re.compile(r"[.!?]+")
PAGE_MARKER = re.compile(r"\[Page (\d+)\]")


class ChunkingEngine:
    """Segments document text into retrievable, overlapping chunks."""

    def __init__(self, chunk_size: int = CHUNK_SIZE, chunk_overlap: int = CHUNK_OVERLAP):
        """
        Initialize ChunkingEngine.

        Args:
            chunk_size: Maximum chunk size in characters
            chunk_overlap: Target overlap between chunks in characters
        """
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def chunk_text(self, text: str) -> List[str]:
        """
        Split text into chunks of at most chunk_size characters (plus a closing period).

        Sentences are accumulated greedily. When the next sentence would overflow,
        the current buffer is closed and the next one is seeded with the last few
        words of the closed chunk. A sentence longer than chunk_size is kept whole.

        Args:
            text: Text to chunk

        Returns:
            List of chunk strings in document order
        """
        sentences = [s.strip() for s in SENTENCE_BOUNDARY.split(text)]
        sentences = [s for s in sentences if s]

        chunks = []
        current_chunk = ""

        for sentence in sentences:
            proposed_chunk = f"{current_chunk}. {sentence}" if current_chunk else sentence

            if len(proposed_chunk) <= self.chunk_size:
                current_chunk = proposed_chunk
            elif current_chunk:
                chunks.append(current_chunk + ".")
                current_chunk = self._seed_next_chunk(current_chunk, sentence)
            else:
                # Very long sentence
                current_chunk = sentence

        if current_chunk:
            chunks.append(current_chunk + ".")

        return [c for c in chunks if len(c.strip()) > MIN_CHUNK_LENGTH]

    def _seed_next_chunk(self, closed_chunk: str, sentence: str) -> str:
        """Start a new buffer with the tail words of the closed chunk, then the sentence."""
        words = closed_chunk.split(" ")
        overlap_count = int(min(self.chunk_overlap / 5, len(words) / 2))

        if overlap_count > 0:
            seeded = " ".join(words[-overlap_count:]) + ". " + sentence
            if len(seeded) <= self.chunk_size:
                return seeded

        return sentence

    def chunk_document(
        self,
        document_id: str,
        text: str,
        source: str,
        file_type: FileType
    ) -> List[Chunk]:
        """
        Chunk a document's text into Chunk records.

        Args:
            document_id: Owning document id
            text: Extracted document text
            source: Display name of the source file
            file_type: Format of the source file

        Returns:
            List of Chunk objects without embeddings, in document order
        """
        chunk_texts = self.chunk_text(text)

        chunks = []
        current_page: Optional[int] = None

        for index, chunk_text in enumerate(chunk_texts):
            page = None
            if file_type == FileType.PDF:
                page, current_page = self._resolve_page(chunk_text, current_page)

            chunks.append(Chunk(
                chunk_id=uuid.uuid4().hex,
                document_id=document_id,
                text=chunk_text,
                metadata=ChunkMetadata(
                    source=source,
                    chunk_index=index,
                    file_type=file_type.value,
                    page=page
                )
            ))

        logger.info(f"Created {len(chunks)} chunks from {source}")
        return chunks

    @staticmethod
    def _resolve_page(chunk_text: str, current_page: Optional[int]):
        """
        Work out the page a chunk starts on from [Page i] markers.

        Returns:
            Tuple of (page for this chunk, page in effect after this chunk)
        """
        pages = [int(p) for p in PAGE_MARKER.findall(chunk_text)]

        leading = PAGE_MARKER.match(chunk_text.lstrip())
        if leading:
            page = int(leading.group(1))
        elif current_page is not None:
            page = current_page
        else:
            page = pages[0] if pages else None

        if pages:
            current_page = pages[-1]

        return page, current_page
