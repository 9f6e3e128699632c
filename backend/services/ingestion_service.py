"""Document ingestion: extract, chunk, embed and persist uploaded files."""
import logging
import time
import uuid
from dataclasses import replace
from typing import Iterable, List, Optional, Tuple

from models.document import Document, IngestionResult
from services.chunking_engine import ChunkingEngine
from services.corpus_store import CorpusStore
from services.document_loader import (
    DocumentLoader,
    DocumentProcessingError,
    ExtractionError,
    NoTextContentError,
)
from services.embedding_model import EmbeddingModel

logger = logging.getLogger(__name__)

# (filename, raw bytes, declared MIME type)
UploadedFile = Tuple[str, bytes, Optional[str]]


class DocumentIngestionService:
    """Turn uploaded files into embedded, stored documents."""

    def __init__(
        self,
        document_loader: DocumentLoader,
        chunking_engine: ChunkingEngine,
        embedding_model: EmbeddingModel,
        corpus_store: CorpusStore
    ):
        self.document_loader = document_loader
        self.chunking_engine = chunking_engine
        self.embedding_model = embedding_model
        self.corpus_store = corpus_store

    def process_document(self, data: bytes, filename: str, content_type: Optional[str] = None) -> Document:
        """
        Validate, extract and chunk one file. Chunks are not embedded yet.

        Args:
            data: File contents
            filename: Original file name
            content_type: Declared MIME type, if any

        Returns:
            New Document with a fresh id

        Raises:
            DocumentProcessingError: If the file is rejected or yields no chunks
        """
        self.document_loader.validate_file(filename, len(data), content_type)

        try:
            extracted = self.document_loader.extract_text(data, filename, content_type)
        except DocumentProcessingError:
            raise
        except Exception as e:
            logger.error(f"Error processing document {filename}: {str(e)}", exc_info=True)
            raise ExtractionError(f"Failed to process {filename}: {str(e)}", filename=filename) from e

        document_id = uuid.uuid4().hex
        chunks = self.chunking_engine.chunk_document(
            document_id=document_id,
            text=extracted.text,
            source=filename,
            file_type=extracted.file_type
        )

        if not chunks:
            raise NoTextContentError(
                f"{filename} does not contain enough text to index",
                filename=filename
            )

        return Document(
            document_id=document_id,
            name=filename,
            file_type=extracted.file_type,
            chunks=chunks,
            total_pages=extracted.total_pages
        )

    async def store_document(self, document: Document) -> Document:
        """
        Embed every chunk of a processed document and persist it.

        Args:
            document: Output of process_document

        Returns:
            The stored document, chunks carrying embeddings

        Raises:
            StorageError: If persisting fails
        """
        logger.info(f"Generating embeddings for {len(document.chunks)} chunks of {document.name}")
        start_time = time.time()

        embeddings = await self.embedding_model.embed_batch([chunk.text for chunk in document.chunks])
        embedded = replace(
            document,
            chunks=[replace(chunk, embedding=embedding) for chunk, embedding in zip(document.chunks, embeddings)]
        )

        self.corpus_store.put_document(embedded)

        elapsed = time.time() - start_time
        logger.info(f"Document {document.name} embedded and stored in {elapsed:.1f}s")
        return embedded

    async def ingest(self, data: bytes, filename: str, content_type: Optional[str] = None) -> Document:
        """Process and store a single file."""
        document = self.process_document(data, filename, content_type)
        return await self.store_document(document)

    async def ingest_many(self, files: Iterable[UploadedFile]) -> List[IngestionResult]:
        """
        Ingest files one after another, isolating failures per file.

        Args:
            files: (filename, data, content_type) tuples

        Returns:
            One IngestionResult per file, in input order
        """
        results = []

        for filename, data, content_type in files:
            try:
                document = await self.ingest(data, filename, content_type)
                results.append(IngestionResult(filename=filename, document=document))
            except DocumentProcessingError as e:
                logger.warning(f"Rejected {filename}: {str(e)}")
                results.append(IngestionResult(filename=filename, error=str(e)))
            except Exception as e:
                # Skip the failed file and continue
                logger.error(f"Failed to ingest {filename}: {str(e)}", exc_info=True)
                results.append(IngestionResult(filename=filename, error=f"Failed to process {filename}: {str(e)}"))

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Ingested {succeeded}/{len(results)} files")
        return results
