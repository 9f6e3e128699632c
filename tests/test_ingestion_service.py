"""Tests for DocumentIngestionService."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from unittest.mock import AsyncMock, patch

from models.document import FileType
from services.chunking_engine import ChunkingEngine
from services.corpus_store import StorageError
from services.document_loader import (
    DocumentLoader,
    ExtractionError,
    NoTextContentError,
    OversizeFileError,
    UnsupportedFormatError,
)
from services.embedding_model import EmbeddingModel
from services.ingestion_service import DocumentIngestionService
from services.retrieval_engine import RetrievalEngine
from test_document_loader import build_pdf

NOTES = (
    "The mitochondria is the powerhouse of the cell. "
    "It produces ATP through cellular respiration. "
    "Ribosomes assemble proteins from amino acids."
)


@pytest.fixture
def embedding_model():
    return EmbeddingModel(api_key=None)


@pytest.fixture
def service(corpus_store, embedding_model):
    return DocumentIngestionService(
        document_loader=DocumentLoader(max_upload_size=1024 * 1024),
        chunking_engine=ChunkingEngine(chunk_size=200, chunk_overlap=100),
        embedding_model=embedding_model,
        corpus_store=corpus_store
    )


class TestProcessDocument:
    """Validation, extraction and chunking without persistence."""

    def test_text_file(self, service, corpus_store):
        document = service.process_document(NOTES.encode("utf-8"), "biology.txt", "text/plain")

        assert document.name == "biology.txt"
        assert document.file_type == FileType.TXT
        assert document.chunk_count >= 1
        assert all(c.document_id == document.document_id for c in document.chunks)
        assert all(c.embedding is None for c in document.chunks)
        assert corpus_store.stats().document_count == 0

    def test_fresh_ids(self, service):
        first = service.process_document(NOTES.encode("utf-8"), "a.txt")
        second = service.process_document(NOTES.encode("utf-8"), "a.txt")

        assert first.document_id != second.document_id

    def test_too_little_text(self, service):
        with pytest.raises(NoTextContentError, match="not contain enough text"):
            service.process_document(b"Hi. Ok.", "tiny.txt")

    def test_unexpected_extraction_failure_is_wrapped(self, service):
        with patch.object(service.document_loader, "extract_text", side_effect=MemoryError("boom")):
            with pytest.raises(ExtractionError, match="Failed to process notes.txt"):
                service.process_document(NOTES.encode("utf-8"), "notes.txt")


class TestIngest:
    """End-to-end ingestion into the corpus."""

    @pytest.mark.asyncio
    async def test_ingest_pdf_and_search(self, service, corpus_store, embedding_model):
        """A three-page PDF is chunked with page numbers and becomes searchable."""
        pages = [
            [f"Page {n} covers topic {n}, sentence {k}." for k in range(1, 6)]
            for n in range(1, 4)
        ]
        data = build_pdf(pages)

        document = await service.ingest(data, "lecture.pdf", "application/pdf")

        assert document.total_pages == 3
        assert document.chunk_count >= 3
        assert all(len(c.embedding) == 3072 for c in document.chunks)
        assert [c.metadata.page for c in document.chunks][0] == 1
        assert {c.metadata.page for c in document.chunks} == {1, 2, 3}

        listed = corpus_store.list_documents()
        assert [d.document_id for d in listed] == [document.document_id]
        assert corpus_store.stats().chunk_count == document.chunk_count

        engine = RetrievalEngine(corpus_store, embedding_model)
        results = await engine.retrieve("Page 2 covers topic 2", top_k=3)
        assert len(results) >= 1
        assert all(r.chunk.metadata.source == "lecture.pdf" for r in results)

    @pytest.mark.asyncio
    async def test_ingest_stores_embeddings(self, service, corpus_store):
        document = await service.ingest(NOTES.encode("utf-8"), "biology.txt")

        stored = corpus_store.get_document(document.document_id)
        assert stored.chunk_count == document.chunk_count
        assert all(c.embedding is not None for c in stored.chunks)

    @pytest.mark.asyncio
    async def test_ingest_rejects_unsupported(self, service, corpus_store):
        with pytest.raises(UnsupportedFormatError):
            await service.ingest(b"binary", "photo.png", "image/png")

        assert corpus_store.stats().document_count == 0


class TestIngestMany:
    """Per-file failure isolation."""

    @pytest.mark.asyncio
    async def test_bad_file_does_not_block_others(self, service, corpus_store):
        oversize = b"x" * (1024 * 1024 + 1)
        files = [
            ("good.txt", NOTES.encode("utf-8"), "text/plain"),
            ("huge.txt", oversize, "text/plain"),
            ("slides.pptx", b"pptx", "application/vnd.ms-powerpoint"),
            ("also_good.txt", NOTES.encode("utf-8"), None),
        ]

        results = await service.ingest_many(files)

        assert [r.filename for r in results] == ["good.txt", "huge.txt", "slides.pptx", "also_good.txt"]
        assert [r.success for r in results] == [True, False, False, True]
        assert "less than 1MB" in results[1].error
        assert "Unsupported file type" in results[2].error
        assert corpus_store.stats().document_count == 2

    @pytest.mark.asyncio
    async def test_storage_failure_is_reported(self, service):
        with patch.object(service.corpus_store, "put_document", side_effect=StorageError("disk full")):
            results = await service.ingest_many([("notes.txt", NOTES.encode("utf-8"), "text/plain")])

        assert results[0].success is False
        assert "disk full" in results[0].error

    @pytest.mark.asyncio
    async def test_empty_batch(self, service):
        assert await service.ingest_many([]) == []

    @pytest.mark.asyncio
    async def test_embeddings_batched_per_document(self, service):
        with patch.object(
            service.embedding_model,
            "embed_batch",
            new=AsyncMock(side_effect=lambda texts: [[0.1] * 3072 for _ in texts])
        ) as mock_embed:
            document = await service.ingest(NOTES.encode("utf-8"), "notes.txt")

        mock_embed.assert_awaited_once()
        assert mock_embed.await_args.args[0] == [c.text for c in document.chunks]


class TestOversizeBoundary:
    """Upload size limit is checked before extraction."""

    def test_oversize_never_extracted(self, service):
        with patch.object(service.document_loader, "extract_text") as mock_extract:
            with pytest.raises(OversizeFileError):
                service.process_document(b"x" * (1024 * 1024 + 1), "huge.txt")

        mock_extract.assert_not_called()
