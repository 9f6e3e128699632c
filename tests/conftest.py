"""Shared fixtures for the StudyDesk RAG test suite."""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest

from config import EMBEDDING_DIMENSIONS
from models.chunk import Chunk, ChunkMetadata
from models.document import Document, FileType
from services.corpus_store import CorpusStore
from services.embedding_model import fallback_embedding


def axis_vector(x: float, y: float = 0.0) -> List[float]:
    """3072-dim vector with only the first two components set."""
    vector = [0.0] * EMBEDDING_DIMENSIONS
    vector[0] = x
    vector[1] = y
    return vector


def make_document(
    texts: List[str],
    name: str = "notes.txt",
    document_id: Optional[str] = None,
    embeddings: Optional[List[List[float]]] = None,
    created_at: Optional[datetime] = None,
    file_type: FileType = FileType.TXT
) -> Document:
    """Build an embedded document; embeddings default to fallback vectors of each text."""
    document_id = document_id or f"doc-{name}"
    chunks = []
    for index, text in enumerate(texts):
        embedding = embeddings[index] if embeddings is not None else fallback_embedding(text)
        chunks.append(Chunk(
            chunk_id=f"{document_id}-chunk-{index}",
            document_id=document_id,
            text=text,
            metadata=ChunkMetadata(source=name, chunk_index=index, file_type=file_type.value),
            embedding=embedding
        ))
    return Document(
        document_id=document_id,
        name=name,
        file_type=file_type,
        chunks=chunks,
        created_at=created_at or datetime.now(timezone.utc)
    )


@pytest.fixture
def corpus_store(tmp_path) -> CorpusStore:
    """Corpus store backed by a temporary SQLite file."""
    return CorpusStore(str(tmp_path / "corpus.db"))


@pytest.fixture
def timestamps():
    """Three increasing creation timestamps."""
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return [base, base + timedelta(hours=1), base + timedelta(hours=2)]
