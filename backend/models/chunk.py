"""Chunk data models."""
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class ChunkMetadata:
    """Source information carried by every chunk for citation."""
    source: str  # display name of the uploaded file
    chunk_index: int
    file_type: str
    page: Optional[int] = None


@dataclass
class Chunk:
    """Represents a document chunk for retrieval."""
    chunk_id: str
    document_id: str
    text: str
    metadata: ChunkMetadata
    embedding: Optional[List[float]] = None


@dataclass
class EmbeddingRecord:
    """Lightweight projection of a chunk, keyed by chunk_id, used during search."""
    chunk_id: str
    document_id: str
    embedding: List[float]
    text: str
    metadata: ChunkMetadata

    def to_chunk(self) -> Chunk:
        return Chunk(
            chunk_id=self.chunk_id,
            document_id=self.document_id,
            text=self.text,
            metadata=self.metadata,
            embedding=self.embedding
        )


@dataclass
class ScoredChunk:
    """Chunk with relevance score from retrieval."""
    chunk: Chunk
    relevance_score: float
    match_type: str = "semantic"  # "semantic" or "lexical"


@dataclass
class StorageStats:
    """Summary of the local corpus."""
    document_count: int
    chunk_count: int
    approximate_size: str
