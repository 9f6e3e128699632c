"""Schemas for records persisted in the local corpus.

Stored rows are parsed through these models instead of being trusted as-is,
so a row written by an older build (or damaged on disk) is rejected with a
validation error rather than surfacing as a half-typed object.
"""
from datetime import datetime, timezone
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, Field, field_validator

from config import EMBEDDING_DIMENSIONS
from .chunk import Chunk, ChunkMetadata, EmbeddingRecord
from .document import Document, FileType


def _check_dimensions(value: List[float]) -> List[float]:
    if len(value) != EMBEDDING_DIMENSIONS:
        raise ValueError(
            f"embedding must have {EMBEDDING_DIMENSIONS} dimensions, got {len(value)}"
        )
    return value


EmbeddingVector = Annotated[List[float], AfterValidator(_check_dimensions)]


class StoredChunkMetadata(BaseModel):
    source: str
    chunk_index: int = Field(ge=0)
    file_type: FileType
    page: Optional[int] = None

    @classmethod
    def from_metadata(cls, metadata: ChunkMetadata) -> "StoredChunkMetadata":
        return cls(
            source=metadata.source,
            chunk_index=metadata.chunk_index,
            file_type=metadata.file_type,
            page=metadata.page
        )

    def to_metadata(self) -> ChunkMetadata:
        return ChunkMetadata(
            source=self.source,
            chunk_index=self.chunk_index,
            file_type=self.file_type.value,
            page=self.page
        )


class StoredChunk(BaseModel):
    chunk_id: str = Field(min_length=1)
    document_id: str = Field(min_length=1)
    text: str = Field(min_length=1)
    metadata: StoredChunkMetadata
    embedding: Optional[EmbeddingVector] = None


class StoredDocument(BaseModel):
    """Full document row, chunks embedded inline."""
    document_id: str = Field(min_length=1)
    name: str
    file_type: FileType
    chunks: List[StoredChunk]
    created_at: datetime
    total_pages: Optional[int] = None

    @field_validator("created_at")
    @classmethod
    def _ensure_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_document(cls, document: Document) -> "StoredDocument":
        return cls(
            document_id=document.document_id,
            name=document.name,
            file_type=document.file_type,
            chunks=[
                StoredChunk(
                    chunk_id=chunk.chunk_id,
                    document_id=chunk.document_id,
                    text=chunk.text,
                    metadata=StoredChunkMetadata.from_metadata(chunk.metadata),
                    embedding=chunk.embedding
                )
                for chunk in document.chunks
            ],
            created_at=document.created_at,
            total_pages=document.total_pages
        )

    def to_document(self) -> Document:
        return Document(
            document_id=self.document_id,
            name=self.name,
            file_type=self.file_type,
            chunks=[
                Chunk(
                    chunk_id=chunk.chunk_id,
                    document_id=chunk.document_id,
                    text=chunk.text,
                    metadata=chunk.metadata.to_metadata(),
                    embedding=chunk.embedding
                )
                for chunk in self.chunks
            ],
            created_at=self.created_at,
            total_pages=self.total_pages
        )


class StoredEmbedding(BaseModel):
    """Embedding row keyed by chunk id; the embedding is mandatory here."""
    document_id: str = Field(min_length=1)
    embedding: EmbeddingVector
    text: str = Field(min_length=1)
    metadata: StoredChunkMetadata

    @classmethod
    def from_record(cls, record: EmbeddingRecord) -> "StoredEmbedding":
        return cls(
            document_id=record.document_id,
            embedding=record.embedding,
            text=record.text,
            metadata=StoredChunkMetadata.from_metadata(record.metadata)
        )

    def to_record(self, chunk_id: str) -> EmbeddingRecord:
        return EmbeddingRecord(
            chunk_id=chunk_id,
            document_id=self.document_id,
            embedding=self.embedding,
            text=self.text,
            metadata=self.metadata.to_metadata()
        )
