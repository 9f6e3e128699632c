"""Data models for StudyDesk RAG."""
from .chunk import Chunk, ChunkMetadata, EmbeddingRecord, ScoredChunk, StorageStats
from .document import Document, ExtractedText, FileType, IngestionResult

__all__ = [
    "Chunk",
    "ChunkMetadata",
    "EmbeddingRecord",
    "ScoredChunk",
    "StorageStats",
    "Document",
    "ExtractedText",
    "FileType",
    "IngestionResult",
]
