"""Services for StudyDesk RAG."""
from .document_loader import (
    DocumentLoader,
    DocumentProcessingError,
    UnsupportedFormatError,
    OversizeFileError,
    NoTextContentError,
    ExtractionError,
)
from .chunking_engine import ChunkingEngine
from .embedding_model import EmbeddingModel, fallback_embedding
from .corpus_store import CorpusStore, StorageError, CorruptRecordError, get_corpus_store
from .retrieval_engine import RetrievalEngine, cosine_similarity
from .ingestion_service import DocumentIngestionService
from .llm_client import LLMClient, LLMError

__all__ = ['DocumentLoader', 'DocumentProcessingError', 'UnsupportedFormatError', 'OversizeFileError', 'NoTextContentError', 'ExtractionError', 'ChunkingEngine', 'EmbeddingModel', 'fallback_embedding', 'CorpusStore', 'StorageError', 'CorruptRecordError', 'get_corpus_store', 'RetrievalEngine', 'cosine_similarity', 'DocumentIngestionService', 'LLMClient', 'LLMError']
