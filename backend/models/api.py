"""Request and response schemas for the HTTP API."""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from config import RELEVANCE_THRESHOLD, TOP_K


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(min_length=1)
    use_documents: bool = True
    top_k: int = Field(default=TOP_K, ge=1, le=20)


class SearchRequest(BaseModel):
    query: str
    top_k: int = Field(default=TOP_K, ge=1, le=50)
    threshold: float = Field(default=RELEVANCE_THRESHOLD, ge=-1.0, le=1.0)


class SearchResult(BaseModel):
    chunk_id: str
    document_id: str
    content: str
    source: str
    page: Optional[int] = None
    chunk_index: int
    relevance_score: float
    match_type: str


class SearchResponse(BaseModel):
    query: str
    results: List[SearchResult]


class DocumentSummary(BaseModel):
    id: str
    name: str
    type: str
    chunk_count: int
    total_pages: Optional[int] = None
    created_at: datetime


class UploadResult(BaseModel):
    filename: str
    success: bool
    document: Optional[DocumentSummary] = None
    error: Optional[str] = None


class UploadResponse(BaseModel):
    results: List[UploadResult]


class StorageStatsResponse(BaseModel):
    document_count: int
    chunk_count: int
    total_size: str
