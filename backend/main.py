"""Main entry point for StudyDesk RAG API."""
import logging
import time
from typing import Dict, List

import tiktoken
from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from config import CORS_ORIGINS, LOG_FORMAT, LOG_LEVEL, PORT
from logger import setup_logging
from models.api import (
    ChatRequest,
    DocumentSummary,
    SearchRequest,
    SearchResponse,
    SearchResult,
    StorageStatsResponse,
    UploadResponse,
    UploadResult,
)
from models.chunk import ScoredChunk
from models.document import Document, IngestionResult
from services.chunking_engine import ChunkingEngine
from services.corpus_store import CorpusStore, StorageError, get_corpus_store
from services.document_loader import DocumentLoader, DocumentProcessingError
from services.embedding_model import EmbeddingModel
from services.ingestion_service import DocumentIngestionService
from services.llm_client import LLMClient
from services.retrieval_engine import RetrievalEngine

if LOG_FORMAT == "json":
    setup_logging(LOG_LEVEL)

# Initialize logging
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="StudyDesk RAG",
    description="Document-grounded retrieval and chat relay for study assistants",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize services (will be done on startup)
corpus_store: CorpusStore = None
ingestion_service: DocumentIngestionService = None
retrieval_engine: RetrievalEngine = None
llm_client: LLMClient = None
tiktoken_encoder = None


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global corpus_store, ingestion_service, retrieval_engine, llm_client, tiktoken_encoder

    logger.info("Initializing StudyDesk RAG services...")

    try:
        tiktoken_encoder = tiktoken.get_encoding("cl100k_base")
        logger.info("Initialized tiktoken encoder (cl100k_base)")

        corpus_store = get_corpus_store()
        corpus_store.initialize()

        embedding_model = EmbeddingModel()
        ingestion_service = DocumentIngestionService(
            document_loader=DocumentLoader(),
            chunking_engine=ChunkingEngine(),
            embedding_model=embedding_model,
            corpus_store=corpus_store
        )
        logger.info("Initialized DocumentIngestionService")

        retrieval_engine = RetrievalEngine(corpus_store, embedding_model)

        llm_client = LLMClient(encoder=tiktoken_encoder)

        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise


def _document_summary(document: Document) -> DocumentSummary:
    return DocumentSummary(
        id=document.document_id,
        name=document.name,
        type=document.file_type.value,
        chunk_count=document.chunk_count,
        total_pages=document.total_pages,
        created_at=document.created_at
    )


def _search_result(scored: ScoredChunk) -> SearchResult:
    chunk = scored.chunk
    return SearchResult(
        chunk_id=chunk.chunk_id,
        document_id=chunk.document_id,
        content=chunk.text,
        source=chunk.metadata.source,
        page=chunk.metadata.page,
        chunk_index=chunk.metadata.chunk_index,
        relevance_score=scored.relevance_score,
        match_type=scored.match_type
    )


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "StudyDesk RAG API"}


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "service": "studydesk-rag",
        "version": "1.0.0"
    }


@app.post("/documents", response_model=UploadResponse)
async def upload_documents(files: List[UploadFile] = File(...)) -> UploadResponse:
    """
    Upload one or more study documents.

    Each file is validated, extracted, chunked, embedded and stored on its
    own; a failing file is reported in its result and does not stop the rest.
    Files whose declared size or type is unacceptable are rejected unread.
    """
    uploads = []
    rejected: Dict[int, IngestionResult] = {}

    for index, upload in enumerate(files):
        filename = upload.filename or "untitled"
        if upload.size is not None:
            try:
                ingestion_service.document_loader.validate_file(filename, upload.size, upload.content_type)
            except DocumentProcessingError as e:
                logger.warning(f"Rejected {filename}: {str(e)}")
                rejected[index] = IngestionResult(filename=filename, error=str(e))
                continue

        data = await upload.read()
        uploads.append((filename, data, upload.content_type))

    logger.info(f"Received {len(files)} files for ingestion, {len(rejected)} rejected before reading")
    ingested = iter(await ingestion_service.ingest_many(uploads))
    results = [rejected[i] if i in rejected else next(ingested) for i in range(len(files))]

    return UploadResponse(results=[
        UploadResult(
            filename=result.filename,
            success=result.success,
            document=_document_summary(result.document) if result.document else None,
            error=result.error
        )
        for result in results
    ])


@app.get("/documents", response_model=List[DocumentSummary])
async def list_documents() -> List[DocumentSummary]:
    """List stored documents, most recent first."""
    try:
        documents = corpus_store.list_documents()
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return [_document_summary(document) for document in documents]


@app.get("/documents/stats", response_model=StorageStatsResponse)
async def storage_stats() -> StorageStatsResponse:
    """Document and chunk counts for the local corpus."""
    try:
        stats = corpus_store.stats()
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return StorageStatsResponse(
        document_count=stats.document_count,
        chunk_count=stats.chunk_count,
        total_size=stats.approximate_size
    )


@app.delete("/documents/{document_id}")
async def delete_document(document_id: str):
    """Delete a document and all of its embedding records."""
    try:
        deleted = corpus_store.delete_document(document_id)
    except StorageError as e:
        raise HTTPException(status_code=500, detail="Failed to delete document") from e

    if not deleted:
        raise HTTPException(status_code=404, detail=f"Document {document_id} not found")
    return {"status": "deleted", "id": document_id}


@app.delete("/documents")
async def clear_documents():
    """Remove every stored document."""
    try:
        corpus_store.clear()
    except StorageError as e:
        raise HTTPException(status_code=500, detail="Failed to clear documents") from e
    return {"status": "cleared"}


@app.post("/search", response_model=SearchResponse)
async def search(request: SearchRequest) -> SearchResponse:
    """Return the chunks most relevant to a query."""
    if not request.query or not request.query.strip():
        raise HTTPException(status_code=400, detail="Query field is required and cannot be empty")

    results = await retrieval_engine.retrieve(
        request.query,
        top_k=request.top_k,
        threshold=request.threshold
    )
    return SearchResponse(query=request.query, results=[_search_result(r) for r in results])


@app.post("/chat")
async def chat_endpoint(request: ChatRequest):
    """
    Streaming chat relay.

    When use_documents is set and the corpus is not empty, the chunks most
    relevant to the latest user message are injected as a system message.
    The upstream Server-Sent Events stream is relayed unmodified.
    """
    start_time = time.time()
    messages = [message.model_dump() for message in request.messages]

    retrieved_chunks: List[ScoredChunk] = []
    if request.use_documents:
        last_user_message = next(
            (m.content for m in reversed(request.messages) if m.role == "user"),
            None
        )
        if last_user_message:
            try:
                if corpus_store.stats().document_count > 0:
                    retrieved_chunks = await retrieval_engine.retrieve(last_user_message, top_k=request.top_k)
            except Exception as e:
                logger.warning(f"RAG search failed, continuing without context: {e}")

    contextual_messages = LLMClient.build_messages(messages, retrieved_chunks)

    prompt_tokens = llm_client.count_tokens(contextual_messages)
    retrieval_ms = int((time.time() - start_time) * 1000)
    logger.info(
        f"Relaying chat: {len(contextual_messages)} messages, ~{prompt_tokens} prompt tokens, "
        f"{len(retrieved_chunks)} chunks retrieved in {retrieval_ms}ms"
    )

    return StreamingResponse(
        llm_client.stream_chat(contextual_messages),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"  # Disable buffering in nginx
        }
    )


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting StudyDesk RAG API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
