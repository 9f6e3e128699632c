"""Integration tests for the HTTP API."""
import pytest
from fastapi.testclient import TestClient
from unittest.mock import MagicMock, Mock, patch
import sys
import os

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

NOTES = (
    "Photosynthesis converts light energy into chemical energy. "
    "It takes place in the chloroplasts of plant cells. "
    "Chlorophyll absorbs mostly blue and red light."
)

UPSTREAM_EVENTS = [
    b'data: {"choices":[{"delta":{"content":"Hello"}}]}\n\n',
    b"data: [DONE]\n\n",
]


@pytest.fixture
def client():
    """Create a test client wired to an in-memory corpus and a fake chat upstream."""
    # Import after path is set
    from main import app
    import main
    from services.chunking_engine import ChunkingEngine
    from services.corpus_store import CorpusStore
    from services.document_loader import DocumentLoader
    from services.embedding_model import EmbeddingModel
    from services.ingestion_service import DocumentIngestionService
    from services.retrieval_engine import RetrievalEngine

    # TestClient is not used as a context manager, so startup never runs
    client = TestClient(app)

    embedding_model = EmbeddingModel(api_key=None)
    main.corpus_store = CorpusStore(":memory:")
    main.ingestion_service = DocumentIngestionService(
        document_loader=DocumentLoader(max_upload_size=1024),
        chunking_engine=ChunkingEngine(),
        embedding_model=embedding_model,
        corpus_store=main.corpus_store
    )
    main.retrieval_engine = RetrievalEngine(main.corpus_store, embedding_model)

    async def fake_stream(messages):
        for event in UPSTREAM_EVENTS:
            yield event

    main.llm_client = Mock()
    main.llm_client.stream_chat = MagicMock(side_effect=fake_stream)
    main.llm_client.count_tokens.return_value = 12

    yield client


def _upload(client, *files):
    return client.post("/documents", files=[("files", f) for f in files])


class TestHealth:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestDocuments:
    """Upload, list, stats and delete."""

    def test_upload_and_list(self, client):
        response = _upload(client, ("biology.txt", NOTES.encode("utf-8"), "text/plain"))

        assert response.status_code == 200
        result = response.json()["results"][0]
        assert result["success"] is True
        assert result["document"]["name"] == "biology.txt"
        assert result["document"]["type"] == "txt"
        assert result["document"]["chunk_count"] == 1

        listed = client.get("/documents").json()
        assert [d["id"] for d in listed] == [result["document"]["id"]]

    def test_upload_isolates_failures(self, client):
        response = _upload(
            client,
            ("good.txt", NOTES.encode("utf-8"), "text/plain"),
            ("huge.txt", b"x" * 2048, "text/plain"),
            ("image.png", b"png", "image/png"),
        )

        assert response.status_code == 200
        results = response.json()["results"]
        assert [r["success"] for r in results] == [True, False, False]
        assert results[1]["document"] is None
        assert "File size must be less than" in results[1]["error"]
        assert "Unsupported file type" in results[2]["error"]

    def test_stats(self, client):
        _upload(client, ("biology.txt", NOTES.encode("utf-8"), "text/plain"))

        response = client.get("/documents/stats")

        assert response.status_code == 200
        assert response.json() == {"document_count": 1, "chunk_count": 1, "total_size": "~1KB"}

    def test_delete_document(self, client):
        uploaded = _upload(client, ("biology.txt", NOTES.encode("utf-8"), "text/plain")).json()
        document_id = uploaded["results"][0]["document"]["id"]

        response = client.delete(f"/documents/{document_id}")

        assert response.status_code == 200
        assert client.get("/documents").json() == []
        assert client.get("/documents/stats").json()["chunk_count"] == 0

    def test_delete_missing_document(self, client):
        response = client.delete("/documents/does-not-exist")
        assert response.status_code == 404

    def test_clear_documents(self, client):
        _upload(client, ("a.txt", NOTES.encode("utf-8"), "text/plain"))
        _upload(client, ("b.txt", NOTES.encode("utf-8"), "text/plain"))

        response = client.delete("/documents")

        assert response.status_code == 200
        assert client.get("/documents/stats").json()["document_count"] == 0

    def test_oversize_upload_rejected_before_ingestion(self, client):
        import main

        with patch.object(
            main.ingestion_service, "ingest_many", wraps=main.ingestion_service.ingest_many
        ) as ingest_many:
            response = _upload(
                client,
                ("huge.txt", b"x" * 2048, "text/plain"),
                ("good.txt", NOTES.encode("utf-8"), "text/plain"),
            )

        results = response.json()["results"]
        assert [r["filename"] for r in results] == ["huge.txt", "good.txt"]
        assert [r["success"] for r in results] == [False, True]
        assert "File size must be less than" in results[0]["error"]
        passed = ingest_many.await_args.args[0]
        assert [filename for filename, _, _ in passed] == ["good.txt"]

    def test_deleted_document_not_searchable(self, client):
        uploaded = _upload(client, ("biology.txt", NOTES.encode("utf-8"), "text/plain")).json()
        document_id = uploaded["results"][0]["document"]["id"]
        assert client.post("/search", json={"query": "photosynthesis"}).json()["results"]

        client.delete(f"/documents/{document_id}")

        results = client.post("/search", json={"query": "photosynthesis"}).json()["results"]
        assert all(r["document_id"] != document_id for r in results)

    def test_clear_then_search_is_empty(self, client):
        _upload(client, ("biology.txt", NOTES.encode("utf-8"), "text/plain"))

        client.delete("/documents")

        response = client.post("/search", json={"query": "photosynthesis light energy"})
        assert response.json()["results"] == []

    def test_storage_error_maps_to_500(self, client):
        import main
        from services.corpus_store import StorageError

        with patch.object(main.corpus_store, "list_documents", side_effect=StorageError("disk gone")):
            response = client.get("/documents")

        assert response.status_code == 500


class TestSearch:
    def test_search_returns_sources(self, client):
        _upload(client, ("biology.txt", NOTES.encode("utf-8"), "text/plain"))

        response = client.post("/search", json={"query": "photosynthesis light energy"})

        assert response.status_code == 200
        results = response.json()["results"]
        assert len(results) == 1
        assert results[0]["source"] == "biology.txt"
        assert results[0]["match_type"] == "semantic"
        assert results[0]["content"].startswith("Photosynthesis")

    def test_search_empty_corpus(self, client):
        response = client.post("/search", json={"query": "anything"})

        assert response.status_code == 200
        assert response.json()["results"] == []

    def test_search_blank_query(self, client):
        response = client.post("/search", json={"query": "   "})
        assert response.status_code == 400

    def test_search_invalid_top_k(self, client):
        response = client.post("/search", json={"query": "x", "top_k": 0})
        assert response.status_code == 422


class TestChat:
    """Streaming chat relay with optional document context."""

    def test_relays_stream(self, client):
        import main

        response = client.post("/chat", json={"messages": [{"role": "user", "content": "Hi"}]})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.content == b"".join(UPSTREAM_EVENTS)
        # Empty corpus: no context message
        sent = main.llm_client.stream_chat.call_args.args[0]
        assert sent == [{"role": "user", "content": "Hi"}]

    def test_injects_document_context(self, client):
        import main
        _upload(client, ("biology.txt", NOTES.encode("utf-8"), "text/plain"))

        response = client.post("/chat", json={"messages": [
            {"role": "user", "content": "Tell me about photosynthesis light energy"},
        ]})

        assert response.status_code == 200
        sent = main.llm_client.stream_chat.call_args.args[0]
        assert len(sent) == 2
        assert sent[0]["role"] == "system"
        assert "**Reference 1 (biology.txt):**" in sent[0]["content"]
        assert sent[1]["content"] == "Tell me about photosynthesis light energy"

    def test_documents_disabled(self, client):
        import main
        _upload(client, ("biology.txt", NOTES.encode("utf-8"), "text/plain"))

        client.post("/chat", json={
            "messages": [{"role": "user", "content": "photosynthesis"}],
            "use_documents": False,
        })

        sent = main.llm_client.stream_chat.call_args.args[0]
        assert [m["role"] for m in sent] == ["user"]

    def test_retrieval_failure_still_streams(self, client):
        import main
        _upload(client, ("biology.txt", NOTES.encode("utf-8"), "text/plain"))

        with patch.object(main.retrieval_engine, "retrieve", side_effect=RuntimeError("search down")):
            response = client.post("/chat", json={"messages": [{"role": "user", "content": "photosynthesis"}]})

        assert response.status_code == 200
        assert response.content == b"".join(UPSTREAM_EVENTS)
        sent = main.llm_client.stream_chat.call_args.args[0]
        assert [m["role"] for m in sent] == ["user"]

    def test_empty_messages_rejected(self, client):
        response = client.post("/chat", json={"messages": []})
        assert response.status_code == 422
