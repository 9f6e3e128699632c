"""Local corpus storage for documents and chunk embeddings using SQLite."""
import logging
import threading
from functools import lru_cache
from pathlib import Path
from typing import Iterator, List, Optional

from pydantic import ValidationError
from sqlalchemy import (
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from config import CORPUS_DB_PATH
from models.chunk import EmbeddingRecord, StorageStats
from models.document import Document
from models.records import StoredDocument, StoredEmbedding

logger = logging.getLogger(__name__)

metadata = MetaData()

# Full documents, chunks inline, keyed by document id
documents_table = Table(
    "documents",
    metadata,
    Column("document_id", String, primary_key=True),
    Column("created_at", Float, nullable=False, index=True),
    Column("payload", Text, nullable=False),
)

# One lightweight row per chunk, keyed by chunk id, for iteration during search
embeddings_table = Table(
    "embeddings",
    metadata,
    Column("position", Integer, primary_key=True, autoincrement=True),
    Column("chunk_id", String, nullable=False, unique=True),
    Column("document_id", String, nullable=False, index=True),
    Column("payload", Text, nullable=False),
)


class StorageError(RuntimeError):
    """Corpus read, write or delete failed."""


class CorruptRecordError(StorageError):
    """A stored row does not match the expected record schema."""


class CorpusStore:
    """Persist documents and their embedding records on the local device."""

    def __init__(self, db_path: str = CORPUS_DB_PATH):
        """
        Create the store. The database is opened lazily on first use.

        Args:
            db_path: SQLite file path, or ":memory:" for a throwaway store
        """
        self.db_path = db_path
        self._engine: Optional[Engine] = None
        self._init_lock = threading.Lock()

    def initialize(self) -> Engine:
        """
        Open the database and create tables. Safe to call repeatedly.

        Raises:
            StorageError: If the database cannot be opened
        """
        if self._engine is not None:
            return self._engine

        with self._init_lock:
            if self._engine is not None:
                return self._engine

            try:
                if self.db_path == ":memory:":
                    engine = create_engine(
                        "sqlite://",
                        connect_args={"check_same_thread": False},
                        poolclass=StaticPool
                    )
                else:
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                    engine = create_engine(
                        f"sqlite:///{self.db_path}",
                        connect_args={"check_same_thread": False}
                    )
                metadata.create_all(engine)
            except (SQLAlchemyError, OSError) as e:
                error_msg = f"Failed to initialize corpus store at {self.db_path}: {str(e)}"
                logger.error(error_msg)
                raise StorageError(error_msg) from e

            self._engine = engine
            logger.info(f"Initialized CorpusStore at {self.db_path}")
            return engine

    def put_document(self, document: Document) -> None:
        """
        Store a document and one embedding record per chunk in a single transaction.

        Args:
            document: Fully embedded document

        Raises:
            ValueError: If a chunk has no embedding or the document id is already stored
            StorageError: If the database operation fails
        """
        missing = [c.chunk_id for c in document.chunks if c.embedding is None]
        if missing:
            raise ValueError(f"Document {document.document_id} has {len(missing)} chunks without embeddings")

        try:
            stored = StoredDocument.from_document(document)
        except ValidationError as e:
            raise ValueError(f"Document {document.document_id} does not match the record schema: {e}") from e

        engine = self.initialize()
        try:
            with engine.begin() as conn:
                exists = conn.execute(
                    select(documents_table.c.document_id)
                    .where(documents_table.c.document_id == document.document_id)
                ).first()
                if exists:
                    raise ValueError(f"Document {document.document_id} is already stored")

                conn.execute(documents_table.insert().values(
                    document_id=document.document_id,
                    created_at=document.created_at.timestamp(),
                    payload=stored.model_dump_json()
                ))

                for chunk in stored.chunks:
                    record = StoredEmbedding(
                        document_id=chunk.document_id,
                        embedding=chunk.embedding,
                        text=chunk.text,
                        metadata=chunk.metadata
                    )
                    self._upsert_embedding(conn, chunk.chunk_id, record)
        except SQLAlchemyError as e:
            error_msg = f"Failed to store document {document.name}: {str(e)}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

        logger.info(f"Document {document.name} stored with {len(document.chunks)} chunks")

    def get_document(self, document_id: str) -> Optional[Document]:
        """
        Look up one document by id.

        Raises:
            CorruptRecordError: If the stored row fails schema validation
            StorageError: If the database operation fails
        """
        engine = self.initialize()
        try:
            with engine.connect() as conn:
                row = conn.execute(
                    select(documents_table.c.payload)
                    .where(documents_table.c.document_id == document_id)
                ).first()
        except SQLAlchemyError as e:
            error_msg = f"Failed to read document {document_id}: {str(e)}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

        if row is None:
            return None

        try:
            return StoredDocument.model_validate_json(row.payload).to_document()
        except ValidationError as e:
            raise CorruptRecordError(f"Stored document {document_id} is corrupt: {e}") from e

    def list_documents(self) -> List[Document]:
        """
        Return all documents, most recently created first.

        Rows that fail schema validation are skipped and logged.
        """
        engine = self.initialize()
        try:
            with engine.connect() as conn:
                rows = conn.execute(
                    select(documents_table.c.document_id, documents_table.c.payload)
                    .order_by(documents_table.c.created_at.desc())
                ).all()
        except SQLAlchemyError as e:
            error_msg = f"Failed to list documents: {str(e)}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

        documents = []
        for row in rows:
            try:
                documents.append(StoredDocument.model_validate_json(row.payload).to_document())
            except ValidationError as e:
                logger.error(f"Skipping corrupt document record {row.document_id}: {e}")
        return documents

    def delete_document(self, document_id: str) -> bool:
        """
        Delete a document and every embedding record belonging to it.

        Embedding records go first, then the document, inside one transaction,
        so readers never see orphaned embeddings.

        Returns:
            True if the document existed
        """
        engine = self.initialize()
        try:
            with engine.begin() as conn:
                exists = conn.execute(
                    select(documents_table.c.document_id)
                    .where(documents_table.c.document_id == document_id)
                ).first()
                if not exists:
                    return False

                removed = conn.execute(
                    delete(embeddings_table).where(embeddings_table.c.document_id == document_id)
                ).rowcount
                conn.execute(
                    delete(documents_table).where(documents_table.c.document_id == document_id)
                )
        except SQLAlchemyError as e:
            error_msg = f"Failed to delete document {document_id}: {str(e)}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

        logger.info(f"Deleted document {document_id} and {removed} embedding records")
        return True

    def clear(self) -> None:
        """Remove every document and embedding record."""
        engine = self.initialize()
        try:
            with engine.begin() as conn:
                conn.execute(delete(embeddings_table))
                conn.execute(delete(documents_table))
        except SQLAlchemyError as e:
            error_msg = f"Failed to clear corpus: {str(e)}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

        logger.info("All documents cleared")

    def put_embedding(self, chunk_id: str, record: EmbeddingRecord) -> None:
        """Insert or replace the embedding record for chunk_id."""
        try:
            stored = StoredEmbedding.from_record(record)
        except ValidationError as e:
            raise ValueError(f"Embedding record {chunk_id} does not match the record schema: {e}") from e

        engine = self.initialize()
        try:
            with engine.begin() as conn:
                self._upsert_embedding(conn, chunk_id, stored)
        except SQLAlchemyError as e:
            error_msg = f"Failed to store embedding {chunk_id}: {str(e)}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

    def get_embedding(self, chunk_id: str) -> Optional[EmbeddingRecord]:
        """Point lookup of one embedding record."""
        engine = self.initialize()
        try:
            with engine.connect() as conn:
                row = conn.execute(
                    select(embeddings_table.c.payload)
                    .where(embeddings_table.c.chunk_id == chunk_id)
                ).first()
        except SQLAlchemyError as e:
            error_msg = f"Failed to read embedding {chunk_id}: {str(e)}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

        if row is None:
            return None

        try:
            return StoredEmbedding.model_validate_json(row.payload).to_record(chunk_id)
        except ValidationError as e:
            raise CorruptRecordError(f"Stored embedding {chunk_id} is corrupt: {e}") from e

    def delete_embedding(self, chunk_id: str) -> bool:
        """Delete one embedding record. Returns True if it existed."""
        engine = self.initialize()
        try:
            with engine.begin() as conn:
                removed = conn.execute(
                    delete(embeddings_table).where(embeddings_table.c.chunk_id == chunk_id)
                ).rowcount
        except SQLAlchemyError as e:
            error_msg = f"Failed to delete embedding {chunk_id}: {str(e)}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e
        return removed > 0

    def iterate_embeddings(self) -> Iterator[EmbeddingRecord]:
        """
        Yield every embedding record in insertion order.

        The rows are read up front so callers never hold a connection open.
        Rows that fail schema validation are skipped and logged.
        """
        engine = self.initialize()
        try:
            with engine.connect() as conn:
                rows = conn.execute(
                    select(embeddings_table.c.chunk_id, embeddings_table.c.payload)
                    .order_by(embeddings_table.c.position)
                ).all()
        except SQLAlchemyError as e:
            error_msg = f"Failed to read embeddings: {str(e)}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

        for row in rows:
            try:
                yield StoredEmbedding.model_validate_json(row.payload).to_record(row.chunk_id)
            except ValidationError as e:
                logger.error(f"Skipping corrupt embedding record {row.chunk_id}: {e}")

    def stats(self) -> StorageStats:
        """Count documents and chunks in the corpus."""
        engine = self.initialize()
        try:
            with engine.connect() as conn:
                document_count = conn.execute(select(func.count()).select_from(documents_table)).scalar_one()
                chunk_count = conn.execute(select(func.count()).select_from(embeddings_table)).scalar_one()
        except SQLAlchemyError as e:
            error_msg = f"Failed to count corpus records: {str(e)}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

        return StorageStats(
            document_count=document_count,
            chunk_count=chunk_count,
            approximate_size=f"~{int(chunk_count * 0.5 + 0.5)}KB"
        )

    @staticmethod
    def _upsert_embedding(conn, chunk_id: str, record: StoredEmbedding) -> None:
        statement = sqlite_insert(embeddings_table).values(
            chunk_id=chunk_id,
            document_id=record.document_id,
            payload=record.model_dump_json()
        )
        conn.execute(statement.on_conflict_do_update(
            index_elements=[embeddings_table.c.chunk_id],
            set_={
                "document_id": statement.excluded.document_id,
                "payload": statement.excluded.payload,
            }
        ))


@lru_cache(maxsize=1)
def get_corpus_store() -> CorpusStore:
    """Process-wide corpus store built from configuration."""
    return CorpusStore(CORPUS_DB_PATH)
