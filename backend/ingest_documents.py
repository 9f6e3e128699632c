"""
Document Ingestion Script for StudyDesk RAG.

This script:
1. Optionally clears the local corpus
2. Warms up the embedding model
3. Loads every PDF, DOCX and TXT file from a directory
4. Chunks, embeds and stores each file independently

Usage:
    python ingest_documents.py path/to/docs [--clear]
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from models.document import IngestionResult
from services.chunking_engine import ChunkingEngine
from services.corpus_store import CorpusStore
from services.document_loader import EXTENSIONS, DocumentLoader
from services.embedding_model import EmbeddingModel
from services.ingestion_service import DocumentIngestionService
from config import CORPUS_DB_PATH

logger = logging.getLogger(__name__)


def find_documents(directory: Path) -> List[Path]:
    """Supported files directly inside directory, sorted by name."""
    return sorted(
        path for path in directory.iterdir()
        if path.is_file() and path.suffix.lower() in EXTENSIONS
    )


async def ingest_directory(
    directory: Path,
    service: DocumentIngestionService,
    clear: bool = False
) -> List[IngestionResult]:
    """
    Ingest every supported file in directory.

    Args:
        directory: Folder containing documents
        service: Configured ingestion service
        clear: Empty the corpus first

    Returns:
        One result per file
    """
    if clear:
        logger.info("Clearing existing data from corpus...")
        before = service.corpus_store.stats()
        service.corpus_store.clear()
        logger.info(f"Cleared {before.document_count} documents ({before.chunk_count} chunks)")

    paths = find_documents(directory)
    logger.info(f"Found {len(paths)} supported files in {directory}")
    if not paths:
        return []

    files = [(path.name, path.read_bytes(), None) for path in paths]
    return await service.ingest_many(files)


def main(argv: Optional[List[str]] = None) -> int:
    """Main ingestion process."""
    parser = argparse.ArgumentParser(
        description="Ingest study documents into the local StudyDesk corpus"
    )
    parser.add_argument("directory", help="Directory containing .pdf, .docx or .txt files")
    parser.add_argument(
        "--clear",
        action="store_true",
        help="Remove all stored documents before ingesting"
    )
    parser.add_argument(
        "--db",
        default=CORPUS_DB_PATH,
        help=f"Corpus database path (default: {CORPUS_DB_PATH})"
    )
    args = parser.parse_args(argv)

    directory = Path(args.directory)
    if not directory.is_dir():
        logger.error(f"Documents directory not found: {directory}")
        return 1

    try:
        logger.info("=" * 60)
        logger.info("Starting StudyDesk Document Ingestion")
        logger.info("=" * 60)

        embedding_model = EmbeddingModel()
        service = DocumentIngestionService(
            document_loader=DocumentLoader(),
            chunking_engine=ChunkingEngine(),
            embedding_model=embedding_model,
            corpus_store=CorpusStore(args.db)
        )

        asyncio.run(embedding_model.warmup())
        results = asyncio.run(ingest_directory(directory, service, clear=args.clear))
    except KeyboardInterrupt:
        logger.warning("Ingestion interrupted by user")
        return 1
    except Exception as e:
        logger.error(f"Ingestion failed: {str(e)}", exc_info=True)
        return 1

    for result in results:
        if result.success:
            logger.info(f"  ✓ {result.filename}: {result.document.chunk_count} chunks")
        else:
            logger.warning(f"  ✗ {result.filename}: {result.error}")

    succeeded = sum(1 for r in results if r.success)
    stats = service.corpus_store.stats()
    logger.info("=" * 60)
    logger.info(f"Files ingested: {succeeded}/{len(results)}")
    logger.info(f"Corpus now holds {stats.document_count} documents, {stats.chunk_count} chunks")
    logger.info(
        f"Embeddings: {embedding_model.stats['remote']} remote, {embedding_model.stats['fallback']} fallback"
    )
    logger.info("=" * 60)

    return 0 if succeeded > 0 else 1


if __name__ == "__main__":
    sys.exit(main())
