"""Retrieval engine for query embedding, similarity search and lexical fallback."""
import logging
from typing import List, Sequence

import numpy as np
from rapidfuzz import fuzz, process, utils

from config import FUZZY_THRESHOLD, RELEVANCE_THRESHOLD, TOP_K
from models.chunk import ScoredChunk
from services.corpus_store import CorpusStore, StorageError
from services.embedding_model import EmbeddingModel

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 when the dimensions differ or either vector has zero magnitude.
    """
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)

    if vec_a.shape != vec_b.shape or vec_a.size == 0:
        return 0.0

    magnitude_a = np.linalg.norm(vec_a)
    magnitude_b = np.linalg.norm(vec_b)
    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0

    return float(np.dot(vec_a, vec_b) / (magnitude_a * magnitude_b))


class RetrievalEngine:
    """Select the chunks most relevant to a query from the local corpus."""

    def __init__(
        self,
        corpus_store: CorpusStore,
        embedding_model: EmbeddingModel,
        fuzzy_threshold: float = FUZZY_THRESHOLD
    ):
        """
        Initialize the retrieval engine.

        Args:
            corpus_store: CorpusStore to read embedding records from
            embedding_model: EmbeddingModel instance for query embedding
            fuzzy_threshold: Maximum normalized distance (0-1) accepted by the lexical fallback
        """
        self.corpus_store = corpus_store
        self.embedding_model = embedding_model
        self.fuzzy_threshold = fuzzy_threshold
        logger.info("Initialized RetrievalEngine")

    async def retrieve(
        self,
        query: str,
        top_k: int = TOP_K,
        threshold: float = RELEVANCE_THRESHOLD
    ) -> List[ScoredChunk]:
        """
        Retrieve the top_k chunks most relevant to query.

        1. Embed the query
        2. Score every stored embedding record by cosine similarity
        3. Keep records scoring strictly above threshold, best first
        4. If nothing qualifies, or the semantic path fails, fall back to
           fuzzy text matching over chunk contents

        Search is read-only and never raises for embedding or storage
        failures; results from the fallback carry match_type="lexical".

        Args:
            query: User question
            top_k: Maximum number of chunks to return
            threshold: Minimum cosine similarity (exclusive)

        Returns:
            Scored chunks, most relevant first; empty for an empty query or corpus
        """
        if not query or not query.strip():
            logger.warning("Empty query string provided, returning empty results")
            return []

        if top_k <= 0:
            raise ValueError("top_k must be positive")

        try:
            results = await self.semantic_search(query, top_k, threshold)
        except Exception as e:
            logger.error(f"Semantic search failed: {str(e)}", exc_info=True)
            results = []

        if results:
            logger.info(
                f"Retrieved {len(results)} chunks (top score: {results[0].relevance_score:.3f})"
            )
            return results

        logger.info(
            "No semantic matches above threshold, using fallback text search",
            extra={"extra": {"event": "search_fallback", "threshold": threshold}}
        )
        return self.lexical_search(query, top_k)

    async def semantic_search(self, query: str, top_k: int, threshold: float) -> List[ScoredChunk]:
        """Threshold-gated cosine similarity search over all embedding records."""
        logger.debug(f"Embedding query: {query[:100]}...")
        query_embedding = await self.embedding_model.embed_text(query)

        candidates = []
        for record in self.corpus_store.iterate_embeddings():
            similarity = cosine_similarity(query_embedding, record.embedding)
            if similarity > threshold:
                candidates.append(ScoredChunk(
                    chunk=record.to_chunk(),
                    relevance_score=similarity,
                    match_type="semantic"
                ))

        # sorted() is stable, so equal scores keep corpus order
        ranked = sorted(candidates, key=lambda scored: scored.relevance_score, reverse=True)
        logger.debug(f"{len(candidates)} chunks above threshold {threshold}")
        return ranked[:top_k]

    def lexical_search(self, query: str, top_k: int) -> List[ScoredChunk]:
        """
        Fuzzy text search over chunk contents.

        Uses partial-ratio matching so a short query can match inside a long
        chunk. Matches whose normalized distance exceeds fuzzy_threshold are
        dropped.
        """
        try:
            records = list(self.corpus_store.iterate_embeddings())
        except StorageError as e:
            logger.error(f"Fallback text search could not read the corpus: {str(e)}")
            return []

        if not records:
            return []

        score_cutoff = (1.0 - self.fuzzy_threshold) * 100
        matches = process.extract(
            query,
            [record.text for record in records],
            scorer=fuzz.partial_ratio,
            processor=utils.default_process,
            score_cutoff=score_cutoff,
            limit=top_k
        )

        results = [
            ScoredChunk(
                chunk=records[index].to_chunk(),
                relevance_score=score / 100.0,
                match_type="lexical"
            )
            for _, score, index in matches
        ]
        logger.info(f"Fallback text search returned {len(results)} chunks")
        return results
