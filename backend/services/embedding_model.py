"""Embedding model integration with Azure OpenAI and a deterministic local fallback."""
import asyncio
import logging
import re
import time
from typing import Dict, List, Optional

import httpx
import numpy as np

from config import (
    AZURE_OPENAI_API_KEY,
    AZURE_OPENAI_ENDPOINT,
    EMBEDDING_DIMENSIONS,
    EMBEDDING_MAX_CONCURRENCY,
    EMBEDDING_TIMEOUT,
)

logger = logging.getLogger(__name__)

WHITESPACE = re.compile(r"\s+")


class EmbeddingServiceError(RuntimeError):
    """The remote embedding service did not return a usable vector."""


def _utf16_code_units(text: str) -> np.ndarray:
    return np.frombuffer(text.encode("utf-16-le", "surrogatepass"), dtype="<u2")


def simple_hash(value: str) -> int:
    """
    Stable 32-bit string hash (h = h * 31 + code unit), returned as a non-negative int.

    Uses UTF-16 code units so a given string always lands in the same slot
    regardless of platform or interpreter hash seed.
    """
    h = 0
    for code in _utf16_code_units(value).tolist():
        h = ((h << 5) - h + code) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def fallback_embedding(text: str, dimensions: int = EMBEDDING_DIMENSIONS) -> List[float]:
    """
    Build a deterministic lexical vector for text without any network call.

    Word hashes add 1.0 to their slot, every character adds 0.1 to slot
    (code * 17) % dimensions, and the result is L2-normalized. These vectors
    are only meaningfully comparable with other fallback vectors.

    Args:
        text: Text to embed
        dimensions: Vector length

    Returns:
        Unit vector of exactly `dimensions` floats
    """
    vector = np.zeros(dimensions, dtype=np.float64)

    for word in WHITESPACE.split(text.lower()):
        vector[simple_hash(word) % dimensions] += 1

    codes = _utf16_code_units(text).astype(np.int64)
    if codes.size:
        np.add.at(vector, (codes * 17) % dimensions, 0.1)

    magnitude = np.linalg.norm(vector)
    if magnitude > 0:
        vector = vector / magnitude

    return vector.tolist()


class EmbeddingModel:
    """Client for the Azure OpenAI embeddings deployment, degrading to fallback vectors."""

    def __init__(
        self,
        api_key: Optional[str] = AZURE_OPENAI_API_KEY,
        endpoint: str = AZURE_OPENAI_ENDPOINT,
        dimensions: int = EMBEDDING_DIMENSIONS,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        timeout: float = EMBEDDING_TIMEOUT,
        max_concurrency: int = EMBEDDING_MAX_CONCURRENCY
    ):
        """
        Initialize the embedding model client.

        A missing API key is not an error: every call then uses the local
        fallback vector.

        Args:
            api_key: Azure OpenAI API key
            endpoint: Full embeddings deployment URL
            dimensions: Expected embedding length (3072 for text-embedding-3-large)
            max_retries: Maximum attempts for rate-limit, 503 and network errors
            initial_delay: Initial delay in seconds for exponential backoff
            timeout: Request timeout in seconds
            max_concurrency: Maximum concurrent requests in embed_batch
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be positive")

        self.api_key = api_key
        self.endpoint = endpoint
        self.dimensions = dimensions
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.timeout = timeout
        self.max_concurrency = max_concurrency
        self.stats: Dict[str, int] = {"remote": 0, "fallback": 0}
        self._warned_missing_key = False

        if api_key:
            logger.info(f"Initialized EmbeddingModel with endpoint: {endpoint}")
        else:
            logger.warning("Azure OpenAI API key not configured, embeddings will use local fallback")

    async def embed_text(self, text: str) -> List[float]:
        """
        Generate an embedding for a single text string.

        Never raises: any failure of the remote path is logged and answered
        with a fallback vector of the same dimensionality.

        Args:
            text: Text to embed

        Returns:
            Embedding vector of exactly `dimensions` floats
        """
        if not self.api_key:
            if not self._warned_missing_key:
                logger.warning("No embedding API key, using fallback vectors")
                self._warned_missing_key = True
            return self._fallback(text, reason="credential_missing")

        if not text or not text.strip():
            return self._fallback(text, reason="empty_text")

        try:
            embedding = await self._embed_with_retry(text)
        except Exception as e:
            return self._fallback(text, reason=str(e))

        self.stats["remote"] += 1
        return embedding

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed many texts concurrently, at most max_concurrency in flight.

        Args:
            texts: Texts to embed

        Returns:
            Embedding vectors in the same order as texts
        """
        if not texts:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(index: int, text: str) -> List[float]:
            async with semaphore:
                logger.debug(f"Generating embedding for chunk {index + 1}/{len(texts)}")
                return await self.embed_text(text)

        return list(await asyncio.gather(*(_bounded(i, t) for i, t in enumerate(texts))))

    def _fallback(self, text: str, reason: str) -> List[float]:
        self.stats["fallback"] += 1
        if reason != "credential_missing":
            logger.warning(
                f"Falling back to local embedding: {reason}",
                extra={"extra": {"event": "embedding_fallback", "reason": reason}}
            )
        return fallback_embedding(text, self.dimensions)

    async def _embed_with_retry(self, text: str) -> List[float]:
        """
        Call the embeddings endpoint with exponential backoff on 429/503 and network errors.

        Raises:
            EmbeddingServiceError: If no valid embedding could be obtained
        """
        headers = {
            "Content-Type": "application/json",
            "api-key": self.api_key
        }
        payload = {"input": text}

        delay = self.initial_delay
        last_error = None

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(self.max_retries):
                try:
                    start_time = time.time()
                    response = await client.post(self.endpoint, headers=headers, json=payload)
                    elapsed = time.time() - start_time
                except httpx.TimeoutException:
                    last_error = f"Request timeout after {self.timeout}s"
                    logger.error(f"{last_error} on attempt {attempt + 1}/{self.max_retries}")
                except httpx.RequestError as e:
                    last_error = f"Network error: {str(e)}"
                    logger.error(f"{last_error} on attempt {attempt + 1}/{self.max_retries}")
                else:
                    if response.status_code in (429, 503):
                        last_error = f"Service returned {response.status_code}"
                        logger.warning(
                            f"{last_error} on attempt {attempt + 1}/{self.max_retries}, retrying in {delay}s"
                        )
                    elif response.status_code != 200:
                        raise EmbeddingServiceError(
                            f"Azure OpenAI API error: {response.status_code} - {response.text}"
                        )
                    else:
                        embedding = self._parse_embedding(response)
                        logger.debug(f"Generated embedding ({len(embedding)} dims) in {elapsed:.2f}s")
                        return embedding

                if attempt < self.max_retries - 1:
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, 60.0)

        raise EmbeddingServiceError(
            f"Failed to generate embedding after {self.max_retries} attempts. Last error: {last_error}"
        )

    def _parse_embedding(self, response: httpx.Response) -> List[float]:
        """Pull data[0].embedding out of the response and check its shape."""
        try:
            data = response.json()
            embedding = data["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise EmbeddingServiceError("Invalid response format from Azure OpenAI API") from e

        if not isinstance(embedding, list) or len(embedding) != self.dimensions:
            got = len(embedding) if isinstance(embedding, list) else type(embedding).__name__
            raise EmbeddingServiceError(
                f"Invalid embedding dimensions: expected {self.dimensions}, got {got}"
            )

        if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in embedding):
            raise EmbeddingServiceError("Embedding contains non-numeric values")

        return [float(v) for v in embedding]

    async def warmup(self) -> bool:
        """
        Embed a dummy string to check the remote service is reachable.

        Returns:
            True if the remote path produced the embedding, False if it fell back
        """
        logger.info("Warming up embedding model...")
        start_time = time.time()
        remote_before = self.stats["remote"]

        await self.embed_text("warmup query")

        ok = self.stats["remote"] > remote_before
        elapsed = time.time() - start_time
        if ok:
            logger.info(f"Model warmup completed in {elapsed:.1f}s")
        else:
            logger.warning(f"Model warmup fell back to local embeddings after {elapsed:.1f}s")
        return ok
