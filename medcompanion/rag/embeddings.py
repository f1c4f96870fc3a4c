"""
Embedding Generation
====================

Turns text into vectors with a hosted sentence-transformers model
(all-MiniLM-L6-v2, 384 dimensions) on the HuggingFace Inference API. The
same model must be used for indexing the knowledge base and for queries,
otherwise similarity scores are meaningless.

Two entry points with different failure behavior:
- generate(text): used per turn. Never raises; if the service fails it
  returns a zero vector so retrieval degrades instead of aborting the turn.
- generate_batch(texts): used by the indexer. Raises EmbeddingError, since
  writing zero vectors into the store would poison it.

Successful embeddings are cached in memory by text hash.
"""

import hashlib
from typing import Any, Sequence

import httpx

from medcompanion.utils.logger import Logger

logger = Logger("Embeddings")


class EmbeddingError(Exception):
    """The embedding service did not return usable vectors."""


def _as_vector(value: Any) -> list[float]:
    if not isinstance(value, list) or not value:
        raise EmbeddingError("Empty embedding")
    # Some pipelines wrap a single vector in a batch of one
    if isinstance(value[0], list):
        return _as_vector(value[0])
    return [float(x) for x in value]


class EmbeddingGenerator:
    """
    Generates text embeddings over HTTP.

    Example:
        generator = EmbeddingGenerator(api_key="hf_...", url=EMBEDDING_URL)

        vector = await generator.generate("What helps a mild headache?")
        vectors = await generator.generate_batch(["chunk one", "chunk two"])
    """

    def __init__(
        self,
        api_key: str | None,
        url: str,
        dimension: int = 384,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0
    ):
        self.api_key = api_key
        self.url = url
        self.dimension = dimension
        self._http = http_client
        self._timeout = timeout

        # Key: hash of text, Value: embedding vector
        self._cache: dict[str, list[float]] = {}

        logger.info(f"Embedding generator initialized (dim={dimension})")

    def _hash_text(self, text: str) -> str:
        """Create a hash key for caching."""
        return hashlib.md5(text.encode()).hexdigest()

    def zero_vector(self) -> list[float]:
        return [0.0] * self.dimension

    async def _request(self, inputs: str | list[str]) -> Any:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {"inputs": inputs, "options": {"wait_for_model": True}}

        try:
            if self._http is not None:
                response = await self._http.post(self.url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        if response.status_code >= 400:
            raise EmbeddingError(
                f"Embedding API error: {response.status_code} - {response.text[:200]}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise EmbeddingError("Embedding API returned invalid JSON") from e

    async def generate(self, text: str) -> list[float]:
        """
        Embed a single text.

        Returns:
            The embedding, or a zero vector if the service failed
        """
        cache_key = self._hash_text(text)
        if cache_key in self._cache:
            logger.debug("Embedding cache hit")
            return self._cache[cache_key]

        try:
            embedding = _as_vector(await self._request(text))
        except EmbeddingError as e:
            logger.warning(f"{e}; using zero vector")
            return self.zero_vector()

        self._cache[cache_key] = embedding
        logger.debug(f"Generated embedding (dim={len(embedding)})")
        return embedding

    async def generate_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Embed several texts in one request.

        Returns:
            One vector per input, in input order

        Raises:
            EmbeddingError: If the service fails or returns the wrong shape
        """
        if not texts:
            return []

        results: list[list[float] | None] = []
        texts_to_generate: list[tuple[int, str]] = []

        for i, text in enumerate(texts):
            cache_key = self._hash_text(text)
            if cache_key in self._cache:
                results.append(self._cache[cache_key])
            else:
                results.append(None)
                texts_to_generate.append((i, text))

        if not texts_to_generate:
            logger.debug(f"All {len(texts)} embeddings found in cache")
            return [r for r in results if r is not None]

        uncached_texts = [t[1] for t in texts_to_generate]
        logger.debug(f"Generating {len(uncached_texts)} embeddings (batch)")

        data = await self._request(uncached_texts)
        if not isinstance(data, list) or len(data) != len(uncached_texts):
            raise EmbeddingError("Embedding API returned an unexpected batch shape")

        for (original_index, text), raw in zip(texts_to_generate, data):
            embedding = _as_vector(raw)
            results[original_index] = embedding
            self._cache[self._hash_text(text)] = embedding

        return [r for r in results if r is not None]

    def get_cache_size(self) -> int:
        """Get the number of cached embeddings."""
        return len(self._cache)
