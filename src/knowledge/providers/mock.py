"""Deterministic hash-based embedding provider.

Maps each token to a bucket with md5 and L2-normalises the counts, so texts
sharing vocabulary get high cosine similarity. Useful for development without
a model download and for reproducible tests; it has no semantic knowledge.
"""

import hashlib
import math

from knowledge.providers.base import EmbeddingProvider, ProviderConfig, ProviderError
from knowledge.providers.lexical import tokenize

DEFAULT_DIMENSION = 256


class HashEmbeddingProvider(EmbeddingProvider):
    """Bag-of-words embeddings over md5 token buckets."""

    def __init__(self, config: ProviderConfig) -> None:
        super().__init__(config)
        self._dimension = int(config.extra_params.get("dimension", DEFAULT_DIMENSION))
        if self._dimension < 1:
            raise ProviderError(message="dimension must be positive", provider="mock")

    def _embed(self, text: str) -> list[float]:
        vector = [0.0] * self._dimension
        for token in tokenize(text):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            vector[int.from_bytes(digest[:4], "big") % self._dimension] += 1.0
        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            # Texts without word characters still get a valid, non-zero vector.
            vector[0] = 1.0
            return vector
        return [v / norm for v in vector]

    async def embed_text(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise ProviderError(message="Cannot embed empty text", provider="mock")
        return self._embed(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_text(text) for text in texts]

    def get_dimension(self) -> int:
        return self._dimension

    def get_max_tokens(self) -> int:
        return 8192
