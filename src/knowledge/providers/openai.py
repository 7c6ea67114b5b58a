"""OpenAI embedding provider using the official async client.

Works with any OpenAI-compatible embeddings endpoint: ``extra_params`` are
passed to ``AsyncOpenAI`` (``base_url``, ``timeout``...), except
``dimensions`` which is sent with each request to shorten the vectors.
"""

import os
from typing import Any, Optional

import structlog
from openai import AsyncOpenAI

from knowledge.providers.base import EmbeddingProvider, ProviderConfig, ProviderError

logger = structlog.get_logger(__name__)

# (dimension, max input tokens)
KNOWN_MODELS: dict[str, tuple[int, int]] = {
    "text-embedding-ada-002": (1536, 8191),
    "text-embedding-3-small": (1536, 8191),
    "text-embedding-3-large": (3072, 8191),
    "text-embedding-v4": (1536, 8192),
}
FALLBACK_SHAPE = (1536, 8191)

DEFAULT_MODEL = "text-embedding-3-small"

# Inputs per embeddings request accepted by the API.
MAX_BATCH_SIZE = 2048

_ERROR_KINDS = [
    (("authentication", "api_key", "401"), "OpenAI authentication failed"),
    (("rate_limit", "rate limit", "429"), "OpenAI rate limit exceeded"),
    (("connection", "network", "timed out"), "Network error connecting to OpenAI"),
]


def describe_error(error: Exception) -> str:
    """Short human label for an embeddings API failure."""
    text = str(error).lower()
    for needles, label in _ERROR_KINDS:
        if any(needle in text for needle in needles):
            return label
    return "OpenAI embedding request failed"


def _resolve_api_key(configured: Optional[str]) -> str:
    """The configured key, or the value of the env variable it names, or OPENAI_API_KEY."""
    key = configured or os.getenv("OPENAI_API_KEY")
    if not key:
        raise ProviderError(message="API key is required", provider="openai")
    return os.getenv(key) or key


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embeddings from the OpenAI API (or a compatible gateway).

    Example:
        provider = OpenAIEmbeddingProvider(
            ProviderConfig(provider_type="openai", model_name="text-embedding-3-small",
                           api_key="OPENAI_API_KEY")
        )
        vectors = await provider.embed_batch(chunks)
    """

    def __init__(self, config: ProviderConfig) -> None:
        super().__init__(config)
        self.model_name = config.model_name or DEFAULT_MODEL

        client_params = dict(config.extra_params)
        self._request_dimensions: Optional[int] = client_params.pop("dimensions", None)
        if self.model_name not in KNOWN_MODELS:
            logger.warning("unknown_openai_model", model_name=self.model_name, known_models=sorted(KNOWN_MODELS))
        dimension, self._max_tokens = KNOWN_MODELS.get(self.model_name, FALLBACK_SHAPE)
        self._dimension = self._request_dimensions or dimension

        try:
            self.client = AsyncOpenAI(api_key=_resolve_api_key(config.api_key), **client_params)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(
                message=f"Failed to initialize OpenAI client: {e}",
                provider="openai",
                original_error=e,
            )
        logger.info("openai_embedding_provider_initialized", model_name=self.model_name, dimension=self._dimension)

    async def _request(self, inputs: Any) -> Any:
        params: dict[str, Any] = {"input": inputs, "model": self.model_name}
        if self._request_dimensions:
            params["dimensions"] = self._request_dimensions
        try:
            return await self.client.embeddings.create(**params)
        except Exception as e:
            raise ProviderError(
                message=f"{describe_error(e)}: {e}",
                provider="openai",
                original_error=e,
            )

    async def embed_text(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise ProviderError(message="Cannot embed empty text", provider="openai")
        response = await self._request(text)
        return response.data[0].embedding

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in requests of at most MAX_BATCH_SIZE inputs, keeping input order."""
        if not texts:
            return []
        blank = [i for i, text in enumerate(texts) if not text or not text.strip()]
        if blank:
            raise ProviderError(message=f"Cannot embed empty text at index {blank[0]}", provider="openai")

        vectors: list[list[float]] = []
        tokens = 0
        for start in range(0, len(texts), MAX_BATCH_SIZE):
            response = await self._request(texts[start : start + MAX_BATCH_SIZE])
            # Items carry their input position; the list order is not guaranteed.
            vectors.extend(item.embedding for item in sorted(response.data, key=lambda item: item.index))
            usage = getattr(response, "usage", None)
            if usage is not None:
                tokens += usage.total_tokens

        logger.info("openai_batch_embedded", texts=len(texts), tokens=tokens, model=self.model_name)
        return vectors

    def get_dimension(self) -> int:
        return self._dimension

    def get_max_tokens(self) -> int:
        return self._max_tokens

    async def close(self) -> None:
        await self.client.close()
