"""Local embedding provider using sentence-transformers.

The model loads on the first embed call (in a worker thread, once), so
building the provider is cheap and a bad model name surfaces as a
ProviderError from that call. Vectors are L2-normalised, which makes cosine
similarity a plain dot product downstream.
"""

import asyncio
import threading
from typing import Any, Optional

import structlog

from knowledge.providers.base import EmbeddingProvider, ProviderConfig, ProviderError

logger = structlog.get_logger(__name__)

# (dimension, max input tokens) of models used in deployments, so neither
# needs a model load to answer.
KNOWN_MODELS: dict[str, tuple[int, int]] = {
    "all-MiniLM-L6-v2": (384, 256),
    "all-mpnet-base-v2": (768, 384),
    "paraphrase-multilingual-MiniLM-L12-v2": (384, 128),
    "BAAI/bge-small-zh-v1.5": (512, 512),
    "BAAI/bge-m3": (1024, 8192),
}

INSTALL_HINT = "sentence-transformers not installed. Install with: pip install 'knowledge-engine[local]'"


class LocalEmbeddingProvider(EmbeddingProvider):
    """sentence-transformers embeddings computed in-process.

    Example:
        provider = LocalEmbeddingProvider(
            ProviderConfig(provider_type="local", model_name="BAAI/bge-small-zh-v1.5")
        )
        vectors = await provider.embed_batch(["订单表", "order table"])
    """

    def __init__(self, config: ProviderConfig) -> None:
        super().__init__(config)
        self.model_name = config.model_name
        self._model: Optional[Any] = None
        self._shape: Optional[tuple[int, int]] = KNOWN_MODELS.get(self.model_name)
        self._load_lock = threading.Lock()

    def _load(self) -> Any:
        with self._load_lock:
            if self._model is not None:
                return self._model
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise ProviderError(message=INSTALL_HINT, provider="local", original_error=e)

            logger.info("loading_local_embedding_model", model_name=self.model_name)
            try:
                model = SentenceTransformer(self.model_name, **self.config.extra_params)
            except Exception as e:
                raise ProviderError(
                    message=f"Failed to load model '{self.model_name}': {e}",
                    provider="local",
                    original_error=e,
                )

            if self._shape is None:
                self._shape = (
                    model.get_sentence_embedding_dimension(),
                    getattr(model, "max_seq_length", None) or 512,
                )
                logger.warning("model_shape_inferred", model_name=self.model_name, dimension=self._shape[0])
            self._model = model
            logger.info("local_embedding_model_loaded", model_name=self.model_name, dimension=self._shape[0])
            return model

    async def _encode(self, inputs: Any, **kwargs: Any) -> Any:
        model = await asyncio.to_thread(self._load)
        try:
            return await asyncio.to_thread(
                model.encode, inputs, convert_to_numpy=True, normalize_embeddings=True, **kwargs
            )
        except Exception as e:
            raise ProviderError(
                message=f"Embedding with '{self.model_name}' failed: {e}",
                provider="local",
                original_error=e,
            )

    async def embed_text(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise ProviderError(message="Cannot embed empty text", provider="local")
        return (await self._encode(text)).tolist()

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in one model call. Any blank text fails the whole batch."""
        if not texts:
            return []
        blank = [i for i, text in enumerate(texts) if not text or not text.strip()]
        if blank:
            raise ProviderError(message=f"Cannot embed empty text at index {blank[0]}", provider="local")

        vectors = (await self._encode(texts, show_progress_bar=False)).tolist()
        logger.debug("generated_batch_embeddings", batch_size=len(texts))
        return vectors

    def _model_shape(self) -> tuple[int, int]:
        if self._shape is None:
            self._load()
        return self._shape

    def get_dimension(self) -> int:
        return self._model_shape()[0]

    def get_max_tokens(self) -> int:
        return self._model_shape()[1]

    async def close(self) -> None:
        if self._model is not None:
            logger.info("closing_local_embedding_provider", model_name=self.model_name)
            self._model = None
