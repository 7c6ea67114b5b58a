"""Cross-encoder rerank provider using sentence-transformers.

Scores (query, passage) pairs jointly, which ranks far better than comparing
independently computed embeddings. Loaded lazily like the local embedder.
"""

import asyncio
import threading
from typing import Optional

import structlog

from knowledge.providers.base import ProviderConfig, ProviderError, RerankProvider

logger = structlog.get_logger(__name__)

DEFAULT_MODEL = "cross-encoder/ms-marco-MiniLM-L-6-v2"


class CrossEncoderRerankProvider(RerankProvider):
    """Relevance scoring with a sentence-transformers CrossEncoder."""

    def __init__(self, config: ProviderConfig) -> None:
        super().__init__(config)
        self.model_name = config.model_name or DEFAULT_MODEL
        self._model: Optional[object] = None
        self._load_lock = threading.Lock()

    def _ensure_model(self) -> object:
        with self._load_lock:
            if self._model is not None:
                return self._model
            try:
                from sentence_transformers import CrossEncoder
            except ImportError as e:
                raise ProviderError(
                    message=(
                        "sentence-transformers not installed. "
                        "Install with: pip install 'knowledge-engine[local]'"
                    ),
                    provider="cross_encoder",
                    original_error=e,
                )
            logger.info("loading_cross_encoder", model_name=self.model_name)
            try:
                self._model = CrossEncoder(self.model_name, **self.config.extra_params)
            except Exception as e:
                raise ProviderError(
                    message=f"Failed to load cross-encoder '{self.model_name}': {str(e)}",
                    provider="cross_encoder",
                    original_error=e,
                )
            return self._model

    async def score(self, query: str, texts: list[str]) -> list[float]:
        if not texts:
            return []
        model = await asyncio.to_thread(self._ensure_model)
        pairs = [(query, text) for text in texts]
        try:
            scores = await asyncio.to_thread(model.predict, pairs, show_progress_bar=False)
        except Exception as e:
            raise ProviderError(
                message=f"Cross-encoder scoring failed: {str(e)}",
                provider="cross_encoder",
                original_error=e,
            )
        return [float(s) for s in scores]

    async def close(self) -> None:
        self._model = None
