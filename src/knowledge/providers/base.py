"""Provider interfaces: embedding backends and relevance (rerank) models.

Both are pluggable. Adding a backend means subclassing one of the ABCs below,
registering it in the factory functions of ``knowledge.providers`` and, when
it needs a heavy library, declaring that library as an extra in
pyproject.toml and importing it lazily.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, Field


class ProviderConfig(BaseModel):
    """Settings shared by every provider; backend specifics go in extra_params."""

    provider_type: str
    model_name: str
    api_key: Optional[str] = None
    extra_params: dict[str, Any] = Field(default_factory=dict)


class ProviderError(Exception):
    """A provider could not be built or a model call failed."""

    def __init__(self, message: str, provider: str, original_error: Optional[Exception] = None):
        self.message = message
        self.provider = provider
        self.original_error = original_error
        super().__init__(self.message)


class EmbeddingProvider(ABC):
    """Turns text into fixed-dimension vectors.

    ``embed_batch`` returns exactly one vector per input, in input order, and
    every vector has ``get_dimension()`` components. Blank input is an error.
    """

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config

    @abstractmethod
    async def embed_text(self, text: str) -> list[float]:
        """Embed one text (typically a query).

        Raises:
            ProviderError: Blank text or backend failure
        """

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts (typically chunks) in as few backend calls as possible.

        Raises:
            ProviderError: Any blank text or backend failure; no partial result
        """

    @abstractmethod
    def get_dimension(self) -> int:
        """Vector length produced by this model."""

    @abstractmethod
    def get_max_tokens(self) -> int:
        """Longest input, in model tokens, the model accepts."""

    async def close(self) -> None:
        return None

    async def __aenter__(self) -> "EmbeddingProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class RerankProvider(ABC):
    """Scores how relevant each passage is to a query.

    Only scoring lives here; ordering, truncation and rank assignment belong
    to the rerankers in ``knowledge.retrieval.rerankers``.
    """

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config

    @abstractmethod
    async def score(self, query: str, texts: list[str]) -> list[float]:
        """One score per text, higher meaning more relevant.

        Raises:
            ProviderError: If the model call fails
        """

    async def close(self) -> None:
        return None
