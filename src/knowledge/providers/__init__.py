"""Provider abstractions: embedding and rerank backends."""

from knowledge.providers.base import (
    EmbeddingProvider,
    ProviderConfig,
    ProviderError,
    RerankProvider,
)


def create_embedding_provider(config: ProviderConfig) -> EmbeddingProvider:
    """Factory function to create embedding providers based on configuration.

    Args:
        config: Provider configuration with provider_type

    Returns:
        Embedding provider (local models load lazily on first use)

    Raises:
        ValueError: If provider_type is unknown
        ProviderError: If provider initialization fails or dependencies are missing

    Example:
        config = ProviderConfig(
            provider_type="local",
            model_name="all-MiniLM-L6-v2"
        )
        provider = create_embedding_provider(config)
    """
    provider_type = config.provider_type.lower()

    if provider_type == "local":
        from knowledge.providers.local import LocalEmbeddingProvider

        return LocalEmbeddingProvider(config)

    elif provider_type == "openai":
        try:
            from knowledge.providers.openai import OpenAIEmbeddingProvider
        except ImportError as e:
            raise ProviderError(
                message=(
                    "OpenAI embedding provider requires openai package. "
                    "Install with: pip install 'knowledge-engine[openai]'"
                ),
                provider="openai",
                original_error=e,
            )
        return OpenAIEmbeddingProvider(config)

    elif provider_type == "mock":
        from knowledge.providers.mock import HashEmbeddingProvider

        return HashEmbeddingProvider(config)

    else:
        raise ValueError(
            f"Unknown embedding provider type: '{provider_type}'. "
            f"Supported types: local, openai, mock"
        )


def create_rerank_provider(config: ProviderConfig) -> RerankProvider | None:
    """Factory function to create rerank scoring models.

    Returns None for provider_type "none"; rerankers then fall back to
    ordering candidates by their retrieval score.

    Raises:
        ValueError: If provider_type is unknown
    """
    provider_type = config.provider_type.lower()

    if provider_type == "cross_encoder":
        from knowledge.providers.cross_encoder import CrossEncoderRerankProvider

        return CrossEncoderRerankProvider(config)

    elif provider_type == "lexical":
        from knowledge.providers.lexical import LexicalRerankProvider

        return LexicalRerankProvider(config)

    elif provider_type == "none":
        return None

    else:
        raise ValueError(
            f"Unknown rerank provider type: '{provider_type}'. "
            f"Supported types: cross_encoder, lexical, none"
        )


__all__ = [
    "EmbeddingProvider",
    "ProviderConfig",
    "ProviderError",
    "RerankProvider",
    "create_embedding_provider",
    "create_rerank_provider",
]
