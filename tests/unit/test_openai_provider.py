"""Unit tests for OpenAIEmbeddingProvider."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

pytest.importorskip("openai")

from knowledge.providers.base import ProviderConfig, ProviderError  # noqa: E402
from knowledge.providers.openai import MAX_BATCH_SIZE, OpenAIEmbeddingProvider  # noqa: E402


def make_client(response=None, error=None):
    client = MagicMock()
    client.embeddings.create = AsyncMock(return_value=response, side_effect=error)
    client.close = AsyncMock()
    return client


def make_response(vectors, order=None):
    indices = order or list(range(len(vectors)))
    response = MagicMock()
    response.data = [MagicMock(embedding=vectors[i], index=i) for i in indices]
    response.usage = MagicMock(total_tokens=10)
    return response


def config(**extra):
    return ProviderConfig(
        provider_type="openai",
        model_name="text-embedding-3-small",
        api_key="test-key",
        extra_params=extra,
    )


@pytest.mark.asyncio
class TestOpenAIEmbeddingProvider:
    """Test OpenAIEmbeddingProvider functionality."""

    @patch("knowledge.providers.openai.AsyncOpenAI")
    async def test_initialization(self, mock_openai_class):
        mock_openai_class.return_value = make_client()
        provider = OpenAIEmbeddingProvider(config())
        assert provider.model_name == "text-embedding-3-small"
        assert provider.get_dimension() == 1536
        assert provider.get_max_tokens() == 8191
        mock_openai_class.assert_called_once_with(api_key="test-key")
        await provider.close()

    @patch("knowledge.providers.openai.AsyncOpenAI")
    async def test_api_key_from_environment_variable_name(self, mock_openai_class, monkeypatch):
        monkeypatch.setenv("MY_EMBEDDING_KEY", "secret")
        mock_openai_class.return_value = make_client()
        OpenAIEmbeddingProvider(
            ProviderConfig(provider_type="openai", model_name="text-embedding-3-small", api_key="MY_EMBEDDING_KEY")
        )
        mock_openai_class.assert_called_once_with(api_key="secret")

    @patch("knowledge.providers.openai.AsyncOpenAI")
    async def test_missing_api_key(self, mock_openai_class, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ProviderError):
            OpenAIEmbeddingProvider(ProviderConfig(provider_type="openai", model_name="text-embedding-3-small"))

    @patch("knowledge.providers.openai.AsyncOpenAI")
    async def test_embed_text(self, mock_openai_class):
        client = make_client(make_response([[0.1] * 1536]))
        mock_openai_class.return_value = client
        provider = OpenAIEmbeddingProvider(config())

        embedding = await provider.embed_text("This is a test sentence.")

        assert len(embedding) == 1536
        client.embeddings.create.assert_awaited_once_with(
            input="This is a test sentence.", model="text-embedding-3-small"
        )

    @patch("knowledge.providers.openai.AsyncOpenAI")
    async def test_requested_dimensions(self, mock_openai_class):
        client = make_client(make_response([[0.1] * 256]))
        mock_openai_class.return_value = client
        provider = OpenAIEmbeddingProvider(config(dimensions=256))

        await provider.embed_text("hello")

        assert provider.get_dimension() == 256
        client.embeddings.create.assert_awaited_once_with(
            input="hello", model="text-embedding-3-small", dimensions=256
        )

    @patch("knowledge.providers.openai.AsyncOpenAI")
    async def test_embed_batch_restores_input_order(self, mock_openai_class):
        vectors = [[0.1] * 4, [0.2] * 4, [0.3] * 4]
        mock_openai_class.return_value = make_client(make_response(vectors, order=[2, 0, 1]))
        provider = OpenAIEmbeddingProvider(config())

        embeddings = await provider.embed_batch(["a", "b", "c"])

        assert embeddings == vectors

    @patch("knowledge.providers.openai.AsyncOpenAI")
    async def test_embed_batch_splits_requests(self, mock_openai_class):
        texts = ["t"] * (MAX_BATCH_SIZE + 1)
        client = make_client()
        client.embeddings.create.side_effect = [
            make_response([[0.1]] * MAX_BATCH_SIZE),
            make_response([[0.2]]),
        ]
        mock_openai_class.return_value = client
        provider = OpenAIEmbeddingProvider(config())

        embeddings = await provider.embed_batch(texts)

        assert len(embeddings) == len(texts)
        assert client.embeddings.create.await_count == 2

    @patch("knowledge.providers.openai.AsyncOpenAI")
    async def test_empty_inputs(self, mock_openai_class):
        mock_openai_class.return_value = make_client()
        provider = OpenAIEmbeddingProvider(config())
        with pytest.raises(ProviderError):
            await provider.embed_text("  ")
        with pytest.raises(ProviderError):
            await provider.embed_batch(["ok", ""])
        assert await provider.embed_batch([]) == []

    @patch("knowledge.providers.openai.AsyncOpenAI")
    async def test_api_errors_are_classified(self, mock_openai_class):
        mock_openai_class.return_value = make_client(error=RuntimeError("Rate limit reached"))
        provider = OpenAIEmbeddingProvider(config())
        with pytest.raises(ProviderError, match="rate limit exceeded"):
            await provider.embed_text("hello")
