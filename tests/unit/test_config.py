"""Unit tests for configuration loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from knowledge.config.loader import deep_merge, expand_env, load_config
from knowledge.config.schema import (
    AppConfig,
    ChunkingConfig,
    EmbeddingConfig,
    EmbeddingProviderType,
    RecordStoreConfig,
    VectorStoreType,
)

CONFIG_TOML = """
default_owner = "team-a"

[embedding]
provider = "mock"
model_name = "hash"
api_key = "${TEST_EMBEDDING_KEY:-fallback-key}"
batch_size = 8

[vector_store]
store_type = "memory"

[record_store]
store_type = "memory"

[chunking]
chunk_size = 400
chunk_overlap = 40

[profiles.server.vector_store]
store_type = "chroma"
collection_name = "server_knowledge"

[profiles.server.chunking]
chunk_size = 800
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(CONFIG_TOML)
    return path


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("TEST_EMBEDDING_KEY", raising=False)
    monkeypatch.delenv("KNOWLEDGE_EMBEDDING__BATCH_SIZE", raising=False)
    monkeypatch.delenv("KNOWLEDGE_DEFAULT_OWNER", raising=False)


class TestAppConfig:
    def test_defaults(self):
        config = AppConfig()
        assert config.embedding.provider == EmbeddingProviderType.LOCAL
        assert config.embedding.batch_size == 50
        assert config.chunking.chunk_size == 1500
        assert config.chunking.chunk_overlap == 100
        assert config.retrieval.min_score == 0.5
        assert config.retrieval.duplicate_threshold == 0.85
        assert config.rerank.weights.similarity == 0.7

    def test_data_dir_expanded(self):
        config = AppConfig(data_dir="~/kb-data")
        assert config.data_dir == Path.home() / "kb-data"

    def test_record_store_home_expanded(self):
        config = RecordStoreConfig(connection_string="sqlite:///~/kb.db")
        assert config.connection_string == f"sqlite:///{Path.home()}/kb.db"

    @pytest.mark.parametrize(
        "factory",
        [
            lambda: EmbeddingConfig(batch_size=0),
            lambda: ChunkingConfig(chunk_size=0),
            lambda: ChunkingConfig(chunk_overlap=-1),
        ],
    )
    def test_invalid_values(self, factory):
        with pytest.raises(ValidationError):
            factory()

    def test_environment_overrides_nested_values(self, monkeypatch):
        monkeypatch.setenv("KNOWLEDGE_EMBEDDING__BATCH_SIZE", "7")
        config = AppConfig(embedding={"provider": "mock", "model_name": "hash", "batch_size": 8})
        assert config.embedding.batch_size == 7


class TestLoadConfig:
    def test_load_file(self, config_file):
        config = load_config(config_file)
        assert config.default_owner == "team-a"
        assert config.embedding.provider == EmbeddingProviderType.MOCK
        assert config.embedding.batch_size == 8
        assert config.vector_store.store_type == VectorStoreType.MEMORY
        assert config.chunking.chunk_size == 400

    def test_env_substitution_default(self, config_file):
        assert load_config(config_file).embedding.api_key == "fallback-key"

    def test_env_substitution_value(self, config_file, monkeypatch):
        monkeypatch.setenv("TEST_EMBEDDING_KEY", "real-key")
        assert load_config(config_file).embedding.api_key == "real-key"

    def test_profile_merges_over_base(self, config_file):
        config = load_config(config_file, profile="server")
        assert config.vector_store.store_type == VectorStoreType.CHROMA
        assert config.vector_store.collection_name == "server_knowledge"
        assert config.chunking.chunk_size == 800
        assert config.chunking.chunk_overlap == 40

    def test_unknown_profile_uses_base(self, config_file):
        config = load_config(config_file, profile="missing")
        assert config.vector_store.store_type == VectorStoreType.MEMORY

    def test_environment_beats_file(self, config_file, monkeypatch):
        monkeypatch.setenv("KNOWLEDGE_DEFAULT_OWNER", "from-env")
        assert load_config(config_file).default_owner == "from-env"

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.toml")
        assert config.chunking.chunk_size == 1500

    def test_env_file(self, tmp_path, monkeypatch):
        # Registers the variable with monkeypatch so the value load_dotenv sets is removed afterwards.
        monkeypatch.setenv("KNOWLEDGE_DEFAULT_OWNER", "placeholder")
        monkeypatch.delenv("KNOWLEDGE_DEFAULT_OWNER")
        env_file = tmp_path / ".env"
        env_file.write_text("KNOWLEDGE_DEFAULT_OWNER=dotenv-owner\n")
        config = load_config(None, env_file=env_file)
        assert config.default_owner == "dotenv-owner"


class TestHelpers:
    def test_expand_env_nested(self, monkeypatch):
        monkeypatch.setenv("TEST_EMBEDDING_KEY", "k1")
        data = {"a": ["${TEST_EMBEDDING_KEY}", 3], "b": {"c": "x-${UNSET_TEST_VAR:-d}"}}
        assert expand_env(data) == {"a": ["k1", 3], "b": {"c": "x-d"}}

    def test_unresolved_reference_kept(self):
        assert expand_env("${UNSET_TEST_VAR}") == "${UNSET_TEST_VAR}"

    def test_deep_merge(self):
        base = {"chunking": {"chunk_size": 1, "chunk_overlap": 0}, "app_name": "a"}
        merged = deep_merge(base, {"chunking": {"chunk_size": 2}, "app_name": "b"})
        assert merged == {"chunking": {"chunk_size": 2, "chunk_overlap": 0}, "app_name": "b"}
        assert base["chunking"]["chunk_size"] == 1
