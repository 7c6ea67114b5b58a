"""Configuration schema using Pydantic.

Why this exists:
- Type-safe configuration with validation
- Environment variable support (KNOWLEDGE_ prefix, "__" for nesting)
- Multiple deployment profiles (local, server, cloud)
- Clear documentation of all settings

How to extend:
1. Add new fields to existing config classes
2. Create new config classes for new components
3. Reference them from AppConfig
"""

from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EmbeddingProviderType(str, Enum):
    """Supported embedding providers."""

    OPENAI = "openai"
    LOCAL = "local"
    MOCK = "mock"


class RerankProviderType(str, Enum):
    """Supported rerank scoring models."""

    CROSS_ENCODER = "cross_encoder"
    LEXICAL = "lexical"
    NONE = "none"


class VectorStoreType(str, Enum):
    """Supported vector stores."""

    CHROMA = "chroma"
    MEMORY = "memory"


class RecordStoreType(str, Enum):
    """Supported knowledge record stores."""

    SQLITE = "sqlite"
    MEMORY = "memory"


class FileRetrievalType(str, Enum):
    """Supported file retrieval backends."""

    HTTP = "http"
    LOCAL = "local"
    NONE = "none"


class EmbeddingConfig(BaseModel):
    """Embedding provider configuration."""

    provider: EmbeddingProviderType = EmbeddingProviderType.LOCAL
    model_name: str = "all-MiniLM-L6-v2"
    api_key: Optional[str] = None
    batch_size: int = Field(default=50, gt=0, description="Chunks embedded per request")
    dimension: Optional[int] = Field(
        default=None, gt=0, description="Expected vector dimension; provider's own when unset"
    )
    extra_params: dict[str, Any] = Field(default_factory=dict)


class RerankWeightsConfig(BaseModel):
    """Weights of the enhanced reranking composite score."""

    similarity: float = Field(default=0.7, ge=0.0, le=1.0)
    type_priority: float = Field(default=0.2, ge=0.0, le=1.0)
    recency: float = Field(default=0.1, ge=0.0, le=1.0)


class RerankConfig(BaseModel):
    """Reranker configuration."""

    provider: RerankProviderType = RerankProviderType.LEXICAL
    model_name: str = "cross-encoder/ms-marco-MiniLM-L-6-v2"
    enhanced: bool = False
    weights: RerankWeightsConfig = Field(default_factory=RerankWeightsConfig)
    recency_half_life_days: float = Field(default=30.0, gt=0.0)
    extra_params: dict[str, Any] = Field(default_factory=dict)


class VectorStoreConfig(BaseModel):
    """Vector store configuration."""

    store_type: VectorStoreType = VectorStoreType.CHROMA
    collection_name: str = "knowledge"
    persist_directory: Optional[Path] = None
    extra_params: dict[str, Any] = Field(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        """Expand ~ in paths."""
        if self.persist_directory:
            self.persist_directory = self.persist_directory.expanduser()


class RecordStoreConfig(BaseModel):
    """Knowledge record store configuration."""

    store_type: RecordStoreType = RecordStoreType.SQLITE
    connection_string: str = "sqlite:///~/.knowledge/knowledge.db"
    extra_params: dict[str, Any] = Field(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        """Expand ~ in connection string."""
        if self.connection_string and "~" in self.connection_string:
            self.connection_string = self.connection_string.replace(
                "~", str(Path.home())
            )


class ChunkingConfig(BaseModel):
    """Text chunking configuration.

    Defaults suit prose and mixed CJK/Latin documents:
    - chunk_size: 1500 characters per window
    - chunk_overlap: 100 characters shared between consecutive windows
    """

    chunk_size: int = Field(default=1500, ge=1, description="Maximum chunk size in characters")
    chunk_overlap: int = Field(default=100, ge=0, description="Overlap between chunks in characters")


class RetrievalConfig(BaseModel):
    """Retrieval and hybrid fusion configuration."""

    top_k: int = Field(default=10, gt=0)
    min_score: float = Field(default=0.5, ge=-1.0, le=1.0)
    candidate_multiplier: int = Field(default=2, ge=1, description="Indexed search over-fetch factor")
    knowledge_ratio: float = Field(default=0.7, gt=0.0, le=1.0)
    file_ratio: float = Field(default=0.3, gt=0.0, le=1.0)
    duplicate_threshold: float = Field(
        default=0.85, ge=0.0, le=1.0, description="Similarity at which two QA questions are duplicates"
    )


class FileRetrievalConfig(BaseModel):
    """File retrieval collaborator configuration."""

    provider: FileRetrievalType = FileRetrievalType.LOCAL
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = Field(default=30.0, gt=0.0)

    @model_validator(mode="after")
    def http_requires_url(self) -> "FileRetrievalConfig":
        if self.provider == FileRetrievalType.HTTP and not self.base_url:
            raise ValueError("file_retrieval.base_url is required for the http provider")
        return self


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = LogLevel.INFO
    json_logs: bool = False
    enable_file: bool = False
    log_dir: Path = Field(default=Path.home() / ".knowledge" / "logs")
    max_days: int = Field(default=30, gt=0)

    @field_validator("log_dir")
    @classmethod
    def expand_log_dir(cls, v: Path) -> Path:
        return v.expanduser()


class AppConfig(BaseSettings):
    """Main application configuration.

    Loads from:
    1. Config file (TOML)
    2. Environment variables (prefixed with KNOWLEDGE_)
    3. .env file
    """

    model_config = SettingsConfigDict(
        env_prefix="KNOWLEDGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    app_name: str = "knowledge"
    data_dir: Path = Field(default=Path.home() / ".knowledge")
    default_owner: Optional[str] = None

    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    rerank: RerankConfig = Field(default_factory=RerankConfig)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    record_store: RecordStoreConfig = Field(default_factory=RecordStoreConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    file_retrieval: FileRetrievalConfig = Field(default_factory=FileRetrievalConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Environment variables win over values passed in from the config file."""
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    def model_post_init(self, __context: Any) -> None:
        """Post-initialization: expand ~ in data_dir."""
        self.data_dir = self.data_dir.expanduser()
