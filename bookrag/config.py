"""Configuration loader for the bookrag pipeline."""

import os
from pathlib import Path
from urllib.parse import quote

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class ConfigurationError(ValueError):
    """Raised when settings are invalid or required settings are missing."""


class AppInfo(BaseModel):
    """Application metadata."""

    name: str = "bookrag"
    version: str = "1.0.0"


class ChunkingConfig(BaseModel):
    """Paragraph window chunking configuration.

    Token counts are approximate (whitespace-separated words).
    """

    max_tokens: int = 450
    overlap_tokens: int = 80
    include_chapter_header: bool = True


class IngestConfig(BaseModel):
    """Chunk file ingestion configuration."""

    batch_size: int = 200
    chunks_root: str = "./output/chunks"
    run_log_dir: str = "./output/ingest_runs"


class EmbeddingConfig(BaseModel):
    """Embedding provider configuration."""

    model: str = "text-embedding-3-large"
    api_base: str = "https://api.openai.com/v1"
    dimensions: int = 3072
    delay_seconds: float = 0.0
    max_retries: int = 3
    timeout_seconds: float = 60.0
    mode: str = "direct"  # "direct" (per-row calls) or "batch" (Batch API request file)
    submit_batch: bool = False
    dry_run: bool = False
    where: str = ""
    limit: int = 0
    output_dir: str = "./output/embeddings"


class DatabaseConfig(BaseModel):
    """Relational store connection settings."""

    host: str | None = None
    port: int = 5432
    name: str | None = None
    user: str | None = None
    password: str | None = None
    sslmode: str | None = None
    db_schema: str = "rag"

    @property
    def url(self) -> str:
        """SQLAlchemy URL for the configured PostgreSQL database."""
        base = (
            f"postgresql+psycopg2://{quote(self.user or '', safe='')}:"
            f"{quote(self.password or '', safe='')}@{self.host}:{self.port}/"
            f"{quote(self.name or '', safe='')}"
        )
        if self.sslmode:
            return f"{base}?sslmode={quote(self.sslmode, safe='')}"
        return base


class StorageConfig(BaseModel):
    """Filesystem locations for intermediate output."""

    output_dir: str = "./output"
    extract_dir: str = "./output/books"


class AppConfig(BaseModel):
    """Root application configuration."""

    app: AppInfo = Field(default_factory=AppInfo)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    ingest: IngestConfig = Field(default_factory=IngestConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    # API keys loaded from environment
    openai_api_key: str | None = None

    def require_database(self) -> DatabaseConfig:
        """Return the database settings, failing if any required value is unset.

        Raises:
            ConfigurationError: Naming every missing environment variable.
        """
        required = {
            "RAG_DB_HOST": self.database.host,
            "RAG_DB_NAME": self.database.name,
            "RAG_DB_USER": self.database.user,
            "RAG_DB_PASSWORD": self.database.password,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigurationError(
                f"Missing DB env vars: {', '.join(missing)} "
                "(RAG_DB_PORT and RAG_DB_SSLMODE are optional)"
            )
        return self.database

    def require_api_key(self) -> str:
        """Return the embedding API key.

        Raises:
            ConfigurationError: If OPENAI_API_KEY is not set.
        """
        if not self.openai_api_key:
            raise ConfigurationError("Missing env var: OPENAI_API_KEY")
        return self.openai_api_key


def _apply_database_env(database: DatabaseConfig) -> None:
    """Override database settings from RAG_DB_* environment variables."""
    database.host = os.getenv("RAG_DB_HOST", database.host)
    database.name = os.getenv("RAG_DB_NAME", database.name)
    database.user = os.getenv("RAG_DB_USER", database.user)
    database.password = os.getenv("RAG_DB_PASSWORD", database.password)
    database.sslmode = os.getenv("RAG_DB_SSLMODE", database.sslmode)

    port = os.getenv("RAG_DB_PORT")
    if port:
        try:
            database.port = int(port)
        except ValueError as exc:
            raise ConfigurationError(f"RAG_DB_PORT must be an integer, got {port!r}") from exc


def load_config(config_path: str | Path = "config.yaml") -> AppConfig:
    """Load configuration from YAML file and environment variables.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Fully populated AppConfig instance.
    """
    load_dotenv()

    yaml_data: dict = {}
    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file, encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f) or {}

    config = AppConfig(**yaml_data)

    _apply_database_env(config.database)
    config.openai_api_key = os.getenv("OPENAI_API_KEY", config.openai_api_key)

    return config
