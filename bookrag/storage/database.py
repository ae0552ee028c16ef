"""Database engine creation and schema bootstrap."""

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from bookrag.config import DatabaseConfig


def get_engine(database: DatabaseConfig) -> Engine:
    """Create an engine for the configured PostgreSQL database.

    Args:
        database: Connection settings (see ``AppConfig.require_database``).

    Returns:
        A SQLAlchemy Engine with pre-ping enabled.
    """
    return create_engine(database.url, pool_pre_ping=True)


def qualified(table: str, schema: str = "") -> str:
    """Table name prefixed with its schema, if one is set."""
    return f"{schema}.{table}" if schema else table


def check_connection(engine: Engine) -> None:
    """Run ``SELECT 1``; raises the driver error if the database is unreachable."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def initialize_database(engine: Engine, schema: str = "rag", embedding_dimensions: int = 3072) -> None:
    """Create the ``books`` and ``chunks`` tables if they don't exist.

    On PostgreSQL the embedding column uses the pgvector ``vector`` type;
    other dialects store the vector literal as text.

    Args:
        engine: Target engine.
        schema: Schema holding the tables ("" for none).
        embedding_dimensions: Length of stored embedding vectors.
    """
    is_postgres = engine.dialect.name == "postgresql"
    timestamp_type = "TIMESTAMPTZ" if is_postgres else "TIMESTAMP"
    embedding_type = f"vector({embedding_dimensions})" if is_postgres else "TEXT"

    statements: list[str] = []
    if is_postgres:
        statements.append("CREATE EXTENSION IF NOT EXISTS vector")
        if schema:
            statements.append(f"CREATE SCHEMA IF NOT EXISTS {schema}")

    statements.append(
        f"""
        CREATE TABLE IF NOT EXISTS {qualified("books", schema)} (
            book_slug TEXT PRIMARY KEY,
            title TEXT,
            author TEXT,
            language TEXT,
            publisher TEXT,
            isbn TEXT,
            source_epub_path TEXT,
            extracted_at {timestamp_type}
        )
        """
    )
    statements.append(
        f"""
        CREATE TABLE IF NOT EXISTS {qualified("chunks", schema)} (
            chunk_id TEXT PRIMARY KEY,
            book_slug TEXT NOT NULL REFERENCES {qualified("books", schema)} (book_slug),
            chapter_order INTEGER NOT NULL,
            chapter_id TEXT NOT NULL,
            chapter_title TEXT,
            chapter_file TEXT,
            chapter_href TEXT,
            chunk_index INTEGER NOT NULL,
            chunk_strategy TEXT NOT NULL,
            approx_tokens INTEGER NOT NULL,
            max_tokens INTEGER NOT NULL,
            overlap_tokens INTEGER NOT NULL,
            start_paragraph INTEGER NOT NULL,
            end_paragraph_exclusive INTEGER NOT NULL,
            text_sha256 TEXT NOT NULL,
            text TEXT NOT NULL,
            embedding {embedding_type},
            embedding_model TEXT,
            embedding_created_at {timestamp_type}
        )
        """
    )

    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))
