"""Upserts and queries for the books and chunks tables."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

from bookrag.models.book import BookProvenance
from bookrag.models.chunk import ChunkRecord
from bookrag.storage.database import qualified

BOOK_COLUMNS = [
    "book_slug",
    "title",
    "author",
    "language",
    "publisher",
    "isbn",
    "source_epub_path",
    "extracted_at",
]

# Embedding columns are written separately by the embedding stage
CHUNK_COLUMNS = [
    "chunk_id",
    "book_slug",
    "chapter_order",
    "chapter_id",
    "chapter_title",
    "chapter_file",
    "chapter_href",
    "chunk_index",
    "chunk_strategy",
    "approx_tokens",
    "max_tokens",
    "overlap_tokens",
    "start_paragraph",
    "end_paragraph_exclusive",
    "text_sha256",
    "text",
]


@dataclass(frozen=True)
class PendingChunk:
    """A stored chunk that has no embedding yet."""

    chunk_id: str
    text: str


def _upsert_sql(table: str, columns: list[str], key: str, row_count: int) -> str:
    tuples = ",\n".join(
        "(" + ", ".join(f":{col}_{i}" for col in columns) + ")" for i in range(row_count)
    )
    updates = ",\n".join(f"{col} = EXCLUDED.{col}" for col in columns if col != key)
    return (
        f"INSERT INTO {table} ({', '.join(columns)})\n"
        f"VALUES {tuples}\n"
        f"ON CONFLICT ({key}) DO UPDATE SET\n{updates}"
    )


def book_row(book: BookProvenance) -> dict[str, Any]:
    return {
        "book_slug": book.slug,
        "title": book.title,
        "author": book.author,
        "language": book.language,
        "publisher": book.publisher,
        "isbn": book.isbn,
        "source_epub_path": book.source_epub_path or None,
        "extracted_at": book.extracted_at or None,
    }


def chunk_row(record: ChunkRecord) -> dict[str, Any]:
    return {
        "chunk_id": record.chunk_id,
        "book_slug": record.book.slug,
        "chapter_order": record.chapter.order,
        "chapter_id": record.chapter.id,
        "chapter_title": record.chapter.title,
        "chapter_file": record.chapter.file,
        "chapter_href": record.chapter.href,
        "chunk_index": record.chunk.index,
        "chunk_strategy": record.chunk.strategy,
        "approx_tokens": record.chunk.approx_tokens,
        "max_tokens": record.chunk.max_tokens,
        "overlap_tokens": record.chunk.overlap_tokens,
        "start_paragraph": record.chunk.start_paragraph,
        "end_paragraph_exclusive": record.chunk.end_paragraph_exclusive,
        "text_sha256": record.chunk.sha256,
        "text": record.text,
    }


def upsert_book(conn: Connection, book: BookProvenance, schema: str = "rag") -> None:
    """Insert a book row, or overwrite it if the slug already exists."""
    sql = _upsert_sql(qualified("books", schema), BOOK_COLUMNS, "book_slug", 1)
    params = {f"{col}_0": value for col, value in book_row(book).items()}
    conn.execute(text(sql), params)


def upsert_chunk_batch(conn: Connection, records: Sequence[ChunkRecord], schema: str = "rag") -> int:
    """Upsert chunk rows with a single multi-row INSERT.

    Embedding columns are left untouched on conflict.

    Returns:
        Number of rows sent.
    """
    if not records:
        return 0

    sql = _upsert_sql(qualified("chunks", schema), CHUNK_COLUMNS, "chunk_id", len(records))
    params: dict[str, Any] = {}
    for i, record in enumerate(records):
        for col, value in chunk_row(record).items():
            params[f"{col}_{i}"] = value

    conn.execute(text(sql), params)
    return len(records)


def select_chunks_missing_embedding(
    conn: Connection, schema: str = "rag", where: str = "", limit: int = 0
) -> list[PendingChunk]:
    """Select chunks whose embedding is still NULL, ordered by chunk id.

    Args:
        conn: Open connection.
        schema: Schema holding the chunks table.
        where: Optional trusted SQL fragment ANDed onto the filter.
        limit: Maximum rows (0 for no limit).
    """
    sql = f"SELECT chunk_id, text FROM {qualified('chunks', schema)} WHERE embedding IS NULL"
    params: dict[str, Any] = {}
    if where.strip():
        sql += f" AND ({where.strip()})"
    sql += " ORDER BY chunk_id"
    if limit > 0:
        sql += " LIMIT :limit"
        params["limit"] = limit

    rows = conn.execute(text(sql), params).all()
    return [PendingChunk(chunk_id=row[0], text=row[1]) for row in rows]


def update_chunk_embedding(
    conn: Connection, chunk_id: str, vector_literal: str, model: str, schema: str = "rag"
) -> None:
    """Store an embedding (as a bracketed literal) on an existing chunk row."""
    sql = (
        f"UPDATE {qualified('chunks', schema)} SET embedding = :embedding, "
        "embedding_model = :model, embedding_created_at = CURRENT_TIMESTAMP "
        "WHERE chunk_id = :chunk_id"
    )
    conn.execute(text(sql), {"embedding": vector_literal, "model": model, "chunk_id": chunk_id})
