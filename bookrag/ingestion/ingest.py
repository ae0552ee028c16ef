"""Batched, idempotent ingestion of chunk files into the relational store."""

import logging
from pathlib import Path

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from bookrag.config import ConfigurationError, IngestConfig
from bookrag.ingestion.chunk_files import SkippedLine, discover_chunk_files, iter_chunk_file
from bookrag.models.chunk import ChunkRecord
from bookrag.models.run_log import IngestStats, utc_now_iso
from bookrag.storage.repository import upsert_book, upsert_chunk_batch

logger = logging.getLogger(__name__)


class ChunkIngestor:
    """Upserts ``books`` and ``chunks`` rows from JSON Lines chunk files.

    Books are upserted on the first occurrence of each slug; chunks in
    batches of ``batch_size``. A failed chunk batch is rolled back, counted
    and noted, and ingestion carries on with the next batch.

    Args:
        engine: SQLAlchemy engine for the target database.
        config: IngestConfig with the batch size.
        schema: Schema holding the tables ("" for none).
    """

    def __init__(self, engine: Engine, config: IngestConfig, schema: str = "rag") -> None:
        if config.batch_size <= 0:
            raise ConfigurationError("--batch-size must be > 0")
        self._engine = engine
        self._config = config
        self._schema = schema

    def ingest(self, root: str | Path) -> IngestStats:
        """Ingest every chunk file found below ``root``.

        Raises:
            FileNotFoundError: If root does not exist.
        """
        root_path = Path(root).resolve()
        stats = IngestStats(source_root=str(root_path))

        files = discover_chunk_files(root_path)
        stats.files_scanned = len(files)
        seen_books: set[str] = set()

        for file_path in files:
            self._ingest_file(file_path, stats, seen_books)

        stats.finished_at = utc_now_iso()
        logger.info(
            "Ingest complete. books_upserted=%d chunks_upserted=%d failed=%d skipped_lines=%d",
            stats.books_upserted,
            stats.chunks_upserted,
            stats.chunks_failed,
            stats.lines_skipped,
        )
        return stats

    def _ingest_file(self, file_path: Path, stats: IngestStats, seen_books: set[str]) -> None:
        batch: list[ChunkRecord] = []

        for outcome in iter_chunk_file(file_path):
            if isinstance(outcome, SkippedLine):
                logger.debug(
                    "Skipping line %d of %s: %s", outcome.line_number, file_path, outcome.reason
                )
                stats.record_skip(outcome.reason)
                continue

            record = outcome.record
            if record.book.slug not in seen_books:
                with self._engine.begin() as conn:
                    upsert_book(conn, record.book, self._schema)
                seen_books.add(record.book.slug)
                stats.books_upserted += 1

            if stats.sample is None:
                stats.sample = record.model_dump(by_alias=True)

            batch.append(record)
            if len(batch) >= self._config.batch_size:
                self._flush(batch, file_path, stats, final=False)
                batch = []

        self._flush(batch, file_path, stats, final=True)

    def _flush(
        self, batch: list[ChunkRecord], file_path: Path, stats: IngestStats, final: bool
    ) -> None:
        if not batch:
            return
        try:
            with self._engine.begin() as conn:
                upsert_chunk_batch(conn, batch, self._schema)
        except SQLAlchemyError as exc:
            stats.chunks_failed += len(batch)
            label = "final batch" if final else "batch"
            stats.notes.append(f"Failed {label} insert for {file_path}: {exc}")
            logger.error("Failed %s insert for %s (%d rows): %s", label, file_path, len(batch), exc)
            return
        stats.chunks_upserted += len(batch)
