"""Tests for chunk file ingestion."""

from pathlib import Path
from unittest.mock import patch

import pytest
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from bookrag.config import ConfigurationError, IngestConfig
from bookrag.ingestion.chunk_files import SKIP_INVALID_JSON, SKIP_MISSING_FIELDS, write_chunk_file
from bookrag.ingestion.ingest import ChunkIngestor
from bookrag.storage.repository import upsert_chunk_batch


def _ingestor(engine: Engine, batch_size: int = 2) -> ChunkIngestor:
    return ChunkIngestor(engine, IngestConfig(batch_size=batch_size), schema="")


def _chunk_count(engine: Engine) -> int:
    with engine.connect() as conn:
        return conn.execute(text("SELECT COUNT(*) FROM chunks")).scalar_one()


def _snapshot(engine: Engine, table: str = "chunks") -> list[tuple]:
    key = "chunk_id" if table == "chunks" else "book_slug"
    with engine.connect() as conn:
        return [tuple(row) for row in conn.execute(text(f"SELECT * FROM {table} ORDER BY {key}"))]


class TestChunkIngestorConfig:
    @pytest.mark.parametrize("batch_size", [0, -1])
    def test_rejects_non_positive_batch_size(self, engine: Engine, batch_size: int) -> None:
        with pytest.raises(ConfigurationError, match="batch-size"):
            _ingestor(engine, batch_size)


class TestIngest:
    def test_ingests_all_records_in_batches(
        self, engine: Engine, tmp_path: Path, record_factory
    ) -> None:
        write_chunk_file(tmp_path / "book" / "chunks.jsonl", [record_factory(i) for i in range(5)])

        stats = _ingestor(engine, batch_size=2).ingest(tmp_path)

        assert stats.files_scanned == 1
        assert stats.books_upserted == 1
        assert stats.chunks_upserted == 5
        assert stats.chunks_failed == 0
        assert stats.finished_at is not None
        assert stats.sample is not None
        assert stats.sample["chunkId"] == "chunk_test-book_000000"
        assert _chunk_count(engine) == 5

    def test_reingest_does_not_duplicate(
        self, engine: Engine, tmp_path: Path, record_factory
    ) -> None:
        write_chunk_file(tmp_path / "chunks.jsonl", [record_factory(i) for i in range(3)])

        _ingestor(engine).ingest(tmp_path)
        before = _snapshot(engine)
        assert len(before) == 3
        books_before = _snapshot(engine, "books")
        second = _ingestor(engine).ingest(tmp_path)

        assert second.chunks_upserted == 3
        assert _chunk_count(engine) == 3
        assert _snapshot(engine) == before
        assert _snapshot(engine, "books") == books_before

    def test_books_upserted_once_per_slug(
        self, engine: Engine, tmp_path: Path, record_factory
    ) -> None:
        write_chunk_file(
            tmp_path / "a" / "chunks.jsonl",
            [record_factory(0, slug="alpha"), record_factory(1, slug="alpha")],
        )
        write_chunk_file(tmp_path / "b" / "chunks.jsonl", [record_factory(0, slug="beta")])

        stats = _ingestor(engine).ingest(tmp_path)

        assert stats.files_scanned == 2
        assert stats.books_upserted == 2
        with engine.connect() as conn:
            slugs = conn.execute(text("SELECT book_slug FROM books ORDER BY book_slug")).scalars().all()
        assert slugs == ["alpha", "beta"]

    def test_malformed_lines_are_counted_by_reason(
        self, engine: Engine, tmp_path: Path, record_factory
    ) -> None:
        lines = [
            record_factory(0).to_json_line(),
            "{broken",
            '{"chunkId": "c", "book": {}, "text": "t"}',
            "",
            record_factory(1).to_json_line(),
        ]
        (tmp_path / "chunks.jsonl").write_text("\n".join(lines), encoding="utf-8")

        stats = _ingestor(engine).ingest(tmp_path)

        assert stats.chunks_upserted == 2
        assert stats.lines_skipped == 2
        assert stats.skip_reasons == {SKIP_INVALID_JSON: 1, SKIP_MISSING_FIELDS: 1}

    def test_failed_batch_is_counted_and_ingest_continues(
        self, engine: Engine, tmp_path: Path, record_factory
    ) -> None:
        write_chunk_file(tmp_path / "chunks.jsonl", [record_factory(i) for i in range(4)])

        calls = {"n": 0}

        def flaky_upsert(conn, records, schema="rag"):
            calls["n"] += 1
            if calls["n"] == 1:
                raise OperationalError("INSERT", {}, Exception("boom"))
            return upsert_chunk_batch(conn, records, schema)

        with patch("bookrag.ingestion.ingest.upsert_chunk_batch", side_effect=flaky_upsert):
            stats = _ingestor(engine, batch_size=2).ingest(tmp_path)

        assert stats.chunks_failed == 2
        assert stats.chunks_upserted == 2
        assert len(stats.notes) == 1
        assert stats.notes[0].startswith("Failed batch insert for")
        assert _chunk_count(engine) == 2

    def test_failed_final_batch_note(self, engine: Engine, tmp_path: Path, record_factory) -> None:
        write_chunk_file(tmp_path / "chunks.jsonl", [record_factory(0)])

        with patch(
            "bookrag.ingestion.ingest.upsert_chunk_batch",
            side_effect=OperationalError("INSERT", {}, Exception("boom")),
        ):
            stats = _ingestor(engine, batch_size=10).ingest(tmp_path)

        assert stats.chunks_failed == 1
        assert stats.notes[0].startswith("Failed final batch insert for")

    def test_empty_root(self, engine: Engine, tmp_path: Path) -> None:
        stats = _ingestor(engine).ingest(tmp_path)
        assert stats.files_scanned == 0
        assert stats.chunks_upserted == 0
        assert stats.sample is None

    def test_missing_root_raises(self, engine: Engine, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            _ingestor(engine).ingest(tmp_path / "missing")
