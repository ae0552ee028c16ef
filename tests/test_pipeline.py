"""Tests for the end-to-end pipeline and the command-line interface."""

import runpy
from pathlib import Path

import pytest
from sqlalchemy import text
from sqlalchemy.engine import Engine

from bookrag.cli import apply_overrides, build_parser, main
from bookrag.config import AppConfig
from bookrag.ingestion.extractor import EpubExtractor
from bookrag.pipeline import list_epubs, run_pipeline, work_dir_name

CHAPTERS = [
    ("Introduction", "<h1>Introduction</h1><p>Hello world.</p><p>Second paragraph here.</p>"),
    ("Second", "<h1>Second</h1><p>More text follows.</p>"),
]

ENV_VARS = [
    "RAG_DB_HOST",
    "RAG_DB_PORT",
    "RAG_DB_NAME",
    "RAG_DB_USER",
    "RAG_DB_PASSWORD",
    "OPENAI_API_KEY",
]


@pytest.fixture
def config() -> AppConfig:
    app_config = AppConfig()
    app_config.database.db_schema = ""
    return app_config


@pytest.fixture
def work_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    monkeypatch.setattr("bookrag.pipeline.tempfile.mkdtemp", lambda prefix: str(path))
    return path


class TestListEpubs:
    def test_single_file(self, tmp_path: Path) -> None:
        path = tmp_path / "a.epub"
        path.write_bytes(b"")
        assert list_epubs(path) == [path.resolve()]

    def test_directory_sorted_and_filtered(self, tmp_path: Path) -> None:
        for name in ["b.epub", "a.EPUB", "notes.txt"]:
            (tmp_path / name).write_bytes(b"")
        assert [p.name for p in list_epubs(tmp_path)] == ["a.EPUB", "b.epub"]

    def test_missing_input(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            list_epubs(tmp_path / "missing")

    def test_work_dir_name_is_filesystem_safe(self) -> None:
        assert work_dir_name(Path("/x/My Book (2nd ed).epub")) == "My_Book_2nd_ed_"


class TestRunPipeline:
    def test_epub_to_database(
        self, engine: Engine, config: AppConfig, tmp_path: Path, work_dir: Path, epub_factory
    ) -> None:
        source = epub_factory(tmp_path / "books" / "test.epub", CHAPTERS)

        results = run_pipeline(source, config, engine)

        assert len(results) == 1
        result = results[0]
        assert result.book_slug == "my-test-book"
        assert result.chunk_count == 2
        assert result.ingest.chunks_upserted == 2
        assert result.ingest.books_upserted == 1
        with engine.connect() as conn:
            rows = conn.execute(
                text("SELECT chunk_id, chapter_title, text FROM chunks ORDER BY chunk_id")
            ).all()
        assert [r[0] for r in rows] == ["chunk_my-test-book_000000", "chunk_my-test-book_000001"]
        assert rows[0][1] == "Introduction"
        assert rows[0][2] == "# Introduction\n\nHello world.\n\nSecond paragraph here."
        assert not work_dir.exists()

    def test_rerun_is_idempotent(
        self, engine: Engine, config: AppConfig, tmp_path: Path, work_dir: Path, epub_factory
    ) -> None:
        source = epub_factory(tmp_path / "books" / "test.epub", CHAPTERS)

        run_pipeline(source, config, engine, keep_workdir=True)
        run_pipeline(source, config, engine, keep_workdir=True)

        with engine.connect() as conn:
            assert conn.execute(text("SELECT COUNT(*) FROM chunks")).scalar_one() == 2
        assert (work_dir / "test" / "chunks" / "my-test-book" / "chunks.jsonl").exists()

    def test_directory_of_books(
        self, engine: Engine, config: AppConfig, tmp_path: Path, work_dir: Path, epub_factory
    ) -> None:
        books = tmp_path / "books"
        epub_factory(books / "one.epub", CHAPTERS, title="Book One")
        epub_factory(books / "two.epub", CHAPTERS[:1], title="Book Two")

        results = run_pipeline(books, config, engine)

        assert [r.book_slug for r in results] == ["book-one", "book-two"]
        assert [r.chunk_count for r in results] == [2, 1]

    def test_empty_directory_raises(
        self, engine: Engine, config: AppConfig, tmp_path: Path
    ) -> None:
        with pytest.raises(FileNotFoundError, match="No .epub files"):
            run_pipeline(tmp_path, config, engine)


class TestCli:
    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ENV_VARS:
            monkeypatch.delenv(name, raising=False)

    def test_overrides_only_given_options(self) -> None:
        args = build_parser().parse_args(
            ["chunk", "-i", "book", "--max-tokens", "300", "--no-chapter-header"]
        )
        config = apply_overrides(AppConfig(), args)
        assert config.chunking.max_tokens == 300
        assert config.chunking.overlap_tokens == 80
        assert config.chunking.include_chapter_header is False

    def test_embed_flags(self) -> None:
        args = build_parser().parse_args(["embed", "--mode", "batch", "--dry-run", "--limit", "5"])
        config = apply_overrides(AppConfig(), args)
        assert config.embedding.mode == "batch"
        assert config.embedding.dry_run is True
        assert config.embedding.limit == 5

    def test_extract_and_chunk(self, tmp_path: Path, epub_factory) -> None:
        source = epub_factory(tmp_path / "test.epub", CHAPTERS)
        missing_config = str(tmp_path / "none.yaml")
        out = tmp_path / "books"

        assert main(["--config", missing_config, "extract", str(source), "--out", str(out)]) == 0
        book_dir = out / "my-test-book"
        assert (book_dir / "metadata.json").exists()

        assert main(["--config", missing_config, "chunk", "-i", str(book_dir)]) == 0
        lines = (book_dir / "chunks" / "chunks.jsonl").read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2

    def test_invalid_bounds_exit_code(self, tmp_path: Path) -> None:
        code = main(
            [
                "--config",
                str(tmp_path / "none.yaml"),
                "chunk",
                "-i",
                str(tmp_path),
                "--max-tokens",
                "10",
                "--overlap-tokens",
                "10",
            ]
        )
        assert code == 2

    def test_missing_database_settings_exit_code(
        self, tmp_path: Path, capsys: pytest.CaptureFixture
    ) -> None:
        code = main(["--config", str(tmp_path / "none.yaml"), "ingest"])
        assert code == 2
        assert "RAG_DB_HOST" in capsys.readouterr().err

    def test_runtime_failure_exit_code(self, tmp_path: Path) -> None:
        code = main(["--config", str(tmp_path / "none.yaml"), "chunk", "-i", str(tmp_path / "nope")])
        assert code == 1

    def test_extractor_output_feeds_chunker(self, tmp_path: Path, epub_factory) -> None:
        source = epub_factory(tmp_path / "test.epub", CHAPTERS)
        book_dir = EpubExtractor().extract(source, tmp_path / "out")
        missing_config = str(tmp_path / "none.yaml")
        out = tmp_path / "chunks"

        assert main(["--config", missing_config, "chunk", "-i", str(book_dir), "-o", str(out)]) == 0
        assert (out / "chunks.jsonl").exists()

    def test_invalid_port_exit_code(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
    ) -> None:
        monkeypatch.setenv("RAG_DB_PORT", "not-a-port")
        code = main(["--config", str(tmp_path / "none.yaml"), "chunk", "-i", str(tmp_path)])
        assert code == 2
        assert "RAG_DB_PORT" in capsys.readouterr().err

    def test_run_script_reports_configuration_errors(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("RAG_DB_PORT", "not-a-port")
        argv = ["run.py", "--config", str(tmp_path / "none.yaml"), "chunk", "-i", str(tmp_path)]
        monkeypatch.setattr("sys.argv", argv)
        script = Path(__file__).resolve().parents[1] / "run.py"

        with pytest.raises(SystemExit) as excinfo:
            runpy.run_path(str(script), run_name="__main__")

        assert excinfo.value.code == 2
