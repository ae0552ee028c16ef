"""One-command pipeline: EPUB -> Markdown -> chunks -> database."""

import logging
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.engine import Engine

from bookrag.config import AppConfig
from bookrag.ingestion.chunker import BookChunker
from bookrag.ingestion.extractor import EpubExtractor
from bookrag.ingestion.ingest import ChunkIngestor
from bookrag.models.run_log import IngestStats, run_stamp

logger = logging.getLogger(__name__)


@dataclass
class BookResult:
    """What the pipeline produced for one EPUB."""

    epub_path: Path
    book_slug: str
    chunk_count: int
    ingest: IngestStats


def list_epubs(input_path: str | Path) -> list[Path]:
    """A single ``.epub`` file, or the sorted ``.epub`` files of a directory.

    Raises:
        FileNotFoundError: If input_path does not exist.
    """
    path = Path(input_path).resolve()
    if not path.exists():
        raise FileNotFoundError(f"Input not found: {path}")
    if path.is_file():
        return [path]
    return sorted(p for p in path.iterdir() if p.is_file() and p.suffix.lower() == ".epub")


def work_dir_name(epub_path: Path) -> str:
    return re.sub(r"[^a-zA-Z0-9._-]+", "_", epub_path.stem)[:80]


def run_pipeline(
    input_path: str | Path,
    config: AppConfig,
    engine: Engine,
    keep_workdir: bool = False,
) -> list[BookResult]:
    """Extract, chunk and ingest each EPUB found at ``input_path``.

    Books are processed one after another, each in its own subdirectory of
    a temporary work directory that is removed afterwards unless
    ``keep_workdir`` is set.

    Raises:
        ConfigurationError: If chunking bounds are invalid.
        FileNotFoundError: If no EPUB files are found.
    """
    chunker = BookChunker(config.chunking)
    ingestor = ChunkIngestor(engine, config.ingest, schema=config.database.db_schema)
    extractor = EpubExtractor()

    epubs = list_epubs(input_path)
    if not epubs:
        raise FileNotFoundError(f"No .epub files found at: {Path(input_path).resolve()}")

    work_dir = Path(tempfile.mkdtemp(prefix=f"rag-pipeline-{run_stamp()}-"))
    results: list[BookResult] = []

    try:
        for epub_path in epubs:
            book_work = work_dir / work_dir_name(epub_path)
            extract_root = book_work / "extract"
            chunk_root = book_work / "chunks"

            logger.info("=== Processing EPUB: %s ===", epub_path)
            book_dir = extractor.extract(epub_path, extract_root)
            run = chunker.chunk_book(book_dir, chunk_root / book_dir.name)
            stats = ingestor.ingest(chunk_root)

            results.append(
                BookResult(
                    epub_path=epub_path,
                    book_slug=run.book_slug,
                    chunk_count=len(run.records),
                    ingest=stats,
                )
            )
    finally:
        if keep_workdir:
            logger.warning("Kept workdir: %s", work_dir)
        else:
            shutil.rmtree(work_dir, ignore_errors=True)

    return results
