"""Chunk record assembly for extracted books."""

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path

from bookrag.config import ChunkingConfig
from bookrag.ingestion.chunk_files import CHUNK_FILE_NAME, write_chunk_file
from bookrag.ingestion.extractor import METADATA_FILE_NAME, read_text_file
from bookrag.ingestion.windows import build_windows, check_window_bounds, split_paragraphs
from bookrag.models.book import BookProvenance
from bookrag.models.chunk import (
    CHUNK_STRATEGY,
    ChapterProvenance,
    ChunkMeta,
    ChunkRecord,
    make_chunk_id,
)
from bookrag.models.parsed import ChapterEntry, ExtractMetadata

logger = logging.getLogger(__name__)


def sha256_hex(text: str) -> str:
    """Hex SHA-256 digest of the UTF-8 encoded text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def load_extract_metadata(book_dir: str | Path) -> ExtractMetadata:
    """Read ``metadata.json`` from an extracted book directory.

    Raises:
        FileNotFoundError: If the metadata file is missing.
    """
    metadata_path = Path(book_dir) / METADATA_FILE_NAME
    if not metadata_path.exists():
        raise FileNotFoundError(f"Missing metadata.json at: {metadata_path}")
    return ExtractMetadata.model_validate_json(metadata_path.read_text(encoding="utf-8"))


@dataclass
class ChunkRun:
    """Outcome of chunking one book."""

    book_slug: str
    records: list[ChunkRecord] = field(default_factory=list)
    chapters_processed: int = 0
    chapters_skipped: int = 0
    chunks_path: Path | None = None


class BookChunker:
    """Turns an extracted book into sequentially indexed chunk records.

    Each chapter is split into paragraphs and packed into overlapping
    windows. Chunk indices run across the whole book in chapter order.

    Args:
        config: ChunkingConfig with max_tokens, overlap_tokens and
                include_chapter_header settings.

    Raises:
        ConfigurationError: If the token bounds are invalid.
    """

    def __init__(self, config: ChunkingConfig) -> None:
        check_window_bounds(config.max_tokens, config.overlap_tokens)
        self._config = config

    def chunk_book(self, book_dir: str | Path, out_dir: str | Path | None = None) -> ChunkRun:
        """Chunk every chapter of a book and write ``chunks.jsonl``.

        Args:
            book_dir: Directory produced by the EPUB extractor.
            out_dir: Output directory (defaults to ``<book_dir>/chunks``).

        Returns:
            ChunkRun with the records and the written file path.
        """
        book_path = Path(book_dir).resolve()
        run = self.build_records(book_path)

        target_dir = Path(out_dir).resolve() if out_dir else book_path / "chunks"
        run.chunks_path = target_dir / CHUNK_FILE_NAME
        write_chunk_file(run.chunks_path, run.records)

        logger.info("Wrote %d chunks: %s", len(run.records), run.chunks_path)
        return run

    def build_records(self, book_dir: str | Path) -> ChunkRun:
        """Build chunk records for a book without writing them."""
        book_path = Path(book_dir)
        metadata = load_extract_metadata(book_path)
        slug = book_path.resolve().name

        book = BookProvenance(
            slug=slug,
            title=metadata.book.title,
            author=metadata.book.author,
            language=metadata.book.language,
            publisher=metadata.book.publisher,
            isbn=metadata.book.isbn,
            source_epub_path=metadata.source.epub_path,
            extracted_at=metadata.source.extracted_at,
        )

        run = ChunkRun(book_slug=slug)
        next_index = 0

        for chapter in sorted(metadata.chapters, key=lambda c: c.order):
            chapter_path = book_path / chapter.file
            if not chapter_path.exists():
                logger.warning("Missing chapter file; skipping: %s", chapter_path)
                run.chapters_skipped += 1
                continue

            records, next_index = self.chunk_chapter(
                text=read_text_file(chapter_path),
                chapter=chapter,
                book=book,
                first_index=next_index,
            )
            run.records.extend(records)
            run.chapters_processed += 1

        return run

    def chunk_chapter(
        self,
        text: str,
        chapter: ChapterEntry,
        book: BookProvenance,
        first_index: int,
    ) -> tuple[list[ChunkRecord], int]:
        """Window one chapter and assemble its records.

        Args:
            text: Chapter Markdown.
            chapter: Chapter entry from the extraction metadata.
            book: Book provenance copied onto each record.
            first_index: Book-wide index of this chapter's first chunk.

        Returns:
            The chapter's records and the index for the next chapter.
        """
        paragraphs = self.chapter_paragraphs(text, chapter.title)
        windows = build_windows(
            paragraphs,
            max_tokens=self._config.max_tokens,
            overlap_tokens=self._config.overlap_tokens,
        )

        chapter_info = ChapterProvenance(
            order=chapter.order,
            id=chapter.id,
            title=chapter.title,
            file=chapter.file,
            href=chapter.href,
        )

        records: list[ChunkRecord] = []
        index = first_index
        for window in windows:
            chunk_text = window.text.strip()
            if not chunk_text:
                continue

            records.append(
                ChunkRecord(
                    chunk_id=make_chunk_id(book.slug, index),
                    book=book,
                    chapter=chapter_info,
                    chunk=ChunkMeta(
                        index=index,
                        strategy=CHUNK_STRATEGY,
                        approx_tokens=window.approx_tokens,
                        max_tokens=self._config.max_tokens,
                        overlap_tokens=self._config.overlap_tokens,
                        start_paragraph=window.start,
                        end_paragraph_exclusive=window.end_exclusive,
                        sha256=sha256_hex(chunk_text),
                    ),
                    text=chunk_text,
                )
            )
            index += 1

        return records, index

    def chapter_paragraphs(self, text: str, title: str) -> list[str]:
        """Split chapter text, optionally forcing the title heading first.

        With ``include_chapter_header`` the paragraph ``# <title>`` is placed
        first and any identical paragraph elsewhere is dropped. Empty
        chapters stay empty.
        """
        paragraphs = split_paragraphs(text)
        if not paragraphs or not self._config.include_chapter_header:
            return paragraphs

        header = f"# {title}"
        return [header, *(p for p in paragraphs if p != header)]
