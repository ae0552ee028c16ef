"""Shared fixtures: a file-backed SQLite engine, chunk records and sample EPUBs."""

from collections.abc import Iterator
from pathlib import Path

import pytest
from ebooklib import epub
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from bookrag.models.book import BookProvenance
from bookrag.models.chunk import ChapterProvenance, ChunkMeta, ChunkRecord, make_chunk_id
from bookrag.storage.database import initialize_database


@pytest.fixture
def engine(tmp_path: Path) -> Iterator[Engine]:
    db_engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}")
    initialize_database(db_engine, schema="")
    yield db_engine
    db_engine.dispose()


def make_record(index: int, slug: str = "test-book", text: str | None = None) -> ChunkRecord:
    body = text if text is not None else f"Chunk number {index} text."
    return ChunkRecord(
        chunk_id=make_chunk_id(slug, index),
        book=BookProvenance(
            slug=slug,
            title="Test Book",
            author="Test Author",
            language="en",
            source_epub_path="/books/test.epub",
            extracted_at="2026-01-01T00:00:00+00:00",
        ),
        chapter=ChapterProvenance(order=0, id="c0", title="One", file="chapters/001_one.md"),
        chunk=ChunkMeta(
            index=index,
            approx_tokens=len(body.split()),
            max_tokens=450,
            overlap_tokens=80,
            start_paragraph=index,
            end_paragraph_exclusive=index + 1,
            sha256="0" * 64,
        ),
        text=body,
    )


@pytest.fixture
def record_factory():
    return make_record


def write_epub(
    path: Path,
    chapters: list[tuple[str, str]],
    title: str = "My Test Book",
    identifier: str = "urn:isbn:9781234567897",
) -> Path:
    """Write a small EPUB whose spine and TOC follow ``chapters`` (title, body html)."""
    book = epub.EpubBook()
    book.set_identifier(identifier)
    book.set_title(title)
    book.set_language("en")
    book.add_author("Jane Doe")

    items = []
    for i, (chapter_title, body) in enumerate(chapters, start=1):
        item = epub.EpubHtml(
            title=chapter_title, file_name=f"c{i}.xhtml", lang="en", uid=f"c{i}"
        )
        item.content = f"<html><head><title>{chapter_title}</title></head><body>{body}</body></html>"
        book.add_item(item)
        items.append(item)

    book.toc = tuple(
        epub.Link(item.file_name, chapter_title, item.id)
        for item, (chapter_title, _) in zip(items, chapters)
    )
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    book.spine = items

    path.parent.mkdir(parents=True, exist_ok=True)
    epub.write_epub(str(path), book)
    return path


@pytest.fixture
def epub_factory():
    return write_epub
