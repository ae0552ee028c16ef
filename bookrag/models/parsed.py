"""Extraction metadata written next to the per-chapter Markdown files."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class SourceInfo(BaseModel):
    """Where and when a book was extracted."""

    model_config = ConfigDict(populate_by_name=True)

    epub_path: str = Field(alias="epubPath")
    extracted_at: str = Field(alias="extractedAt")


class BookMetadata(BaseModel):
    """Dublin Core metadata read from the EPUB package document."""

    model_config = ConfigDict(populate_by_name=True)

    title: str | None = None
    author: str | None = None
    language: str | None = None
    publisher: str | None = None
    rights: str | None = None
    description: str | None = None
    isbn: str | None = None
    cover_id: str | None = Field(default=None, alias="coverId")


class TocEntry(BaseModel):
    """A flattened table-of-contents entry."""

    id: str
    href: str | None = None
    order: int
    title: str | None = None
    level: int | None = None


class ChapterEntry(BaseModel):
    """A spine item written out as one Markdown chapter file."""

    model_config = ConfigDict(populate_by_name=True)

    order: int
    id: str
    title: str
    file: str  # Relative to the book directory, forward slashes
    href: str | None = None
    word_count: int = Field(default=0, alias="wordCount")


class ExtractMetadata(BaseModel):
    """Contents of ``metadata.json`` in an extracted book directory."""

    source: SourceInfo
    book: BookMetadata = Field(default_factory=BookMetadata)
    toc: list[TocEntry] = Field(default_factory=list)
    chapters: list[ChapterEntry] = Field(default_factory=list)
