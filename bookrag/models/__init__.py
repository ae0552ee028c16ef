"""Data models for the bookrag pipeline."""

from bookrag.models.book import BookProvenance
from bookrag.models.chunk import (
    CHUNK_STRATEGY,
    ChapterProvenance,
    ChunkMeta,
    ChunkRecord,
    make_chunk_id,
)
from bookrag.models.parsed import (
    BookMetadata,
    ChapterEntry,
    ExtractMetadata,
    SourceInfo,
    TocEntry,
)
from bookrag.models.run_log import EmbedRunLog, IngestStats

__all__ = [
    "CHUNK_STRATEGY",
    "BookMetadata",
    "BookProvenance",
    "ChapterEntry",
    "ChapterProvenance",
    "ChunkMeta",
    "ChunkRecord",
    "EmbedRunLog",
    "ExtractMetadata",
    "IngestStats",
    "SourceInfo",
    "TocEntry",
    "make_chunk_id",
]
