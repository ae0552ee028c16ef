"""Book ingestion: extraction, chunking and loading."""

from bookrag.ingestion.chunker import BookChunker
from bookrag.ingestion.extractor import EpubExtractor
from bookrag.ingestion.ingest import ChunkIngestor
from bookrag.ingestion.windows import Window, build_windows, estimate_tokens, split_paragraphs

__all__ = [
    "BookChunker",
    "ChunkIngestor",
    "EpubExtractor",
    "Window",
    "build_windows",
    "estimate_tokens",
    "split_paragraphs",
]
