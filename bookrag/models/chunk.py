"""Chunk record models for the JSON Lines chunk file."""

from pydantic import BaseModel, ConfigDict, Field

from bookrag.models.book import BookProvenance

CHUNK_STRATEGY = "paragraph_window_v1"


class ChapterProvenance(BaseModel):
    """Chapter-level provenance of a chunk."""

    order: int
    id: str
    title: str
    file: str
    href: str | None = None


class ChunkMeta(BaseModel):
    """How a chunk was produced and where it sits in its chapter."""

    model_config = ConfigDict(populate_by_name=True)

    index: int
    strategy: str = CHUNK_STRATEGY
    approx_tokens: int = Field(alias="approxTokens")
    max_tokens: int = Field(alias="maxTokens")
    overlap_tokens: int = Field(alias="overlapTokens")
    start_paragraph: int = Field(alias="startParagraph")
    end_paragraph_exclusive: int = Field(alias="endParagraphExclusive")
    sha256: str


class ChunkRecord(BaseModel):
    """A self-describing, persisted chunk of book text."""

    model_config = ConfigDict(populate_by_name=True)

    chunk_id: str = Field(alias="chunkId")
    book: BookProvenance
    chapter: ChapterProvenance
    chunk: ChunkMeta
    text: str

    def to_json_line(self) -> str:
        """Serialize using the camelCase keys of the chunk file format."""
        return self.model_dump_json(by_alias=True)


def make_chunk_id(book_slug: str, index: int) -> str:
    """Build the deterministic chunk identity for a book-wide index."""
    return f"chunk_{book_slug}_{index:06d}"
