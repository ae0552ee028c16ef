"""Book provenance model."""

from pydantic import BaseModel, ConfigDict, Field


class BookProvenance(BaseModel):
    """Book-level fields copied verbatim onto every chunk of a book."""

    model_config = ConfigDict(populate_by_name=True)

    slug: str
    title: str | None = None
    author: str | None = None
    language: str | None = None
    publisher: str | None = None
    isbn: str | None = None
    source_epub_path: str = Field(default="", alias="sourceEpubPath")
    extracted_at: str = Field(default="", alias="extractedAt")
