"""Reading and writing JSON Lines chunk files."""

import json
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from bookrag.models.chunk import ChunkRecord

logger = logging.getLogger(__name__)

CHUNK_FILE_NAME = "chunks.jsonl"

# Skip reasons reported in run summaries
SKIP_INVALID_JSON = "invalid_json"
SKIP_MISSING_FIELDS = "missing_fields"
SKIP_INVALID_SCHEMA = "invalid_schema"


@dataclass(frozen=True)
class ParsedLine:
    record: ChunkRecord


@dataclass(frozen=True)
class SkippedLine:
    reason: str
    line_number: int


LineOutcome = ParsedLine | SkippedLine


def write_chunk_file(path: str | Path, records: Iterable[ChunkRecord]) -> int:
    """Write records as UTF-8 JSON Lines.

    The file ends with a newline only when at least one record was written.

    Args:
        path: Destination file; parent directories are created.
        records: Records in chunk-index order.

    Returns:
        Number of records written.
    """
    lines = [record.to_json_line() for record in records]
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    content = "\n".join(lines) + ("\n" if lines else "")
    target.write_text(content, encoding="utf-8")
    return len(lines)


def discover_chunk_files(root: str | Path) -> list[Path]:
    """Recursively find ``*.jsonl`` files below ``root``.

    Files named ``chunks.jsonl`` sort first, then everything by path.

    Raises:
        FileNotFoundError: If root does not exist.
    """
    root_path = Path(root)
    if not root_path.exists():
        raise FileNotFoundError(f"chunks root not found: {root_path}")

    found = [
        p for p in root_path.rglob("*") if p.is_file() and p.name.lower().endswith(".jsonl")
    ]
    return sorted(found, key=lambda p: (p.name != CHUNK_FILE_NAME, str(p)))


def parse_chunk_line(line: str, line_number: int = 0) -> LineOutcome:
    """Parse one chunk file line without ever raising.

    Args:
        line: A non-blank line of the chunk file.
        line_number: 1-based position, kept for diagnostics.

    Returns:
        ParsedLine with the record, or SkippedLine with a reason.
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return SkippedLine(reason=SKIP_INVALID_JSON, line_number=line_number)

    if not isinstance(data, dict):
        return SkippedLine(reason=SKIP_INVALID_JSON, line_number=line_number)

    book = data.get("book")
    slug = book.get("slug") if isinstance(book, dict) else None
    if not data.get("chunkId") or not slug or not data.get("text"):
        return SkippedLine(reason=SKIP_MISSING_FIELDS, line_number=line_number)

    try:
        record = ChunkRecord.model_validate(data)
    except ValidationError:
        return SkippedLine(reason=SKIP_INVALID_SCHEMA, line_number=line_number)

    return ParsedLine(record=record)


def iter_chunk_file(path: str | Path) -> Iterator[LineOutcome]:
    """Stream parse outcomes for every non-blank line of a chunk file."""
    with open(path, encoding="utf-8", errors="replace") as f:
        for line_number, raw in enumerate(f, start=1):
            line = raw.strip()
            if not line:
                continue
            yield parse_chunk_line(line, line_number)
