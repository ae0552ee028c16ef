"""EPUB extraction into per-chapter Markdown files plus metadata."""

import logging
import re
from datetime import datetime, timezone
from pathlib import Path

import chardet
import ebooklib
from bs4 import (
    BeautifulSoup,
    Comment,
    Declaration,
    Doctype,
    NavigableString,
    ProcessingInstruction,
    Tag,
)
from ebooklib import epub
from slugify import slugify

from bookrag.models.parsed import (
    BookMetadata,
    ChapterEntry,
    ExtractMetadata,
    SourceInfo,
    TocEntry,
)

logger = logging.getLogger(__name__)

METADATA_FILE_NAME = "metadata.json"
CHAPTERS_DIR_NAME = "chapters"

HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
BLOCK_TAGS = [*HEADING_TAGS, "p", "li", "blockquote", "pre", "figcaption", "dt", "dd"]

# Containers whose loose text forms its own paragraph
CONTAINER_TAGS = {
    "html", "body", "div", "section", "article", "main", "header", "footer", "aside", "nav",
    "figure", "table", "thead", "tbody", "tfoot", "tr", "td", "th", "caption",
    "ul", "ol", "dl", "hr",
}

SKIPPED_STRINGS = (Comment, Declaration, Doctype, ProcessingInstruction)


def to_safe_slug(text: str | None) -> str:
    """Lowercase ASCII slug with dashes, transliterating non-Latin text.

    Returns an empty string when nothing sluggable survives.
    """
    return slugify(text or "")


def estimate_word_count(text: str) -> int:
    """Count words, ignoring code spans, link targets, and punctuation."""
    cleaned = re.sub(r"`[^`]*`", " ", text)
    cleaned = re.sub(r"\[[^\]]*\]\([^)]*\)", " ", cleaned)
    cleaned = re.sub(r"[\W_]+", " ", cleaned).strip()
    if not cleaned:
        return 0
    return len(cleaned.split())


def strip_front_matter(markdown: str) -> str:
    """Drop a leading ``---`` delimited front-matter block if present."""
    if not markdown.startswith("---"):
        return markdown
    end = markdown.find("\n---", 3)
    if end == -1:
        return markdown
    return markdown[end + len("\n---"):].lstrip()


def read_text_file(file_path: str | Path) -> str:
    """Read a text file with encoding detection.

    Tries UTF-8 first, then uses chardet for fallback detection.

    Args:
        file_path: Path to the text file.

    Returns:
        The file content as a string.
    """
    path = Path(file_path)
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        pass

    raw_bytes = path.read_bytes()
    detected = chardet.detect(raw_bytes)
    encoding = detected.get("encoding") or "utf-8"
    confidence = detected.get("confidence") or 0

    if confidence < 0.7:
        logger.warning(
            "Low confidence encoding detection for %s: %s (%.0f%%)",
            path,
            encoding,
            confidence * 100,
        )

    try:
        return raw_bytes.decode(encoding)
    except (UnicodeDecodeError, LookupError):
        logger.error("Failed to decode file: %s", path)
        return raw_bytes.decode("utf-8", errors="replace")


def _collapse(text: str) -> str:
    lines = (re.sub(r"[ \t\f\v]+", " ", line).strip() for line in text.split("\n"))
    return "\n".join(line for line in lines if line)


def _render_block(element: Tag) -> str:
    if element.name == "pre":
        text = element.get_text().strip("\n")
    else:
        text = _collapse(element.get_text())
    if not text.strip():
        return ""

    if element.name in HEADING_TAGS:
        level = int(element.name[1])
        return f"{'#' * level} {' '.join(text.split())}"
    if element.name == "li":
        return f"- {text}"
    if element.name == "blockquote":
        return "\n".join(f"> {line}" for line in text.split("\n"))
    if element.name == "pre":
        return f"```\n{text}\n```"
    return text


def _walk(node: Tag, blocks: list[str], pending: list[str]) -> None:
    """Emit blocks in document order; loose text is buffered in ``pending``."""

    def flush() -> None:
        text = _collapse("".join(pending))
        pending.clear()
        if text:
            blocks.append(text)

    for child in node.children:
        if isinstance(child, SKIPPED_STRINGS):
            continue
        if isinstance(child, NavigableString):
            pending.append(str(child))
        elif child.name in BLOCK_TAGS:
            flush()
            rendered = _render_block(child)
            if rendered:
                blocks.append(rendered)
        elif child.name in CONTAINER_TAGS:
            flush()
            _walk(child, blocks, pending)
            flush()
        else:
            _walk(child, blocks, pending)


def html_to_markdown(html: str | bytes) -> str:
    """Convert chapter XHTML into blank-line separated Markdown blocks.

    Headings become ATX headings, list items ``- `` bullets, quotes ``> ``
    lines and images ``![alt](src)``. The head, scripts and styles are
    dropped. Text outside block elements (in ``<div>``, table cells or
    directly in the body) is kept as plain paragraphs, in document order.

    Args:
        html: Raw chapter markup.

    Returns:
        Markdown text, possibly empty.
    """
    soup = BeautifulSoup(html, "lxml")

    for tag in soup(["head", "script", "style"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for img in soup.find_all("img"):
        src = (img.get("src") or "").strip()
        alt = (img.get("alt") or "").strip()
        img.replace_with(f"![{alt}]({src})" if src else "")

    blocks: list[str] = []
    pending: list[str] = []
    _walk(soup.body or soup, blocks, pending)
    text = _collapse("".join(pending))
    if text:
        blocks.append(text)

    return "\n\n".join(blocks)


class EpubExtractor:
    """Extracts an EPUB into ``<out>/<slug>/`` as Markdown chapters.

    Writes ``metadata.json``, ``chapters/NNN_<title-slug>.md`` (one per
    spine item, in reading order) and a small ``README.md`` index.
    """

    def extract(
        self,
        epub_path: str | Path,
        out_root: str | Path,
        book_slug: str | None = None,
        max_chapters: int | None = None,
    ) -> Path:
        """Extract one EPUB.

        Args:
            epub_path: Path to the ``.epub`` file.
            out_root: Directory receiving the book directory.
            book_slug: Override for the book directory name.
            max_chapters: Refuse books with more spine items than this.

        Returns:
            Path to the written book directory.

        Raises:
            FileNotFoundError: If epub_path does not exist.
            ValueError: If the EPUB has no spine items or too many.
        """
        source = Path(epub_path).resolve()
        if not source.exists():
            raise FileNotFoundError(f"EPUB not found: {source}")

        book = epub.read_epub(str(source))
        book_meta = self._read_metadata(book)

        slug = (
            book_slug
            or to_safe_slug(book_meta.title)
            or to_safe_slug(source.stem)
            or "book"
        )
        book_dir = Path(out_root).resolve() / slug
        chapters_dir = book_dir / CHAPTERS_DIR_NAME
        chapters_dir.mkdir(parents=True, exist_ok=True)

        toc = self._flatten_toc(book.toc)
        ordered_ids = self._spine_ids(book)

        if not ordered_ids:
            raise ValueError("No chapters/spine items found in EPUB.")
        if max_chapters and len(ordered_ids) > max_chapters:
            raise ValueError(
                f"Refusing to extract {len(ordered_ids)} chapters (max_chapters={max_chapters})."
            )

        chapters: list[ChapterEntry] = []
        for i, item_id in enumerate(ordered_ids):
            item = book.get_item_with_id(item_id)
            if item is None or item.get_type() != ebooklib.ITEM_DOCUMENT:
                logger.debug("Skipping non-document spine item: %s", item_id)
                continue

            markdown = strip_front_matter(html_to_markdown(item.get_content())).strip()
            href = item.get_name()
            title = self._chapter_title(toc, item_id, href, item, i)

            file_name = f"{i + 1:03d}_{to_safe_slug(title)[:60].strip('-') or 'chapter'}.md"
            contents = f"# {title}\n\n" + (f"{markdown}\n" if markdown else "")
            (chapters_dir / file_name).write_text(contents, encoding="utf-8")

            chapters.append(
                ChapterEntry(
                    order=i,
                    id=item_id,
                    title=title,
                    file=f"{CHAPTERS_DIR_NAME}/{file_name}",
                    href=href,
                    word_count=estimate_word_count(contents),
                )
            )

        metadata = ExtractMetadata(
            source=SourceInfo(
                epub_path=str(source),
                extracted_at=datetime.now(timezone.utc).isoformat(),
            ),
            book=book_meta,
            toc=toc,
            chapters=chapters,
        )
        (book_dir / METADATA_FILE_NAME).write_text(
            metadata.model_dump_json(by_alias=True, indent=2), encoding="utf-8"
        )
        (book_dir / "README.md").write_text(self._render_index(metadata, slug), encoding="utf-8")

        logger.info("Extracted %d chapters to %s", len(chapters), book_dir)
        return book_dir

    def _metadata(self, book: epub.EpubBook, namespace: str, name: str) -> list:
        try:
            return book.get_metadata(namespace, name)
        except KeyError:
            return []

    def _read_metadata(self, book: epub.EpubBook) -> BookMetadata:
        def first(name: str) -> str | None:
            values = self._metadata(book, "DC", name)
            if not values:
                return None
            value = values[0][0]
            return str(value).strip() if value else None

        return BookMetadata(
            title=first("title"),
            author=first("creator"),
            language=first("language"),
            publisher=first("publisher"),
            rights=first("rights"),
            description=first("description"),
            isbn=self._find_isbn(book),
            cover_id=self._find_cover_id(book),
        )

    def _find_isbn(self, book: epub.EpubBook) -> str | None:
        for value, attrs in self._metadata(book, "DC", "identifier"):
            if not value:
                continue
            scheme = " ".join(str(v) for v in (attrs or {}).values()).lower()
            text = str(value).strip()
            if "isbn" in scheme:
                return text
            if text.lower().startswith("urn:isbn:"):
                return text[len("urn:isbn:"):]
        return None

    def _find_cover_id(self, book: epub.EpubBook) -> str | None:
        for _, attrs in self._metadata(book, "OPF", "cover"):
            if attrs and attrs.get("content"):
                return str(attrs["content"])
        return None

    def _flatten_toc(self, entries: list, level: int = 0, out: list[TocEntry] | None = None) -> list[TocEntry]:
        """Flatten ebooklib's nested Link/Section tuples in document order."""
        flat: list[TocEntry] = [] if out is None else out
        for entry in entries:
            children: list = []
            if isinstance(entry, tuple):
                entry, children = entry[0], list(entry[1])

            href = getattr(entry, "href", None) or None
            title = getattr(entry, "title", None)
            uid = getattr(entry, "uid", None)
            order = len(flat)
            flat.append(
                TocEntry(
                    id=str(uid or href or order),
                    href=href,
                    order=order,
                    title=title,
                    level=level,
                )
            )
            if children:
                self._flatten_toc(children, level + 1, flat)
        return flat

    def _spine_ids(self, book: epub.EpubBook) -> list[str]:
        ids: list[str] = []
        for entry in book.spine:
            item_id = entry[0] if isinstance(entry, tuple) else entry
            if item_id:
                ids.append(str(item_id))
        return ids

    def _chapter_title(
        self,
        toc: list[TocEntry],
        item_id: str,
        href: str,
        item: epub.EpubItem,
        position: int,
    ) -> str:
        """TOC title matching id or href, else the item title, else a fallback."""
        for entry in toc:
            entry_href = (entry.href or "").split("#")[0]
            if entry.title and (entry.id == item_id or (entry_href and entry_href == href)):
                return entry.title
        item_title = getattr(item, "title", None)
        if item_title:
            return str(item_title)
        return f"Chapter {position + 1}"

    def _render_index(self, metadata: ExtractMetadata, slug: str) -> str:
        lines = [f"# {metadata.book.title or slug}", ""]
        if metadata.book.author:
            lines.append(f"- Author: {metadata.book.author}")
        if metadata.book.language:
            lines.append(f"- Language: {metadata.book.language}")
        lines.extend(["", "## Chapters", ""])
        lines.extend(f"- [{c.title}](./{c.file})" for c in metadata.chapters)
        lines.append("")
        return "\n".join(lines)
