"""Command-line interface for the bookrag pipeline stages."""

import argparse
import logging
import sys
from pathlib import Path

from sqlalchemy.engine import Engine

from bookrag.config import AppConfig, ConfigurationError, load_config
from bookrag.embedding.client import EmbeddingClient
from bookrag.embedding.embedder import ChunkEmbedder
from bookrag.ingestion.chunker import BookChunker
from bookrag.ingestion.extractor import EpubExtractor
from bookrag.ingestion.ingest import ChunkIngestor
from bookrag.models.run_log import run_stamp, write_run_log
from bookrag.pipeline import run_pipeline
from bookrag.storage.database import check_connection, get_engine, initialize_database

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bookrag",
        description="Turn EPUB books into retrieval-ready chunks in a relational store.",
    )
    parser.add_argument("--config", default="config.yaml", help="YAML configuration file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    extract = sub.add_parser("extract", help="Extract an EPUB into Markdown chapters")
    extract.add_argument("epub_path", help="Path to input .epub")
    extract.add_argument("-o", "--out", default=None, help="Output directory")
    extract.add_argument("--book-slug", default=None, help="Override output folder name")
    extract.add_argument("--max-chapters", type=int, default=None, help="Safety limit on spine items")

    chunk = sub.add_parser("chunk", help="Chunk extracted Markdown chapters into JSON Lines")
    chunk.add_argument("-i", "--in", dest="book_dir", required=True, help="Extracted book directory")
    chunk.add_argument("-o", "--out", default=None, help="Output dir (defaults to <in>/chunks)")
    _add_chunking_args(chunk)
    chunk.add_argument(
        "--no-chapter-header",
        action="store_true",
        help="Do not prepend '# <chapter title>' as the first paragraph",
    )

    ingest = sub.add_parser("ingest", help="Upsert chunk JSON Lines files into the database")
    ingest.add_argument("--chunks-root", default=None, help="Root directory scanned for *.jsonl")
    ingest.add_argument("--batch-size", type=int, default=None, help="Chunk rows per INSERT batch")
    ingest.add_argument("--run-log", default=None, help="Path of the JSON run log")
    ingest.add_argument("--init-db", action="store_true", help="Create tables if missing")

    embed = sub.add_parser("embed", help="Embed stored chunks that have no embedding")
    embed.add_argument("--model", default=None, help="Embedding model")
    embed.add_argument("--where", default=None, help="Extra SQL filter (without WHERE)")
    embed.add_argument("--limit", type=int, default=None, help="Limit number of chunks")
    embed.add_argument("--delay", type=float, default=None, help="Seconds between API calls")
    embed.add_argument("--mode", choices=["direct", "batch"], default=None)
    embed.add_argument("--submit", action="store_true", help="Submit the batch file (batch mode)")
    embed.add_argument("--dry-run", action="store_true", help="Select rows and write requests only")
    embed.add_argument("--out", default=None, help="Directory for request files and logs")
    embed.add_argument("--run-log", default=None, help="Path of the JSON run log")

    pipeline = sub.add_parser("pipeline", help="EPUB -> Markdown -> chunks -> database")
    pipeline.add_argument("input", help="An .epub file or a directory of .epub files")
    _add_chunking_args(pipeline)
    pipeline.add_argument("--batch-size", type=int, default=None, help="DB ingest batch size")
    pipeline.add_argument("--keep-workdir", action="store_true", help="Keep temporary workdir")
    pipeline.add_argument("--init-db", action="store_true", help="Create tables if missing")

    return parser


def _add_chunking_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--max-tokens", type=int, default=None, help="Approx token budget per chunk (words)"
    )
    parser.add_argument(
        "--overlap-tokens", type=int, default=None, help="Approx overlap between chunks (words)"
    )


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Copy command-line options that were given onto the loaded config."""
    overrides = {
        ("chunking", "max_tokens"): "max_tokens",
        ("chunking", "overlap_tokens"): "overlap_tokens",
        ("ingest", "batch_size"): "batch_size",
        ("ingest", "chunks_root"): "chunks_root",
        ("embedding", "model"): "model",
        ("embedding", "where"): "where",
        ("embedding", "limit"): "limit",
        ("embedding", "delay_seconds"): "delay",
        ("embedding", "mode"): "mode",
    }
    for (section, field), arg_name in overrides.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            setattr(getattr(config, section), field, value)

    if getattr(args, "no_chapter_header", False):
        config.chunking.include_chapter_header = False
    if getattr(args, "dry_run", False):
        config.embedding.dry_run = True
    if getattr(args, "submit", False):
        config.embedding.submit_batch = True
    return config


def _prepare_database(engine: Engine, config: AppConfig, init_db: bool = False) -> None:
    check_connection(engine)
    if init_db:
        initialize_database(
            engine,
            schema=config.database.db_schema,
            embedding_dimensions=config.embedding.dimensions,
        )


def cmd_extract(config: AppConfig, args: argparse.Namespace) -> None:
    out = args.out or config.storage.extract_dir
    EpubExtractor().extract(
        args.epub_path, out, book_slug=args.book_slug, max_chapters=args.max_chapters
    )


def cmd_chunk(config: AppConfig, args: argparse.Namespace) -> None:
    BookChunker(config.chunking).chunk_book(args.book_dir, args.out)


def cmd_ingest(config: AppConfig, args: argparse.Namespace) -> None:
    engine = get_engine(config.require_database())
    try:
        ingestor = ChunkIngestor(engine, config.ingest, schema=config.database.db_schema)
        _prepare_database(engine, config, init_db=args.init_db)
        stats = ingestor.ingest(config.ingest.chunks_root)
    finally:
        engine.dispose()

    log_path = args.run_log or Path(config.ingest.run_log_dir) / f"{run_stamp()}.json"
    write_run_log(log_path, stats)
    logger.info("Run log: %s", log_path)


def cmd_embed(config: AppConfig, args: argparse.Namespace) -> None:
    settings = config.embedding
    client = None
    if not settings.dry_run and (settings.mode == "direct" or settings.submit_batch):
        client = EmbeddingClient(
            api_key=config.require_api_key(),
            model=settings.model,
            api_base=settings.api_base,
            timeout=settings.timeout_seconds,
            max_retries=settings.max_retries,
            retry_delay=max(settings.delay_seconds, 1.0),
        )

    engine = get_engine(config.require_database())
    try:
        _prepare_database(engine, config)
        log = ChunkEmbedder(engine, settings, client, schema=config.database.db_schema).run(args.out)
    finally:
        engine.dispose()

    out_dir = Path(args.out or settings.output_dir)
    log_path = args.run_log or out_dir / f"openai-batch-run.{log.run_id}.json"
    write_run_log(log_path, log)
    logger.info("Run log: %s", log_path)


def cmd_pipeline(config: AppConfig, args: argparse.Namespace) -> None:
    BookChunker(config.chunking)  # validate bounds before connecting
    engine = get_engine(config.require_database())
    try:
        _prepare_database(engine, config, init_db=args.init_db)
        results = run_pipeline(args.input, config, engine, keep_workdir=args.keep_workdir)
    finally:
        engine.dispose()

    for result in results:
        log_path = Path(config.ingest.run_log_dir) / f"{run_stamp()}_{result.book_slug}.json"
        write_run_log(log_path, result.ingest)
        logger.info(
            "%s: %d chunks, %d upserted, %d failed (run log %s)",
            result.book_slug,
            result.chunk_count,
            result.ingest.chunks_upserted,
            result.ingest.chunks_failed,
            log_path,
        )


COMMANDS = {
    "extract": cmd_extract,
    "chunk": cmd_chunk,
    "ingest": cmd_ingest,
    "embed": cmd_embed,
    "pipeline": cmd_pipeline,
}


def main(argv: list[str] | None = None) -> int:
    """Run one CLI command and return the process exit status."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = apply_overrides(load_config(args.config), args)
        COMMANDS[args.command](config, args)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    except Exception:
        logger.exception("%s failed", args.command)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
