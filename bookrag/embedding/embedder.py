"""Attach embeddings to stored chunks that don't have one yet."""

import json
import logging
import time
from pathlib import Path
from typing import Any

import requests
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from bookrag.config import EmbeddingConfig
from bookrag.embedding.client import EmbeddingClient, EmbeddingError, format_vector_literal
from bookrag.models.run_log import EmbedRunLog, run_stamp, utc_now_iso
from bookrag.storage.repository import (
    PendingChunk,
    select_chunks_missing_embedding,
    update_chunk_embedding,
)

logger = logging.getLogger(__name__)


def build_batch_requests(rows: list[PendingChunk], model: str) -> list[dict[str, Any]]:
    """One Batch API embeddings request per chunk, keyed by chunk id."""
    return [
        {
            "custom_id": row.chunk_id,
            "method": "POST",
            "url": "/v1/embeddings",
            "body": {"model": model, "input": row.text},
        }
        for row in rows
    ]


def write_batch_requests(path: str | Path, requests_: list[dict[str, Any]]) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    lines = [json.dumps(r, ensure_ascii=False) for r in requests_]
    target.write_text("\n".join(lines) + ("\n" if lines else ""), encoding="utf-8")
    return target


class ChunkEmbedder:
    """Embeds chunks whose ``embedding`` column is NULL.

    In ``direct`` mode each selected chunk is sent to the provider in turn,
    with a fixed ``delay_seconds`` pause between calls, and the vector is
    written back immediately. A failed call is logged and counted and the
    run moves on. In ``batch`` mode a Batch API request file is written and
    optionally submitted. ``dry_run`` selects rows and writes the request
    file without calling the provider.

    Args:
        engine: SQLAlchemy engine for the chunk store.
        config: EmbeddingConfig.
        client: Provider client; required unless dry-running.
        schema: Schema holding the chunks table.
    """

    def __init__(
        self,
        engine: Engine,
        config: EmbeddingConfig,
        client: EmbeddingClient | None = None,
        schema: str = "rag",
    ) -> None:
        self._engine = engine
        self._config = config
        self._client = client
        self._schema = schema

    def run(self, out_dir: str | Path | None = None) -> EmbedRunLog:
        run_id = run_stamp()
        output = Path(out_dir or self._config.output_dir)
        log = EmbedRunLog(run_id=run_id, model=self._config.model, dry_run=self._config.dry_run)

        with self._engine.connect() as conn:
            rows = select_chunks_missing_embedding(
                conn,
                schema=self._schema,
                where=self._config.where,
                limit=self._config.limit,
            )
        log.rows_selected = len(rows)

        batch_requests = build_batch_requests(rows, self._config.model)
        if batch_requests:
            log.sample = batch_requests[0]

        if self._config.dry_run or self._config.mode == "batch":
            input_path = write_batch_requests(
                output / f"openai-batch-input.{run_id}.jsonl", batch_requests
            )
            log.input_jsonl = str(input_path)
            logger.info("Prepared %d embedding requests: %s", len(rows), input_path)
            if not self._config.dry_run and self._config.submit_batch:
                self._submit(input_path, log)
        else:
            self._embed_rows(rows, log)

        log.finished_at = utc_now_iso()
        return log

    def _require_client(self) -> EmbeddingClient:
        if self._client is None:
            raise ValueError("An EmbeddingClient is required unless dry_run is set")
        return self._client

    def _submit(self, input_path: Path, log: EmbedRunLog) -> None:
        client = self._require_client()
        log.file_id = client.upload_batch_file(input_path)
        log.batch_id = client.create_batch(log.file_id)
        log.submitted = True
        logger.info("Submitted batch job: %s", log.batch_id)

    def _embed_rows(self, rows: list[PendingChunk], log: EmbedRunLog) -> None:
        client = self._require_client()

        for i, row in enumerate(rows):
            if i > 0 and self._config.delay_seconds > 0:
                time.sleep(self._config.delay_seconds)

            log.processed += 1
            try:
                vector = client.embed(row.text)
                with self._engine.begin() as conn:
                    update_chunk_embedding(
                        conn,
                        row.chunk_id,
                        format_vector_literal(vector),
                        self._config.model,
                        schema=self._schema,
                    )
            except (EmbeddingError, requests.RequestException, SQLAlchemyError) as exc:
                log.failed += 1
                log.failures.append(f"{row.chunk_id}: {exc}")
                logger.warning("Failed to embed %s: %s", row.chunk_id, exc)
                continue

            log.succeeded += 1

        logger.info(
            "Embedding complete. processed=%d succeeded=%d failed=%d",
            log.processed,
            log.succeeded,
            log.failed,
        )
