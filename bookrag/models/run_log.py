"""Run log models written once per stage invocation."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def run_stamp() -> str:
    """Filesystem-safe timestamp used to name run artefacts."""
    return utc_now_iso().replace(":", "-").replace(".", "-").replace("+", "_")


class IngestStats(BaseModel):
    """Summary of one chunk ingestion run."""

    model_config = ConfigDict(populate_by_name=True)

    started_at: str = Field(default_factory=utc_now_iso, alias="startedAt")
    finished_at: str | None = Field(default=None, alias="finishedAt")
    source_root: str = Field(alias="sourceRoot")
    files_scanned: int = Field(default=0, alias="filesScanned")
    lines_skipped: int = Field(default=0, alias="linesSkipped")
    skip_reasons: dict[str, int] = Field(default_factory=dict, alias="skipReasons")
    books_upserted: int = Field(default=0, alias="booksUpserted")
    chunks_upserted: int = Field(default=0, alias="chunksUpserted")
    chunks_failed: int = Field(default=0, alias="chunksFailed")
    sample: dict[str, Any] | None = None
    notes: list[str] = Field(default_factory=list)

    def record_skip(self, reason: str) -> None:
        self.lines_skipped += 1
        self.skip_reasons[reason] = self.skip_reasons.get(reason, 0) + 1


class EmbedRunLog(BaseModel):
    """Summary of one embedding run."""

    model_config = ConfigDict(populate_by_name=True)

    run_id: str = Field(alias="runId")
    model: str
    started_at: str = Field(default_factory=utc_now_iso, alias="startedAt")
    finished_at: str | None = Field(default=None, alias="finishedAt")
    dry_run: bool = Field(default=False, alias="dryRun")
    rows_selected: int = Field(default=0, alias="rowsSelected")
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    failures: list[str] = Field(default_factory=list)
    sample: dict[str, Any] | None = None
    input_jsonl: str | None = Field(default=None, alias="inputJsonl")
    submitted: bool = False
    batch_id: str | None = Field(default=None, alias="batchId")
    file_id: str | None = Field(default=None, alias="fileId")


def write_run_log(path: str | Path, log: BaseModel) -> Path:
    """Write a run log as indented JSON, creating parent directories."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(log.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
    return target
