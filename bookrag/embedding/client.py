"""HTTP client for an OpenAI-compatible embeddings API."""

import logging
import time
from collections.abc import Sequence
from pathlib import Path

import requests

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 409, 429, 500, 502, 503, 504})


class EmbeddingError(RuntimeError):
    """A failed embedding or batch API call."""

    def __init__(self, message: str, status_code: int | None = None, retryable: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


def format_vector_literal(vector: Sequence[float], precision: int = 8) -> str:
    """Serialize a vector as ``[x1,x2,...]`` with fixed decimal precision."""
    return "[" + ",".join(f"{float(x):.{precision}f}" for x in vector) + "]"


class EmbeddingClient:
    """Calls ``POST {api_base}/embeddings`` one input at a time.

    Retryable failures (timeouts, 429 and 5xx responses) are retried up to
    ``max_retries`` times after a fixed ``retry_delay``; other non-success
    responses raise immediately.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        api_base: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        session: requests.Session | None = None,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._max_retries = max(max_retries, 0)
        self._retry_delay = retry_delay
        self._session = session or requests.Session()

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    def embed(self, text: str) -> list[float]:
        """Return the embedding vector for one input string.

        Raises:
            EmbeddingError: If the call fails after all retries.
        """
        attempt = 0
        while True:
            try:
                return self._embed_once(text)
            except EmbeddingError as exc:
                if not exc.retryable or attempt >= self._max_retries:
                    raise
                attempt += 1
                logger.warning(
                    "Embedding call failed (%s); retry %d/%d in %.1fs",
                    exc,
                    attempt,
                    self._max_retries,
                    self._retry_delay,
                )
                time.sleep(self._retry_delay)

    def _embed_once(self, text: str) -> list[float]:
        try:
            response = self._session.post(
                f"{self._api_base}/embeddings",
                headers=self._headers(),
                json={"model": self.model, "input": text},
                timeout=self._timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise EmbeddingError(f"Embedding request failed: {exc}", retryable=True) from exc

        if not response.ok:
            raise EmbeddingError(
                f"Embedding request failed: {response.status_code} {response.reason} {response.text}",
                status_code=response.status_code,
                retryable=response.status_code in RETRYABLE_STATUS_CODES,
            )

        try:
            vector = response.json()["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise EmbeddingError("Embedding response had no data[0].embedding") from exc
        return [float(x) for x in vector]

    def upload_batch_file(self, file_path: str | Path) -> str:
        """Upload a Batch API request file and return its file id."""
        path = Path(file_path)
        with open(path, "rb") as f:
            response = self._session.post(
                f"{self._api_base}/files",
                headers=self._headers(),
                data={"purpose": "batch"},
                files={"file": (path.name, f)},
                timeout=self._timeout,
            )
        if not response.ok:
            raise EmbeddingError(
                f"File upload failed: {response.status_code} {response.reason} {response.text}",
                status_code=response.status_code,
            )
        file_id = response.json().get("id")
        if not file_id:
            raise EmbeddingError("File upload returned no id")
        return str(file_id)

    def create_batch(self, input_file_id: str, completion_window: str = "24h") -> str:
        """Create an embeddings batch job and return its id."""
        response = self._session.post(
            f"{self._api_base}/batches",
            headers=self._headers(),
            json={
                "input_file_id": input_file_id,
                "endpoint": "/v1/embeddings",
                "completion_window": completion_window,
            },
            timeout=self._timeout,
        )
        if not response.ok:
            raise EmbeddingError(
                f"Batch create failed: {response.status_code} {response.reason} {response.text}",
                status_code=response.status_code,
            )
        batch_id = response.json().get("id")
        if not batch_id:
            raise EmbeddingError("Batch create returned no id")
        return str(batch_id)
