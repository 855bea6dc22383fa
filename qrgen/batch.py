"""Batch generation with bounded concurrency and per-item isolation.

Requests run in windows of ``max_concurrency``: every item in a window gets
its own thread and cancellation token, the window is awaited for at most
``timeout`` seconds, and stragglers are cancelled and reported as timeouts.
One item failing never affects another.
"""

import csv
import io
import json
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field

from qrgen.cancel import CancellationToken
from qrgen.errors import BatchItemFailure, BatchItemTimeout, InvalidFormat, PayloadError
from qrgen.logging import audit, get_logger, trace
from qrgen.models import GenerationResult, PayloadRequest, StyleOptions, request_from_dict

log = get_logger("batch")

DEFAULT_MAX_CONCURRENCY = 10
DEFAULT_TIMEOUT = 30.0

MAX_CSV_ROWS = 100
CSV_REQUIRED_COLUMNS = ("name", "type", "data")


@dataclass(frozen=True)
class BatchSuccess:
    index: int
    request: PayloadRequest | dict
    result: GenerationResult


@dataclass(frozen=True)
class BatchFailure:
    index: int
    request: PayloadRequest | dict
    reason: str
    error: Exception


@dataclass
class BatchOutcome:
    successful: list[BatchSuccess] = field(default_factory=list)
    failed: list[BatchFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "successful": [{"index": s.index, **s.result.to_dict()} for s in self.successful],
            "failed": [
                {"index": f.index, "error": f.reason, "code": f.error.code,
                 "retryable": f.error.retryable}
                for f in self.failed
            ],
        }


class BatchCoordinator:
    def __init__(self, service, max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
                 timeout: float = DEFAULT_TIMEOUT):
        self.service = service
        self.max_concurrency = max_concurrency
        self.timeout = timeout

    @trace
    def generate_batch(self, requests, actor_id: str, max_concurrency: int | None = None,
                       timeout: float | None = None) -> BatchOutcome:
        """Generate every request; each lands in exactly one outcome bucket.

        ``requests`` holds PayloadRequest objects or raw request dicts. A dict
        that fails to parse is a failure of that item only.

        Raises:
            ValueError: ``max_concurrency < 1`` or ``timeout <= 0``.
        """
        max_concurrency = self.max_concurrency if max_concurrency is None else max_concurrency
        timeout = self.timeout if timeout is None else timeout
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        items = list(enumerate(requests))
        outcome = BatchOutcome()
        for start in range(0, len(items), max_concurrency):
            self._run_window(items[start:start + max_concurrency], actor_id, timeout, outcome)

        outcome.successful.sort(key=lambda s: s.index)
        outcome.failed.sort(key=lambda f: f.index)
        audit("batch.completed", logger=log, actor=actor_id, total=outcome.total,
              successful=len(outcome.successful), failed=len(outcome.failed))
        return outcome

    def _run_one(self, request, actor_id, cancel):
        if isinstance(request, dict):
            request = request_from_dict(request)
        return self.service.generate(request, actor_id, cancel)

    def _run_window(self, window, actor_id, timeout, outcome):
        executor = ThreadPoolExecutor(max_workers=len(window), thread_name_prefix="qrgen-batch")
        try:
            futures = {}
            for index, request in window:
                token = CancellationToken()
                future = executor.submit(self._run_one, request, actor_id, token)
                futures[future] = (index, request, token)

            done, pending = wait(futures, timeout=timeout)

            for future in pending:
                index, request, token = futures[future]
                token.cancel(f"batch item {index} timed out")
                future.cancel()
                err = BatchItemTimeout(index, timeout)
                log.warning("batch item %d: %s", index, err)
                outcome.failed.append(BatchFailure(index, request, str(err), err))

            for future in done:
                index, request, _ = futures[future]
                exc = future.exception()
                if exc is None:
                    outcome.successful.append(BatchSuccess(index, request, future.result()))
                    continue
                err = BatchItemFailure(index, exc)
                log.info("batch item %d failed: %s", index, err)
                outcome.failed.append(BatchFailure(index, request, str(err), err))
        finally:
            # Timed-out workers see their token and stop on their own
            executor.shutdown(wait=False, cancel_futures=True)


@trace
def requests_from_csv(text: str, defaults: StyleOptions | None = None) -> list[PayloadRequest]:
    """Parse a CSV import into requests.

    Columns: ``name``, ``type``, ``data`` (a JSON object) and optionally
    ``mode`` and ``tags`` (``;``-separated). At most 100 rows.

    Raises:
        InvalidFormat: missing columns, too many rows, or a malformed row
            (the message names the row, counting the header as row 1).
    """
    reader = csv.DictReader(io.StringIO(text))
    header = [h.strip() for h in (reader.fieldnames or [])]
    missing = [c for c in CSV_REQUIRED_COLUMNS if c not in header]
    if missing:
        raise InvalidFormat(f"CSV is missing required columns: {', '.join(missing)}")
    reader.fieldnames = header

    rows = list(reader)
    if len(rows) > MAX_CSV_ROWS:
        raise InvalidFormat(f"CSV has {len(rows)} rows, maximum is {MAX_CSV_ROWS}")

    requests = []
    for line, row in enumerate(rows, start=2):
        try:
            data = json.loads(row.get("data") or "{}")
        except json.JSONDecodeError as exc:
            raise InvalidFormat(f"row {line}: data is not valid JSON ({exc.msg})") from None
        body = {
            "name": (row.get("name") or "").strip() or None,
            "type": (row.get("type") or "").strip(),
            "mode": (row.get("mode") or "").strip() or None,
            "data": data,
            "tags": row.get("tags") or "",
        }
        try:
            requests.append(request_from_dict(body, defaults))
        except PayloadError as exc:
            raise InvalidFormat(f"row {line}: {exc}") from exc
    log.info("parsed %d requests from CSV", len(requests))
    return requests
