"""Rate-limited delivery of media references to the media log API."""

from __future__ import annotations

import datetime as dt
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence

import requests

from .config import DEFAULT_FAILURE_FILE, MAX_BATCH_SIZE, MEDIALOG_API, REQUEST_TIMEOUT
from .models import FailureRecord, IngestStats, MediaReference, SiteContext

logger = logging.getLogger("medialog_backfill")

RATE_LIMIT_STATUSES = {403, 429}
MAX_RETRIES = 3
# 10 requests per second.
REQUEST_INTERVAL_SECONDS = 0.1
# Lets the markdown fetch traffic drain from the same rate budget.
RATE_LIMIT_SETTLE_SECONDS = 2.0

Batch = List[MediaReference]


class MediaLogApiError(RuntimeError):
    """Raised when the media log API rejects a request."""

    def __init__(self, status: int, detail: str = "") -> None:
        message = f"Media log API error: {status}"
        if detail:
            message = f"{message} - {detail}"
        super().__init__(message)
        self.status = status
        self.detail = detail


@dataclass
class DeliveryResult:
    sent: int = 0
    failed: int = 0


@dataclass
class VerificationResult:
    count: int
    entries: List[Dict[str, Any]] = field(default_factory=list)


def batch_entries(records: Sequence[MediaReference], batch_size: int = MAX_BATCH_SIZE) -> List[Batch]:
    """Split records into ordered batches of at most ``batch_size`` (never above 10)."""
    size = max(1, min(int(batch_size), MAX_BATCH_SIZE))
    return [list(records[i : i + size]) for i in range(0, len(records), size)]


def _timestamp() -> str:
    return (
        dt.datetime.now(dt.timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def save_failed_batch(
    batch: Batch,
    error: BaseException,
    path: Path = Path(DEFAULT_FAILURE_FILE),
) -> None:
    """Append a failed batch to the failure file, creating it if needed."""
    record = FailureRecord(
        timestamp=_timestamp(),
        error=str(error),
        entries=[reference.to_entry() for reference in batch],
    )
    try:
        existing: List[Dict[str, Any]] = []
        if path.exists():
            existing = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(existing, list):
            raise ValueError("failure file does not hold a JSON list")
        existing.append(record.to_dict())
        path.write_text(json.dumps(existing, indent=2), encoding="utf-8")
    except (OSError, ValueError) as exc:
        logger.error("Failed to save error batch to %s: %s", path, exc)


class MediaLogDeliverer:
    """Sends batches one at a time, retrying on rate limits."""

    def __init__(
        self,
        session: requests.Session,
        site: SiteContext,
        token: str,
        dry_run: bool = False,
        failure_path: Path = Path(DEFAULT_FAILURE_FILE),
        max_retries: int = MAX_RETRIES,
        request_interval: float = REQUEST_INTERVAL_SECONDS,
    ) -> None:
        self.session = session
        self.site = site
        self.token = token
        self.dry_run = dry_run
        self.failure_path = failure_path
        self.max_retries = max_retries
        self.request_interval = request_interval

    @property
    def url(self) -> str:
        return f"{MEDIALOG_API}/{self.site.api_path}/"

    def send_batch(self, batch: Batch) -> int:
        """Submit one batch and return the response status.

        A rate-limited attempt is retried after ``2 ** attempt`` seconds
        until ``max_retries`` retries are used up.
        """
        if self.dry_run:
            return 200

        payload = {"entries": [reference.to_entry() for reference in batch]}
        headers = {
            "Authorization": f"token {self.token}",
            "Content-Type": "application/json",
        }
        attempt = 0
        while True:
            response = self.session.post(
                self.url, json=payload, headers=headers, timeout=REQUEST_TIMEOUT
            )
            if response.ok:
                return response.status_code
            if response.status_code in RATE_LIMIT_STATUSES and attempt < self.max_retries:
                backoff = 2 ** attempt
                logger.debug(
                    "Rate limited (%s); retrying in %ss", response.status_code, backoff
                )
                time.sleep(backoff)
                attempt += 1
                continue
            raise MediaLogApiError(response.status_code, response.text)

    def deliver(self, batches: Sequence[Batch]) -> DeliveryResult:
        """Send batches in order; a failed batch is saved and skipped."""
        result = DeliveryResult()
        for index, batch in enumerate(batches):
            try:
                self.send_batch(batch)
            except (MediaLogApiError, requests.RequestException) as exc:
                result.failed += 1
                logger.error("Batch %d/%d failed: %s", index + 1, len(batches), exc)
                save_failed_batch(batch, exc, self.failure_path)
                continue

            result.sent += 1
            logger.debug("Sent batch %d/%d", index + 1, len(batches))
            if index < len(batches) - 1 and not self.dry_run:
                time.sleep(self.request_interval)
        return result


def verify_media_log(
    session: requests.Session,
    site: SiteContext,
    token: str,
    limit: int = 10,
) -> VerificationResult:
    """Read back the most recent media log entries."""
    url = f"{MEDIALOG_API}/{site.api_path}/?since=5m&limit={limit}"
    response = session.get(
        url, headers={"Authorization": f"token {token}"}, timeout=REQUEST_TIMEOUT
    )
    if not response.ok:
        raise MediaLogApiError(response.status_code, "failed to verify media log")
    entries = response.json().get("entries") or []
    return VerificationResult(count=len(entries), entries=entries)


def generate_report(stats: IngestStats) -> str:
    rule = "-" * 40
    lines = [
        "Media Log Ingestion Report",
        rule,
        f"Resources discovered:        {stats.pages_discovered}",
        f"Markdown pages processed:    {stats.markdown_pages_processed}",
        f"Standalone media found:      {stats.standalone_media_found}",
        f"Media from markdown:         {stats.media_from_markdown}",
        f"Total media logged:          {stats.total_media_found}",
        f"Batches sent:                {stats.batches_sent}",
        f"Errors:                      {stats.errors}",
        rule,
    ]
    return "\n".join(lines) + "\n"
