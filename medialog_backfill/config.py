"""Configuration objects and constants for the media log backfill."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

ADMIN_API = "https://admin.hlx.page"
MEDIALOG_API = f"{ADMIN_API}/medialog"
LOG_API = f"{ADMIN_API}/log"

TOKEN_ENV_VAR = "ADMIN_TOKEN"
DEFAULT_FAILURE_FILE = "failed-entries.json"
MAX_BATCH_SIZE = 10
REQUEST_TIMEOUT = 30


@dataclass
class IngestConfig:
    """Top-level settings that control discovery, extraction and delivery."""

    org: str
    repo: str
    token: str
    ref: str = "main"
    path_filter: str = "/*"
    user: Optional[str] = None
    dry_run: bool = False
    verify: bool = False
    skip_user_enrichment: bool = False
    concurrency: int = 3
    batch_size: int = MAX_BATCH_SIZE
    poll_interval: float = 10.0
    failure_file: Path = Path(DEFAULT_FAILURE_FILE)


def resolve_token(explicit: Optional[str]) -> Optional[str]:
    """Return the token passed on the command line or the one from the environment."""
    if explicit:
        return explicit
    load_dotenv(find_dotenv(usecwd=True))
    return os.getenv(TOKEN_ENV_VAR) or None
