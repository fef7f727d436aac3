"""Page discovery through the admin bulk status API."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests

from .config import ADMIN_API, REQUEST_TIMEOUT
from .markdown import markdown_path
from .models import Resource, SiteContext

logger = logging.getLogger("medialog_backfill")

TERMINAL_JOB_STATES = {"completed", "stopped"}


class DiscoveryError(RuntimeError):
    """Raised when the bulk status job or a content fetch fails."""


@dataclass
class JobHandle:
    job_id: str
    job_url: str


def _auth(token: str) -> Dict[str, str]:
    return {"Authorization": f"token {token}"}


def create_bulk_status_job(
    session: requests.Session,
    site: SiteContext,
    path_filter: Optional[str],
    token: str,
) -> JobHandle:
    """Start a bulk status job listing the previewed resources under a path."""
    url = f"{ADMIN_API}/status/{site.api_path}/*"
    response = session.post(
        url,
        json={"paths": [path_filter or "/*"], "select": ["preview"]},
        headers=_auth(token),
        timeout=REQUEST_TIMEOUT,
    )
    if not response.ok:
        raise DiscoveryError(
            f"Failed to create job: {response.status_code} - {response.text}"
        )

    data = response.json()
    job = data.get("job") or {}
    if job.get("state") != "created":
        raise DiscoveryError("Job creation failed or returned unexpected state")
    job_url = (data.get("links") or {}).get("self")
    if not job_url:
        raise DiscoveryError("Job creation response did not include a job link")
    return JobHandle(job_id=job.get("name", ""), job_url=job_url)


def poll_job_status(
    session: requests.Session,
    job_url: str,
    token: str,
    poll_interval: float,
    on_progress: Optional[Callable[[Dict[str, Any]], None]] = None,
) -> str:
    """Block until the job reaches a terminal state and return that state."""
    while True:
        response = session.get(job_url, headers=_auth(token), timeout=REQUEST_TIMEOUT)
        if not response.ok:
            raise DiscoveryError(f"Failed to fetch job status: {response.status_code}")

        data = response.json()
        state = data.get("state")
        progress = data.get("progress")
        if on_progress and progress:
            on_progress(progress)
        if state in TERMINAL_JOB_STATES:
            return state
        time.sleep(poll_interval)


def get_job_details(
    session: requests.Session,
    job_url: str,
    token: str,
) -> List[Resource]:
    response = session.get(
        f"{job_url}/details", headers=_auth(token), timeout=REQUEST_TIMEOUT
    )
    if not response.ok:
        raise DiscoveryError(f"Failed to fetch job details: {response.status_code}")
    data = response.json().get("data") or {}
    return [Resource.from_dict(item) for item in data.get("resources") or []]


def fetch_markdown(
    session: requests.Session,
    site: SiteContext,
    resource_path: str,
    token: str,
) -> str:
    """Download the markdown source of a previewed page."""
    url = f"{ADMIN_API}/preview/{site.api_path}{markdown_path(resource_path)}"
    response = session.get(url, headers=_auth(token), timeout=REQUEST_TIMEOUT)
    if not response.ok:
        raise DiscoveryError(f"Failed to fetch markdown: {response.status_code}")
    return response.text
