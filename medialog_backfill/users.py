"""Attribution of media references to the users who last previewed their pages."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

import requests

from .config import LOG_API, REQUEST_TIMEOUT
from .models import MediaReference, SiteContext

logger = logging.getLogger("medialog_backfill")

LOG_WINDOW = "30d"
LOG_PAGE_SIZE = 1000
PREVIEW_ROUTE = "preview"
SOURCE_PATH_PATTERN = re.compile(r"\.aem\.page(/.*?)$")


@dataclass
class EnrichmentResult:
    records: List[MediaReference]
    found: int = 0
    fallback: int = 0
    missing: int = 0


def _log_read_error(response: requests.Response, site: SiteContext) -> None:
    detail = response.headers.get("x-error") or response.text
    logger.debug("Log API error %s: %s", response.status_code, detail)
    if response.status_code == 403:
        logger.warning(
            "403 Forbidden: token lacks 'log:read' permission for %s/%s; "
            "user mapping will not be available",
            site.org,
            site.repo,
        )
    else:
        logger.warning("Log API returned %s; using partial user map", response.status_code)


def build_preview_user_map(
    session: requests.Session,
    site: SiteContext,
    token: str,
) -> Dict[str, str]:
    """Map page paths to the most recent user who previewed them.

    The log is read newest first over a trailing window, following
    ``links.next`` until it is absent. A failed page ends pagination and
    whatever was collected so far is returned; this never raises.
    """
    user_map: Dict[str, str] = {}
    url: Optional[str] = (
        f"{LOG_API}/{site.api_path}/?since={LOG_WINDOW}&limit={LOG_PAGE_SIZE}"
    )
    headers = {"Authorization": f"token {token}"}
    page_count = 0
    total_entries = 0
    logger.debug("Fetching preview logs from %s", url)

    try:
        while url:
            response = session.get(url, headers=headers, timeout=REQUEST_TIMEOUT)
            if not response.ok:
                _log_read_error(response, site)
                break

            data = response.json()
            if not isinstance(data, dict):
                logger.warning("Unexpected log API response; using partial user map")
                break
            entries = data.get("entries") or []
            if not isinstance(entries, list):
                entries = []
            page_count += 1
            total_entries += len(entries)

            for entry in entries:
                if not isinstance(entry, dict):
                    continue
                path = entry.get("path")
                user = entry.get("user")
                if entry.get("route") == PREVIEW_ROUTE and path and user:
                    user_map.setdefault(path, user)

            links = data.get("links")
            url = links.get("next") if isinstance(links, dict) else None
    except (requests.RequestException, ValueError) as exc:
        logger.warning("Error building user map: %s", exc)

    logger.debug(
        "Processed %d log entries across %d page(s); preview users for %d path(s)",
        total_entries,
        page_count,
        len(user_map),
    )
    return user_map


def page_path_from_source(source_path: str) -> Optional[str]:
    """Return the site-relative path of a preview URL, or None if it has another shape."""
    match = SOURCE_PATH_PATTERN.search(source_path)
    return match.group(1) if match else None


def enrich_entries_with_user(
    records: List[MediaReference],
    user_map: Dict[str, str],
    fallback_user: Optional[str] = None,
) -> EnrichmentResult:
    """Attach the previewing user to each reference, falling back when unknown."""
    result = EnrichmentResult(records=[])
    for record in records:
        user = None
        if record.source_path:
            page_path = page_path_from_source(record.source_path)
            if page_path is None:
                logger.debug("Could not extract page path from %s", record.source_path)
            else:
                user = user_map.get(page_path)

        if user:
            result.found += 1
        elif fallback_user:
            user = fallback_user
            result.fallback += 1
        else:
            result.missing += 1
        result.records.append(replace(record, user=user))

    logger.debug(
        "User enrichment: %d from preview logs, %d fallback, %d unassigned",
        result.found,
        result.fallback,
        result.missing,
    )
    return result
