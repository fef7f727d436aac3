"""High-level orchestration for discovering pages and backfilling the media log."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests

from .config import IngestConfig
from .dedupe import deduplicate
from .discovery import (
    create_bulk_status_job,
    fetch_markdown,
    get_job_details,
    poll_job_status,
)
from .ingestor import (
    RATE_LIMIT_SETTLE_SECONDS,
    MediaLogApiError,
    MediaLogDeliverer,
    batch_entries,
    verify_media_log,
)
from .markdown import extract_media_references, standalone_media_reference
from .models import IngestStats, MediaReference, Resource, SiteContext
from .users import build_preview_user_map, enrich_entries_with_user
from .utils import is_media_file, should_process_resource

logger = logging.getLogger("medialog_backfill")

VERIFY_LIMIT = 50


@dataclass
class CollectResult:
    """References gathered from every discovered resource."""

    records: List[MediaReference]
    stats: IngestStats


@dataclass
class UserMappingReport:
    resources: int
    processable: int
    markdown_pages: int
    standalone_media: int
    user_map: Dict[str, str] = field(default_factory=dict)

    @property
    def coverage(self) -> float:
        if not self.markdown_pages:
            return 0.0
        return len(self.user_map) / self.markdown_pages * 100


def site_for(config: IngestConfig) -> SiteContext:
    return SiteContext(org=config.org, repo=config.repo, ref=config.ref)


def discover_resources(
    session: requests.Session,
    site: SiteContext,
    config: IngestConfig,
) -> List[Resource]:
    """Run a bulk status job to completion and return the resources it lists."""
    job = create_bulk_status_job(session, site, config.path_filter, config.token)
    logger.info("Job created: %s", job.job_id)

    def report(progress: dict) -> None:
        logger.debug(
            "Processing: %s/%s pages", progress.get("processed"), progress.get("total")
        )

    state = poll_job_status(
        session, job.job_url, config.token, config.poll_interval, on_progress=report
    )
    logger.info("Job %s", state)
    resources = get_job_details(session, job.job_url, config.token)
    logger.info("Discovered %d resources", len(resources))
    return resources


async def collect_media(
    session: requests.Session,
    site: SiteContext,
    resources: List[Resource],
    token: str,
    concurrency: int = 3,
) -> CollectResult:
    """Extract media references from every processable resource.

    Standalone media files become references directly. Pages are fetched
    with at most ``concurrency`` requests in flight; their references are
    appended in path order once every fetch has finished, so the result
    does not depend on which fetch completes first.
    """
    stats = IngestStats()
    records: List[MediaReference] = []
    pages: List[Resource] = []

    processable = sorted(
        (resource for resource in resources if should_process_resource(resource)),
        key=lambda resource: resource.path,
    )
    for resource in processable:
        if is_media_file(resource.path):
            records.append(standalone_media_reference(resource.path, site))
            stats.standalone_media_found += 1
            logger.debug("  %s: standalone media", resource.path)
        else:
            pages.append(resource)

    logger.info(
        "Processing %d markdown pages and %d standalone media files",
        len(pages),
        stats.standalone_media_found,
    )

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def process_page(resource: Resource) -> List[MediaReference]:
        try:
            async with semaphore:
                # Shared session: workers only issue cookie-less GETs.
                markdown = await asyncio.to_thread(
                    fetch_markdown, session, site, resource.path, token
                )
            references = extract_media_references(markdown, resource.path, site)
        except Exception as exc:  # pylint: disable=broad-except
            stats.errors += 1
            logger.warning("  %s: %s", resource.path, exc)
            return []

        stats.markdown_pages_processed += 1
        stats.media_from_markdown += len(references)
        if references:
            logger.debug("  %s: %d media from markdown", resource.path, len(references))
        return references

    for references in await asyncio.gather(*(process_page(page) for page in pages)):
        records.extend(references)

    stats.total_media_found = len(records)
    return CollectResult(records=records, stats=stats)


def _verify(session: requests.Session, site: SiteContext, token: str) -> None:
    try:
        result = verify_media_log(session, site, token, VERIFY_LIMIT)
    except (MediaLogApiError, requests.RequestException) as exc:
        logger.warning("Verification failed: %s", exc)
        return
    logger.info("Verified %d recent entries in media log", result.count)
    for entry in result.entries[:5]:
        logger.debug(
            "  %s | %s | %s",
            entry.get("operation", "N/A"),
            entry.get("path", "N/A"),
            entry.get("user", "N/A"),
        )


def run_ingest(
    config: IngestConfig,
    session: Optional[requests.Session] = None,
) -> IngestStats:
    """Discover, extract, classify, attribute and deliver media references."""
    session = session or requests.Session()
    site = site_for(config)
    if config.dry_run:
        logger.warning("DRY RUN MODE - no data will be sent")

    resources = discover_resources(session, site, config)
    collected = asyncio.run(
        collect_media(session, site, resources, config.token, config.concurrency)
    )
    stats = collected.stats
    stats.pages_discovered = len(resources)
    logger.info(
        "Total media: %d (%d standalone + %d from markdown)",
        stats.total_media_found,
        stats.standalone_media_found,
        stats.media_from_markdown,
    )
    if not collected.records:
        logger.warning("No media found")
        return stats

    deduped = deduplicate(collected.records)
    logger.info(
        "Deduplication complete: %d unique media (ingest), %d reuses",
        deduped.ingest_count,
        deduped.reuse_count,
    )
    records = deduped.records

    if config.skip_user_enrichment:
        logger.info("Skipping user enrichment")
    elif not config.dry_run:
        user_map = build_preview_user_map(session, site, config.token)
        enriched = enrich_entries_with_user(records, user_map, config.user)
        records = enriched.records
        if enriched.found or enriched.fallback:
            logger.info(
                "Enriched entries (%d/%d have user info)",
                enriched.found + enriched.fallback,
                len(records),
            )
        else:
            logger.warning("No users found for any entry (check token permissions)")

    batches = batch_entries(records, config.batch_size)
    logger.info("Sending %d batches", len(batches))
    if not config.dry_run:
        time.sleep(RATE_LIMIT_SETTLE_SECONDS)

    deliverer = MediaLogDeliverer(
        session,
        site,
        config.token,
        dry_run=config.dry_run,
        failure_path=config.failure_file,
    )
    delivery = deliverer.deliver(batches)
    stats.batches_sent = delivery.sent
    stats.errors += delivery.failed
    if delivery.failed:
        logger.warning(
            "%d batch(es) failed; saved to %s", delivery.failed, config.failure_file
        )

    if config.verify and not config.dry_run and stats.batches_sent:
        _verify(session, site, config.token)
    return stats


def run_user_mapping_test(
    config: IngestConfig,
    session: Optional[requests.Session] = None,
) -> UserMappingReport:
    """Discover resources and build the user map without sending anything."""
    session = session or requests.Session()
    site = site_for(config)
    resources = discover_resources(session, site, config)
    processable = [resource for resource in resources if should_process_resource(resource)]
    standalone = sum(1 for resource in processable if is_media_file(resource.path))
    user_map = build_preview_user_map(session, site, config.token)
    return UserMappingReport(
        resources=len(resources),
        processable=len(processable),
        markdown_pages=len(processable) - standalone,
        standalone_media=standalone,
        user_map=user_map,
    )
