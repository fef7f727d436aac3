"""Command-line entry point for the media log backfill."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Iterable, Sequence

import requests

from .config import DEFAULT_FAILURE_FILE, MAX_BATCH_SIZE, TOKEN_ENV_VAR, IngestConfig, resolve_token
from .crawler import run_ingest, run_user_mapping_test
from .discovery import DiscoveryError
from .ingestor import generate_report
from .tokens import InvalidTokenError, TokenInfo, require_valid_token

logger = logging.getLogger("medialog_backfill.cli")

TOKEN_HELP = f"""\
How to get an authentication token

Option 1: Sidekick token
  1. Log in to the project with Sidekick on https://main--<repo>--<org>.aem.page/
  2. Open the Sidekick extension service worker console and read the
     authToken stored for your org/repo. Sidekick tokens are org/repo specific.

Option 2: Admin API key (requires the "admin" role)
  1. Sign in at https://admin.hlx.page/login
  2. POST to https://admin.hlx.page/config/<org>/sites/<site>/apiKeys.json
     with role "admin" and scopes "log:read, log:write".

User enrichment reads preview logs and needs the 'log:read' scope. Without
it the log API answers 403; pass --skip-user-enrichment to disable it.

Use the token with --token <token> or set {TOKEN_ENV_VAR} in the environment
or in a .env file.
"""


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return ("ingest",)
    first = argv[0]
    if first in commands or first in ("-h", "--help"):
        return argv
    return ("ingest", *argv)


def _add_ingest_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--org", required=True, help="Organization name")
    parser.add_argument("--repo", required=True, help="Repository name")
    parser.add_argument("--ref", default="main", help="Git reference (branch)")
    parser.add_argument(
        "--path",
        default="/*",
        help="Path filter for discovery (e.g. /products/*)",
    )
    parser.add_argument(
        "--token",
        default=None,
        help=f"Admin JWT token (or set {TOKEN_ENV_VAR})",
    )
    parser.add_argument(
        "--user",
        default=None,
        help="Fallback user for entries without a preview user",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run without sending anything to the media log",
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        help="Read back recent media log entries after sending",
    )
    parser.add_argument(
        "--skip-user-enrichment",
        action="store_true",
        help="Do not read preview logs to attribute entries to users",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=3,
        help="Number of markdown pages fetched in parallel",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=MAX_BATCH_SIZE,
        help=f"Entries per batch (max {MAX_BATCH_SIZE})",
    )
    parser.add_argument(
        "--poll-interval",
        type=int,
        default=10_000,
        help="Job polling interval in milliseconds",
    )
    parser.add_argument(
        "--failure-file",
        type=Path,
        default=Path(DEFAULT_FAILURE_FILE),
        help="JSON file collecting batches that could not be delivered",
    )
    parser.add_argument(
        "--user-mapping",
        action="store_true",
        help="Only test user mapping (skip parsing and sending)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="logmedia",
        description="Retroactively populate the media log of a site.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest_parser = subparsers.add_parser(
        "ingest", help="Ingest media references into the media log"
    )
    _add_ingest_arguments(ingest_parser)

    subparsers.add_parser("token", help="Show how to get an authentication token")

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace, token: str) -> IngestConfig:
    return IngestConfig(
        org=args.org,
        repo=args.repo,
        token=token,
        ref=args.ref,
        path_filter=args.path,
        user=args.user,
        dry_run=args.dry_run,
        verify=args.verify,
        skip_user_enrichment=args.skip_user_enrichment,
        concurrency=args.concurrency,
        batch_size=min(args.batch_size, MAX_BATCH_SIZE),
        poll_interval=args.poll_interval / 1000,
        failure_file=args.failure_file,
    )


def _warn_on_expiry(info: TokenInfo) -> None:
    if info.expires_at is None or info.expires_in_days is None:
        return
    if info.expires_in_days < 1:
        hours_left = int((info.expires_at.timestamp() - time.time()) // 3600)
        logger.warning("Token expires in %d hours (%s)", hours_left, info.expires_at)
    elif info.expires_in_days < 7:
        logger.warning(
            "Token expires in %d days (%s)", info.expires_in_days, info.expires_at.date()
        )


def _run_user_mapping(config: IngestConfig) -> None:
    report = run_user_mapping_test(config)
    sys.stdout.write(
        "User Mapping Test Results\n"
        f"Total resources discovered:  {report.resources}\n"
        f"Processable resources:       {report.processable}\n"
        f"  - Markdown pages:          {report.markdown_pages}\n"
        f"  - Standalone media:        {report.standalone_media}\n"
        f"Paths with user mapping:     {len(report.user_map)}\n"
        f"Coverage for markdown pages: {report.coverage:.1f}%\n"
    )
    for page_path, user in list(report.user_map.items())[:10]:
        sys.stdout.write(f"  {page_path} -> {user}\n")
    if not report.user_map:
        logger.warning(
            "No user mappings found; the token may lack 'log:read' or belong to "
            "another org/repo"
        )


def _run_ingest(args: argparse.Namespace) -> int:
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )

    try:
        token = resolve_token(args.token)
        info = require_valid_token(token)
    except InvalidTokenError as exc:
        logger.error("%s. Run 'logmedia token' for instructions.", exc)
        return 1
    _warn_on_expiry(info)

    config = build_config(args, token)
    overall_start = time.perf_counter()
    try:
        if args.user_mapping:
            _run_user_mapping(config)
            return 0
        stats = run_ingest(config)
    except (DiscoveryError, requests.RequestException) as exc:
        logger.error("%s", exc)
        return 1

    sys.stdout.write(generate_report(stats))
    logger.info("Finished in %.2fs", time.perf_counter() - overall_start)
    if not config.dry_run and stats.batches_sent:
        logger.info(
            "Query: https://admin.hlx.page/medialog/%s/%s/%s?limit=100",
            config.org,
            config.repo,
            config.ref,
        )
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    if args.command == "token":
        sys.stdout.write(TOKEN_HELP)
        return
    sys.exit(_run_ingest(args))


if __name__ == "__main__":
    main()
