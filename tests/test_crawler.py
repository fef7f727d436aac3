import asyncio
import threading
import time

from medialog_backfill.config import IngestConfig
from medialog_backfill.crawler import collect_media, run_ingest, run_user_mapping_test
from medialog_backfill.models import Operation, Resource

JOB_URL = "https://admin.hlx.page/job/acme/site/main/status/job-1"
PREVIEW_PREFIX = "https://admin.hlx.page/preview/acme/site/main"

PAGES = {
    "/products/x.md": '![Product shot](img/p1_abc123.png "Main")\n[spec sheet](docs/spec.pdf)',
    "/about.md": "![Team](img/team_abc123.png)",
}
RESOURCES = ["/products/x", "/about", "/media_ab12.png", "/config.json", "/broken"]


def admin_handler(make_response, log_entries=None):
    def handler(method, url, kwargs):
        if method == "POST" and url == "https://admin.hlx.page/status/acme/site/main/*":
            return make_response(200, {
                "job": {"name": "job-1", "state": "created"},
                "links": {"self": JOB_URL},
            })
        if url == JOB_URL:
            return make_response(200, {"state": "completed", "progress": {"processed": 5, "total": 5}})
        if url == f"{JOB_URL}/details":
            return make_response(200, {"data": {"resources": [{"path": p} for p in RESOURCES]}})
        if url.startswith(PREVIEW_PREFIX):
            markdown = PAGES.get(url[len(PREVIEW_PREFIX):])
            if markdown is None:
                return make_response(404, text="not found")
            return make_response(200, text=markdown)
        if url.startswith("https://admin.hlx.page/log/acme/site/main/"):
            return make_response(200, {"entries": log_entries or []})
        if method == "POST" and url == "https://admin.hlx.page/medialog/acme/site/main/":
            return make_response(201, {})
        raise AssertionError(f"unexpected request {method} {url}")

    return handler


def _config(tmp_path, **overrides):
    values = dict(
        org="acme",
        repo="site",
        token="tok",
        user="fallback@example.com",
        poll_interval=0.5,
        failure_file=tmp_path / "failed.json",
    )
    values.update(overrides)
    return IngestConfig(**values)


def _posted_entries(session):
    return [
        entry
        for method, url, kwargs in session.calls
        if method == "POST" and "/medialog/" in url
        for entry in kwargs["json"]["entries"]
    ]


def test_collect_media_orders_standalone_then_pages(site, routed_session, make_response):
    session = routed_session(admin_handler(make_response))
    resources = [Resource(path=p) for p in RESOURCES]

    result = asyncio.run(collect_media(session, site, resources, "tok", concurrency=3))

    assert [r.path for r in result.records] == [
        "/media_ab12.png",
        "img/team_abc123.png",
        "img/p1_abc123.png",
        "docs/spec.pdf",
    ]
    assert result.records[0].source_path is None
    assert result.records[1].source_path == "https://main--site--acme.aem.page/about"
    stats = result.stats
    assert stats.standalone_media_found == 1
    assert stats.markdown_pages_processed == 2
    assert stats.media_from_markdown == 3
    assert stats.total_media_found == 4
    assert stats.errors == 1


def test_collect_media_bounds_in_flight_fetches(site, routed_session, make_response):
    lock = threading.Lock()
    state = {"current": 0, "peak": 0}

    def handler(method, url, kwargs):
        with lock:
            state["current"] += 1
            state["peak"] = max(state["peak"], state["current"])
        # the first page finishes last
        time.sleep(0.1 if url.endswith("/p0.md") else 0.02)
        with lock:
            state["current"] -= 1
        name = url.rsplit("/", 1)[-1].replace(".md", "")
        return make_response(200, text=f"[clip](media/{name}.mp4)")

    session = routed_session(handler)
    resources = [Resource(path=f"/p{i}") for i in range(6)]

    result = asyncio.run(collect_media(session, site, resources, "tok", concurrency=2))

    assert state["peak"] <= 2
    assert [r.path for r in result.records] == [f"media/p{i}.mp4" for i in range(6)]


def test_run_ingest_end_to_end(routed_session, make_response, sleeps, tmp_path):
    session = routed_session(admin_handler(make_response, log_entries=[
        {"route": "preview", "path": "/products/x", "user": "pat@example.com"},
    ]))

    stats = run_ingest(_config(tmp_path, verify=False), session=session)

    assert stats.pages_discovered == 5
    assert stats.total_media_found == 4
    assert stats.batches_sent == 1
    assert stats.errors == 1
    assert sleeps == [2.0]

    entries = {entry["path"]: entry for entry in _posted_entries(session)}
    assert entries["/media_ab12.png"]["user"] == "fallback@example.com"
    assert "sourcePath" not in entries["/media_ab12.png"]
    assert entries["/media_ab12.png"]["contentSourceType"] == "markup"
    assert "contentSourceType" not in entries["img/team_abc123.png"]
    assert entries["img/team_abc123.png"]["operation"] == Operation.INGEST.value
    assert entries["img/p1_abc123.png"]["operation"] == Operation.REUSE.value
    assert entries["img/p1_abc123.png"]["user"] == "pat@example.com"
    assert entries["img/p1_abc123.png"]["alt"] == "Main"
    assert entries["docs/spec.pdf"]["user"] == "pat@example.com"
    assert not (tmp_path / "failed.json").exists()


def test_run_ingest_records_failed_batches(routed_session, make_response, sleeps, tmp_path):
    base = admin_handler(make_response)

    def handler(method, url, kwargs):
        if "/medialog/" in url:
            return make_response(400, text="bad entries")
        return base(method, url, kwargs)

    session = routed_session(handler)
    stats = run_ingest(_config(tmp_path, batch_size=3, skip_user_enrichment=True), session=session)

    assert stats.batches_sent == 0
    # one page fetch failure plus two failed batches
    assert stats.errors == 3
    assert not any("/log/" in url for _, url, _ in session.calls)
    assert "failed.json" in {p.name for p in tmp_path.iterdir()}


def test_dry_run_skips_enrichment_and_delivery(routed_session, make_response, sleeps, tmp_path):
    session = routed_session(admin_handler(make_response))

    stats = run_ingest(_config(tmp_path, dry_run=True, verify=True), session=session)

    assert stats.batches_sent == 1
    assert sleeps == []
    assert _posted_entries(session) == []
    assert not any("/log/" in url for _, url, _ in session.calls)


def test_user_mapping_report(routed_session, make_response, sleeps, tmp_path):
    session = routed_session(admin_handler(make_response, log_entries=[
        {"route": "preview", "path": "/products/x", "user": "pat@example.com"},
    ]))

    report = run_user_mapping_test(_config(tmp_path), session=session)

    assert report.resources == 5
    assert report.processable == 4
    assert report.standalone_media == 1
    assert report.markdown_pages == 3
    assert report.user_map == {"/products/x": "pat@example.com"}
    assert round(report.coverage, 1) == 33.3
