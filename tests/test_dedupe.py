from collections import Counter

from medialog_backfill.dedupe import deduplicate
from medialog_backfill.models import MediaReference, Operation
from medialog_backfill.utils import extract_media_hash


def _records(*paths):
    return [MediaReference(path=path) for path in paths]


def test_first_occurrence_of_each_hash_is_ingested():
    records = _records(
        "/a/media_abc123.png",
        "/b/media_abc123.png",
        "/media_def456.jpg",
        "https://cdn.example.com/c/media_ABC123.png?width=750",
        "/d/media_def456.jpg",
    )
    result = deduplicate(records)

    assert [record.operation for record in result.records] == [
        Operation.INGEST,
        Operation.REUSE,
        Operation.INGEST,
        Operation.REUSE,
        Operation.REUSE,
    ]
    assert result.ingest_count == 2
    assert result.reuse_count == 3
    assert result.seen_hashes == {"abc123", "def456"}


def test_exactly_one_ingest_per_hash():
    paths = [f"/p{i}/media_{h}.png" for i, h in enumerate("aabbbcaca")]
    result = deduplicate(_records(*paths))

    ingests = Counter(
        extract_media_hash(r.path) for r in result.records if r.operation is Operation.INGEST
    )
    totals = Counter(extract_media_hash(r.path) for r in result.records)
    assert set(ingests) == set(totals)
    assert all(count == 1 for count in ingests.values())


def test_records_without_hash_are_always_ingested():
    result = deduplicate(_records("/logo.png", "/logo.png", "/docs/guide.pdf"))
    assert all(r.operation is Operation.INGEST for r in result.records)
    assert result.reuse_count == 0


def test_seen_hashes_can_be_threaded_between_calls():
    earlier = {"abc123"}
    result = deduplicate(_records("/media_abc123.png", "/media_999.png"), seen_hashes=earlier)

    assert [r.operation for r in result.records] == [Operation.REUSE, Operation.INGEST]
    assert earlier == {"abc123"}
    assert result.seen_hashes == {"abc123", "999"}


def test_extract_media_hash():
    assert extract_media_hash("img/p1_abc123.png") == "abc123"
    assert extract_media_hash("./media_1f2e3d.jpeg#width=10&height=20") == "1f2e3d"
    assert extract_media_hash("/photo.png") is None
    assert extract_media_hash("/under_score.png") is None
