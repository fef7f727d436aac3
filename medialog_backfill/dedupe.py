"""Run-wide classification of media references as first seen or reused."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Set

from .models import MediaReference, Operation
from .utils import extract_media_hash


@dataclass
class DedupeResult:
    records: List[MediaReference]
    ingest_count: int = 0
    reuse_count: int = 0
    seen_hashes: Set[str] = field(default_factory=set)


def deduplicate(
    records: List[MediaReference],
    seen_hashes: Optional[Set[str]] = None,
) -> DedupeResult:
    """Mark the first reference to each content hash as ingest, the rest as reuse.

    References without an extractable hash are always ingested. The set
    of hashes already seen can be passed in and is returned, updated, on
    the result; the input set is not mutated.
    """
    seen = set(seen_hashes or ())
    result = DedupeResult(records=records, seen_hashes=seen)
    for record in records:
        media_hash = extract_media_hash(record.path)
        if media_hash and media_hash in seen:
            record.operation = Operation.REUSE
            result.reuse_count += 1
            continue
        if media_hash:
            seen.add(media_hash)
        record.operation = Operation.INGEST
        result.ingest_count += 1
    return result
