"""Data models used throughout the backfill pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Operation(str, Enum):
    """Whether a reference is the first sighting of its asset in this run."""

    INGEST = "ingest"
    REUSE = "reuse"


@dataclass(frozen=True)
class SiteContext:
    """Organization, repository and ref identifying one site."""

    org: str
    repo: str
    ref: str = "main"

    @property
    def preview_host(self) -> str:
        return f"{self.ref}--{self.repo}--{self.org}.aem.page"

    def page_url(self, path: str) -> str:
        return f"https://{self.preview_host}{path}"

    @property
    def api_path(self) -> str:
        return f"{self.org}/{self.repo}/{self.ref}"


@dataclass
class Resource:
    """One resource listed by a bulk status job."""

    path: str
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Resource":
        extra = {key: value for key, value in data.items() if key != "path"}
        return cls(path=data.get("path") or "", extra=extra)


@dataclass
class ReferenceDefinition:
    """Target of a markdown reference link definition."""

    url: str
    title: Optional[str] = None


@dataclass
class MediaReference:
    """One media asset observed at one usage site."""

    path: str
    source_path: Optional[str] = None
    alt: Optional[str] = None
    content_type: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    operation: Operation = Operation.INGEST
    user: Optional[str] = None
    owner: Optional[str] = None
    repo: Optional[str] = None
    content_source_type: Optional[str] = None

    def to_entry(self) -> Dict[str, Any]:
        """Serialize to the media log wire format, omitting empty fields."""
        entry: Dict[str, Any] = {"action": "add", "path": self.path}
        if self.source_path:
            entry["sourcePath"] = self.source_path
        if self.alt:
            entry["alt"] = self.alt
        entry["operation"] = self.operation.value
        if self.user:
            entry["user"] = self.user
        if self.content_type:
            entry["contentType"] = self.content_type
        if self.width is not None and self.height is not None:
            entry["width"] = self.width
            entry["height"] = self.height
        if self.owner:
            entry["owner"] = self.owner
        if self.repo:
            entry["repo"] = self.repo
        if self.content_source_type:
            entry["contentSourceType"] = self.content_source_type
        return entry


@dataclass
class FailureRecord:
    """A batch that could not be delivered."""

    timestamp: str
    error: str
    entries: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "error": self.error, "entries": self.entries}


@dataclass
class IngestStats:
    """Counters reported at the end of a run."""

    pages_discovered: int = 0
    markdown_pages_processed: int = 0
    standalone_media_found: int = 0
    media_from_markdown: int = 0
    total_media_found: int = 0
    batches_sent: int = 0
    errors: int = 0
