"""Helpers for classifying media paths and discovered resources."""

from __future__ import annotations

import re
from typing import Optional, Tuple

from .models import Resource

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".avif", ".svg", ".ico")
VIDEO_EXTENSIONS = (".mp4", ".mov", ".webm", ".avi", ".m4v", ".mkv")
DOCUMENT_EXTENSIONS = (".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".txt")

# Resources that are published as standalone media rather than pages.
MEDIA_FILE_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".avif", ".svg",
    ".mp4", ".mov", ".webm", ".avi", ".m4v", ".mkv",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
)
IGNORED_EXTENSIONS = (
    ".json", ".yaml", ".yml", ".xml", ".txt", ".csv",
    ".js", ".css", ".html", ".ico",
    ".zip", ".tar", ".gz",
)

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "avif": "image/avif",
    "svg": "image/svg+xml",
    "ico": "image/x-icon",
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "webm": "video/webm",
    "avi": "video/x-msvideo",
    "m4v": "video/x-m4v",
    "mkv": "video/x-matroska",
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "txt": "text/plain",
}

IMAGE = "image"
VIDEO = "video"
DOCUMENT = "document"

HASH_PATTERN = re.compile(r"_([0-9a-f]+)\.[a-z0-9]+$", re.IGNORECASE)
DIMENSIONS_PATTERN = re.compile(r"#width=(\d+)&height=(\d+)")


def _strip_suffixes(url: str) -> str:
    """Drop the query string and fragment from a URL or path."""
    return url.split("#", 1)[0].split("?", 1)[0]


def get_media_type(url: str) -> Optional[str]:
    """Classify a URL as image, video or document by extension substring."""
    lower_url = url.lower()
    if any(ext in lower_url for ext in IMAGE_EXTENSIONS):
        return IMAGE
    if any(ext in lower_url for ext in VIDEO_EXTENSIONS):
        return VIDEO
    if any(ext in lower_url for ext in DOCUMENT_EXTENSIONS):
        return DOCUMENT
    return None


def get_content_type(url: str) -> Optional[str]:
    """Look up the MIME type for the URL's file extension."""
    name = _strip_suffixes(url).rsplit("/", 1)[-1]
    if "." not in name:
        return None
    extension = name.rsplit(".", 1)[-1].lower()
    return CONTENT_TYPES.get(extension)


def extract_dimensions(url: str) -> Optional[Tuple[int, int]]:
    """Read ``(width, height)`` from a ``#width=N&height=M`` fragment."""
    match = DIMENSIONS_PATTERN.search(url)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def extract_media_hash(url: str) -> Optional[str]:
    """Return the content hash embedded in names like ``media_1a2b3c.png``."""
    name = _strip_suffixes(url).rsplit("/", 1)[-1]
    match = HASH_PATTERN.search(name)
    if not match:
        return None
    return match.group(1).lower()


def is_media_file(path: Optional[str]) -> bool:
    if not path:
        return False
    return path.lower().endswith(MEDIA_FILE_EXTENSIONS)


def should_process_resource(resource: Resource) -> bool:
    """Skip resources without a path and configuration or code files."""
    if not resource.path:
        return False
    return not resource.path.lower().endswith(IGNORED_EXTENSIONS)
