"""Media reference extraction from page markdown sources."""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Set

from .models import MediaReference, ReferenceDefinition, SiteContext
from .utils import IMAGE, extract_dimensions, get_content_type, get_media_type

# ![alt](url "title")
IMAGE_INLINE_PATTERN = re.compile(r'!\[([^\]]*)\]\(([^\s"\')]+)(?:\s+"([^"]+)")?\)')
# ![alt][id]
IMAGE_REFERENCE_PATTERN = re.compile(r"!\[([^\]]*)\]\[([^\]]+)\]")
# [id]: url "title"
REFERENCE_DEFINITION_PATTERN = re.compile(
    r'^\[([^\]]+)\]:\s*([^\s"]+)(?:\s+"([^"]+)")?$', re.MULTILINE
)
# [text](url "title")
LINK_PATTERN = re.compile(r'\[([^\]]*)\]\(([^\s"\')]+)(?:\s+"([^"]+)")?\)')

STANDALONE_SOURCE_TYPE = "markup"


def parse_reference_definitions(markdown: str) -> Dict[str, ReferenceDefinition]:
    """Index reference link definitions by lowercased id."""
    definitions: Dict[str, ReferenceDefinition] = {}
    for match in REFERENCE_DEFINITION_PATTERN.finditer(markdown):
        ref_id, url, title = match.groups()
        definitions[ref_id.lower()] = ReferenceDefinition(url=url.strip(), title=title)
    return definitions


def _build_reference(url: str, source_url: Optional[str], alt_text: Optional[str]) -> MediaReference:
    alt = alt_text.strip() if alt_text else None
    reference = MediaReference(
        path=url,
        source_path=source_url,
        alt=alt or None,
        content_type=get_content_type(url),
    )
    dimensions = extract_dimensions(url)
    if dimensions:
        reference.width, reference.height = dimensions
    return reference


def extract_media_references(
    markdown: str,
    source_page_path: str,
    site: SiteContext,
) -> List[MediaReference]:
    """Collect the media referenced by a markdown document.

    Constructs are scanned in a fixed order: reference definitions,
    inline images, reference-style images, then plain links to videos
    and documents. A URL reached through more than one construct is
    emitted once, with the alt text of its first resolution. An image
    title takes precedence over its bracket text.
    """
    source_url = site.page_url(source_page_path)
    references: List[MediaReference] = []
    seen: Set[str] = set()

    def add(url: str, alt_text: Optional[str] = None) -> None:
        if not url or not url.strip() or url in seen:
            return
        seen.add(url)
        references.append(_build_reference(url, source_url, alt_text))

    definitions = parse_reference_definitions(markdown)

    for match in IMAGE_INLINE_PATTERN.finditer(markdown):
        alt_text, url, title = match.groups()
        add(url, title or alt_text)

    for match in IMAGE_REFERENCE_PATTERN.finditer(markdown):
        alt_text, ref_id = match.groups()
        definition = definitions.get(ref_id.lower())
        if definition:
            add(definition.url, definition.title or alt_text)

    for match in LINK_PATTERN.finditer(markdown):
        url = match.group(2)
        media_type = get_media_type(url)
        if media_type and media_type != IMAGE:
            add(url)

    return references


def standalone_media_reference(path: str, site: SiteContext) -> MediaReference:
    """Describe a media file published on its own rather than embedded in a page."""
    reference = _build_reference(path, None, None)
    reference.owner = site.org
    reference.repo = site.repo
    reference.content_source_type = STANDALONE_SOURCE_TYPE
    return reference


def markdown_path(resource_path: str) -> str:
    """Map a page path to the path of its markdown source."""
    if resource_path.endswith(".md"):
        return resource_path
    if resource_path.endswith("/"):
        return f"{resource_path}index.md"
    return f"{resource_path}.md"
