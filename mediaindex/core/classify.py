"""
Event classification helpers.

Pure functions for path normalization, page/file type detection, media type
labels and markdown reference extraction. Nothing here touches the network.
"""

import logging
import re
from typing import Dict, Iterable, List, Pattern, Set, Union
from urllib.parse import urlparse

from mediaindex.core.models import AuditEvent, MediaEvent

logger = logging.getLogger(__name__)

# Markdown link: [text](url) or ![alt](url), URL in group 1
MD_LINK_RE = re.compile(r'\[[^\]]*\]\(([^)]+)\)')

# Markdown autolink: <url>
MD_AUTOLINK_RE = re.compile(r'<(https?://[^>]+|/[^>\s]*)>')

# Icon shorthand: :iconname: -> /icons/iconname.svg
ICON_RE = re.compile(r':([a-zA-Z0-9-]+):')

# Tokens used in prose about the syntax itself ("use :svg: icons")
ICON_DOC_EXCLUDE = {'svg', 'pdf', 'image', 'link', 'syntax'}


def _strip_query(path: str) -> str:
    return path.split('?')[0].split('#')[0]


# ═══════════════════════════════════════════════════════════════════════════════
# PATHS
# ═══════════════════════════════════════════════════════════════════════════════

def normalize_path(path: str) -> str:
    """
    Normalize a page path: drop query/fragment and add ``.md`` to page-like
    paths so audit events and resource paths compare equal.
    """
    if not path:
        return ''
    clean = _strip_query(path)
    if '.' not in clean and not clean.startswith('/media/'):
        clean = '/index.md' if clean in ('/', '') else f'{clean}.md'
    return clean


def normalize_file_path(path: str) -> str:
    """Normalize a file path for matching (no query, leading slash)."""
    if not path:
        return ''
    clean = _strip_query(path).strip()
    return clean if clean.startswith('/') else f'/{clean}'


def is_page(path: str) -> bool:
    if not path or not isinstance(path, str):
        return False
    page_like = path.endswith('.md') or ('.' not in path and not path.startswith('/media/'))
    return page_like and '/fragments/' not in path


def is_pdf(path: str) -> bool:
    return bool(path) and path.lower().endswith('.pdf')


def is_svg(path: str) -> bool:
    return bool(path) and path.lower().endswith('.svg')


def is_fragment(path: str) -> bool:
    return bool(path) and '/fragments/' in path


def is_linked_content_path(path: str) -> bool:
    """True for PDFs, SVGs and fragments."""
    return is_pdf(path) or is_svg(path) or is_fragment(path)


def get_file_type(path: str) -> str:
    """Linked content type label, same "category > subtype" form as media."""
    if is_pdf(path):
        return 'document > pdf'
    if is_svg(path):
        return 'image > svg'
    if is_fragment(path):
        return 'content > fragment'
    return 'unknown'


def usage_kind(path: str) -> str:
    """Which UsageMap bucket a linked content path belongs to."""
    if is_pdf(path):
        return 'pdfs'
    if is_svg(path):
        return 'svgs'
    return 'fragments'


def detect_media_type(content_type: str) -> str:
    """Map a content-type to ``img > png`` / ``video > mp4`` / ``unknown``."""
    content_type = (content_type or '').split(';')[0].strip().lower()
    if content_type.startswith('image/'):
        return f"img > {content_type.split('/', 1)[1]}"
    if content_type.startswith('video/'):
        return f"video > {content_type.split('/', 1)[1]}"
    return 'unknown'


def extract_name(media: MediaEvent) -> str:
    """Filename from the upload's original name, else from its URL path."""
    if media is None:
        return ''
    if media.original_filename:
        return media.original_filename.split('/')[-1]
    if not media.path:
        return ''
    return _strip_query(media.path).split('/')[-1]


# ═══════════════════════════════════════════════════════════════════════════════
# MARKDOWN EXTRACTION
# ═══════════════════════════════════════════════════════════════════════════════

def _to_path(href: str) -> str:
    if not href:
        return ''
    if href.startswith('http'):
        try:
            return urlparse(href).path or '/'
        except ValueError as e:
            logger.error(f"Failed to parse URL {href}: {e}")
            return href
    clean = _strip_query(href)
    return clean if clean.startswith('/') else f'/{clean}'


def _dedupe(items: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    result = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            result.append(item)
    return result


def extract_urls(markdown: str) -> List[str]:
    """All URLs from [text](url), ![alt](url) and <url> syntax."""
    if not markdown or not isinstance(markdown, str):
        return []
    from_links = [m.group(1).strip() for m in MD_LINK_RE.finditer(markdown)]
    from_autolinks = [m.group(1).strip() for m in MD_AUTOLINK_RE.finditer(markdown)]
    return from_links + from_autolinks


def extract_links(markdown: str, pattern: Union[str, Pattern]) -> List[str]:
    """
    Extract links whose path matches ``pattern`` (e.g. ``r'\\.pdf$'``).

    Args:
        markdown: Raw page markdown
        pattern: Regex (string or compiled) tested against the URL path

    Returns:
        Site paths, first occurrence order, no duplicates
    """
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern
    urls = extract_urls(markdown)
    return _dedupe(_to_path(u) for u in urls if regex.search(_strip_query(u)))


def extract_fragment_references(markdown: str) -> List[str]:
    """Links pointing into /fragments/."""
    urls = extract_urls(markdown)
    return _dedupe(_to_path(u) for u in urls if '/fragments/' in u)


def extract_icon_references(markdown: str) -> List[str]:
    """Resolve :iconname: shorthand to /icons/iconname.svg."""
    if not markdown or not isinstance(markdown, str):
        return []
    return _dedupe(
        f'/icons/{m.group(1)}.svg'
        for m in ICON_RE.finditer(markdown)
        if m.group(1).lower() not in ICON_DOC_EXCLUDE
    )


# ═══════════════════════════════════════════════════════════════════════════════
# EVENT BUCKETING
# ═══════════════════════════════════════════════════════════════════════════════

def is_preview_event(raw: dict) -> bool:
    """Only preview events with a path feed the index."""
    return bool(raw) and bool(raw.get('path')) and raw.get('route') == 'preview'


def group_page_events(events: Iterable[AuditEvent]) -> Dict[str, List[AuditEvent]]:
    """Group page events by normalized path, most recent first."""
    pages_by_path: Dict[str, List[AuditEvent]] = {}
    for event in events:
        pages_by_path.setdefault(normalize_path(event.path), []).append(event)
    for page_events in pages_by_path.values():
        page_events.sort(key=lambda e: e.timestamp, reverse=True)
    return pages_by_path


def latest_file_events(events: Iterable[AuditEvent]) -> Dict[str, AuditEvent]:
    """Latest audit event per normalized file path."""
    files_by_path: Dict[str, AuditEvent] = {}
    for event in events:
        path = normalize_file_path(event.path)
        existing = files_by_path.get(path)
        if existing is None or event.timestamp > existing.timestamp:
            files_by_path[path] = event
    return files_by_path


def deleted_linked_paths(files_by_path: Dict[str, AuditEvent]) -> Set[str]:
    """
    Linked content whose LATEST event is a DELETE.

    A file deleted and then re-added has a newer non-DELETE event, so it is
    not considered deleted.
    """
    return {
        path for path, event in files_by_path.items()
        if is_linked_content_path(path) and event.method == 'DELETE'
    }
