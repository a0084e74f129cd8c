"""
Linked content usage extraction.

Fragments, PDFs and SVGs have no content hash in the media log. Their usage
is discovered by fetching each page's markdown and parsing link syntax,
then merged with the linked files seen directly in the audit log.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from mediaindex.core.classify import (
    extract_fragment_references, extract_icon_references, extract_links,
    get_file_type, is_linked_content_path,
)
from mediaindex.core.models import (
    LINKED_CONTENT_SOURCE, AuditEvent, EntryStatus, IndexEntry, UsageMap,
)

logger = logging.getLogger(__name__)

MAX_CONCURRENT_FETCHES = 10

PDF_PATTERN = r'\.pdf$'
SVG_PATTERN = r'\.svg$'

FetchMarkdown = Callable[[str], Optional[str]]
ProgressCallback = Callable[[str], None]


def parse_page_usage(usage_map: UsageMap, page: str, markdown: str):
    """Record every linked content reference found in one page's markdown."""
    for path in extract_fragment_references(markdown):
        usage_map.add('fragments', path, page)
    for path in extract_links(markdown, PDF_PATTERN):
        usage_map.add('pdfs', path, page)
    for path in extract_links(markdown, SVG_PATTERN):
        usage_map.add('svgs', path, page)
    for path in extract_icon_references(markdown):
        usage_map.add('svgs', path, page)


def build_content_usage_map(
    page_paths: Iterable[str],
    fetch_markdown: FetchMarkdown,
    max_workers: int = MAX_CONCURRENT_FETCHES,
    on_progress: Optional[ProgressCallback] = None
) -> Tuple[UsageMap, List[str]]:
    """
    Fetch and parse pages with a bounded worker pool.

    Args:
        page_paths: Normalized page paths to parse (duplicates ignored)
        fetch_markdown: Returns page markdown, or None when unavailable
        max_workers: Maximum fetches in flight
        on_progress: Optional callback receiving a status message per page

    Returns:
        (usage_map, failed_pages). A failed page contributes no usage data.
    """
    pages = list(dict.fromkeys(page_paths))
    usage_map = UsageMap()
    if not pages:
        return usage_map, []

    total = len(pages)
    logger.debug(
        f"Parsing {total} unique pages: "
        f"[{', '.join(pages[:10])}{'...' if total > 10 else ''}]"
    )

    def fetch(item: Tuple[int, str]) -> Optional[str]:
        i, page = item
        if on_progress:
            on_progress(f"Parsing page {i + 1}/{total}: {page}")
        try:
            return fetch_markdown(page)
        except Exception as e:
            logger.warning(f"Failed to fetch markdown for {page}: {e}")
            return None

    # map() yields results in input order, so the usage map is deterministic
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        results = list(executor.map(fetch, enumerate(pages)))

    failed = []
    for page, markdown in zip(pages, results):
        if not markdown:
            failed.append(page)
            continue
        parse_page_usage(usage_map, page, markdown)

    if failed:
        logger.warning(f"Failed to fetch markdown for {len(failed)} pages: [{', '.join(failed)}]")

    icon_paths = [p for p in usage_map.svgs if '/icons/' in p]
    logger.debug(
        f"Usage map: pdfs={len(usage_map.pdfs)}, svgs={len(usage_map.svgs)}, "
        f"fragments={len(usage_map.fragments)} | icons: [{', '.join(icon_paths) or 'none'}]"
    )
    return usage_map, failed


def to_linked_content_entry(
    file_path: str,
    linked_pages: List[str],
    file_event: Optional[AuditEvent],
    status: EntryStatus
) -> IndexEntry:
    """Linked content row using the same columns as media rows."""
    return IndexEntry(
        hash=file_path,
        page=','.join(linked_pages),
        url='',
        name=file_path.split('/')[-1] or file_path,
        timestamp=file_event.timestamp if file_event else 0,
        user=(file_event.user if file_event else '') or '',
        operation=LINKED_CONTENT_SOURCE,
        type=get_file_type(file_path),
        status=status,
        source=LINKED_CONTENT_SOURCE,
    )


def linked_status(linked_pages: List[str]) -> EntryStatus:
    return EntryStatus.REFERENCED if linked_pages else EntryStatus.FILE_UNUSED


def build_linked_content_entries(
    usage_map: UsageMap,
    files_by_path: Dict[str, AuditEvent],
    deleted_paths: Set[str]
) -> List[IndexEntry]:
    """
    Rows for every linked file seen in the audit log or referenced in markup.

    Deleted files are skipped. Files with no referencing page are
    ``file-unused``; the rest are ``referenced``.
    """
    linked_files = {p: e for p, e in files_by_path.items() if is_linked_content_path(p)}
    all_paths = list(dict.fromkeys(list(linked_files) + usage_map.all_paths()))

    entries = []
    for file_path in all_paths:
        if file_path in deleted_paths:
            logger.debug(f"Skipping deleted linked content: {file_path}")
            continue
        linked_pages = usage_map.pages_for(file_path)
        entries.append(to_linked_content_entry(
            file_path, linked_pages, linked_files.get(file_path), linked_status(linked_pages)
        ))
    return entries
