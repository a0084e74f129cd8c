"""
Page-media association for full builds.

Media operations normally follow a page preview within seconds: the editor
previews the page, the platform uploads the assets it references. A media
event carrying a resourcePath is therefore attributed to every preview of
that page inside the window that precedes it:

    page.timestamp <= media.timestamp  and
    page.timestamp >  media.timestamp - window

Media uploaded before the page was previewed is not matched.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set

from mediaindex.core.classify import (
    detect_media_type, extract_name, normalize_path,
)
from mediaindex.core.models import (
    AuditEvent, EntryStatus, IndexEntry, MediaEvent, MediaIndex,
)

logger = logging.getLogger(__name__)

MEDIA_ASSOCIATION_WINDOW_MS = 5000


def find_matching_page_events(
    pages_by_path: Dict[str, List[AuditEvent]],
    resource_path: str,
    media_timestamp: int,
    window_ms: int = MEDIA_ASSOCIATION_WINDOW_MS
) -> List[AuditEvent]:
    """Page events at ``resource_path`` inside the window before the media event."""
    events = pages_by_path.get(normalize_path(resource_path))
    if not events:
        return []
    min_ts = media_timestamp - window_ms
    return [e for e in events if min_ts < e.timestamp <= media_timestamp]


def media_entry(media: MediaEvent, page: str, status: EntryStatus) -> IndexEntry:
    """Index row for a media event."""
    return IndexEntry(
        hash=media.media_hash,
        page=page,
        url=media.path,
        name=extract_name(media),
        timestamp=media.timestamp,
        user=media.user,
        operation=media.operation,
        type=detect_media_type(media.content_type),
        status=status,
    )


class MediaAssociator:
    """
    Streams media-log chunks against the page buckets of a full build.

    Only the (hash, page) rows, the set of matched hashes and a small buffer
    of standalone uploads are retained between chunks.
    """

    def __init__(
        self,
        pages_by_path: Dict[str, List[AuditEvent]],
        window_ms: int = MEDIA_ASSOCIATION_WINDOW_MS
    ):
        self.pages_by_path = pages_by_path
        self.window_ms = window_ms
        self.index = MediaIndex()
        self.referenced_hashes: Set[str] = set()
        self.deleted_hashes: Set[str] = set()
        self.standalone: List[MediaEvent] = []
        self._unmatched: Dict[str, MediaEvent] = {}
        self.stats = {
            'media_events': 0,
            'page_refs': 0,
            'standalone': 0,
            'orphans': 0,
        }

    def add(self, media: MediaEvent):
        """Associate a single media event."""
        self.stats['media_events'] += 1
        if media.is_delete:
            self.deleted_hashes.add(media.media_hash)

        if media.resource_path:
            matches = find_matching_page_events(
                self.pages_by_path, media.resource_path, media.timestamp, self.window_ms
            )
            for page_event in matches:
                page = normalize_path(page_event.path)
                self.index.upsert_newer(media_entry(media, page, EntryStatus.REFERENCED))
                self.referenced_hashes.add(media.media_hash)

            if not matches:
                previous = self._unmatched.get(media.media_hash)
                if previous is None or media.timestamp > previous.timestamp:
                    self._unmatched[media.media_hash] = media

        elif media.original_filename:
            self.standalone.append(media)

    def add_chunk(self, chunk: Iterable[dict]):
        """Associate one page of raw media-log entries."""
        for raw in chunk:
            self.add(MediaEvent.from_dict(raw))
        self.stats['page_refs'] = len(self.index)

    def finalize(self) -> MediaIndex:
        """
        Add orphan rows and return the media part of the index.

        Standalone uploads whose hash never matched a page become ``unused``
        rows (latest upload wins). A page-context upload that matched no
        preview and was never deleted also gets exactly one ``unused`` row,
        so no asset silently drops out of the index.
        """
        self.stats['page_refs'] = len(self.index)

        for media in self.standalone:
            if media.media_hash in self.referenced_hashes:
                continue
            self.index.upsert_newer(media_entry(media, '', EntryStatus.UNUSED))
        self.stats['standalone'] = len(self.standalone)

        orphans = 0
        for media_hash, media in self._unmatched.items():
            if media_hash in self.referenced_hashes or media_hash in self.deleted_hashes:
                continue
            if self.index.has_orphan(media_hash):
                continue
            self.index.add(media_entry(media, '', EntryStatus.UNUSED))
            orphans += 1
        self.stats['orphans'] = orphans

        logger.debug(
            f"Association done: {self.stats['media_events']} media events, "
            f"{self.stats['page_refs']} page refs, {self.stats['standalone']} standalone, "
            f"{orphans} unmatched orphans"
        )
        return self.index


def associate_media(
    pages_by_path: Dict[str, List[AuditEvent]],
    media_events: Iterable[dict],
    window_ms: int = MEDIA_ASSOCIATION_WINDOW_MS
) -> MediaIndex:
    """One-shot association of an in-memory media log."""
    associator = MediaAssociator(pages_by_path, window_ms)
    associator.add_chunk(media_events)
    return associator.finalize()


def count_unused(index: MediaIndex, media_hash: Optional[str] = None) -> int:
    """Number of ``unused`` media rows (optionally for one hash)."""
    return sum(
        1 for e in index
        if e.status == EntryStatus.UNUSED and (media_hash is None or e.hash == media_hash)
    )
