"""
Incremental diff engine.

Reconciles a previously persisted index with the audit/media log slice
observed since the last build. Per re-previewed page:

    old       = hashes currently indexed against the page
    new       = hashes uploaded in [T, T + window) after the latest preview T
    to_remove = old - new
    to_add    = new - old
    unchanged = old & new   (timestamp refreshed)

A page previewed with nothing in its window is treated as an intentional
clearing of all its media. Removing a hash's last page reference leaves one
``unused`` orphan row unless the media log has an explicit delete for it.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Set

from mediaindex.core.associator import media_entry
from mediaindex.core.classify import (
    deleted_linked_paths, is_linked_content_path, latest_file_events, normalize_path,
)
from mediaindex.core.models import (
    AuditEvent, EntryKey, EntryStatus, IndexEntry, MediaEvent, MediaIndex, UsageMap,
)
from mediaindex.core.usage import linked_status, to_linked_content_entry

logger = logging.getLogger(__name__)

INCREMENTAL_WINDOW_MS = 10000


def _iso(ts: int) -> str:
    return datetime.fromtimestamp(ts / 1000, tz=timezone.utc).isoformat()


def _preview(items: Iterable[str], limit: int = 5) -> str:
    items = list(items)
    suffix = '...' if len(items) > limit else ''
    return f"{', '.join(items[:limit])}{suffix}"


class IncrementalDiff:
    """
    Applies a new log slice to an existing MediaIndex in place.

    Args:
        index: Index loaded from storage (mutated)
        media_events: Media log entries since the last build
        window_ms: Forward window from a page's latest preview
        on_log: Optional callback for per-page diagnostics
    """

    def __init__(
        self,
        index: MediaIndex,
        media_events: List[MediaEvent],
        window_ms: int = INCREMENTAL_WINDOW_MS,
        on_log: Optional[Callable[[str], None]] = None
    ):
        self.index = index
        self.media_events = media_events
        self.window_ms = window_ms
        self.on_log = on_log
        self.deleted_hashes: Set[str] = {m.media_hash for m in media_events if m.is_delete}

    def _log(self, message: str):
        logger.debug(message)
        if self.on_log:
            self.on_log(message)

    # ───────────────────────────────────────────────────────────────────────────
    # Media rows
    # ───────────────────────────────────────────────────────────────────────────

    def remove_media_maybe_add_orphan(self, entry: IndexEntry, page: str) -> int:
        """
        Remove the (hash, page) row; keep the asset visible as an orphan.

        The orphan row is added only when no other page references the hash,
        the new media slice has no delete for it, and no orphan row exists.

        Returns:
            1 if a row was removed, else 0
        """
        removed = self.index.remove(EntryKey.media(entry.hash, page))
        if removed is None:
            return 0

        media_hash = entry.hash
        if (not self.index.has_page_reference(media_hash)
                and media_hash not in self.deleted_hashes
                and not self.index.has_orphan(media_hash)):
            self.index.add(IndexEntry(
                hash=media_hash,
                page='',
                url=removed.url,
                name=removed.name,
                timestamp=removed.timestamp,
                user=removed.user,
                operation=removed.operation,
                type=removed.type,
                status=EntryStatus.UNUSED,
            ))
            self._log(f"  Orphaned: {media_hash}")
        return 1

    def process_page_media_updates(self, pages_by_path: Dict[str, List[AuditEvent]]) -> Dict[str, int]:
        """
        Diff media rows for every re-previewed page.

        Only the latest preview per page is used; earlier previews in the
        slice are superseded by it.
        """
        added = 0
        removed = 0

        for page, page_events in pages_by_path.items():
            latest_ts = page_events[0].timestamp
            window_end = latest_ts + self.window_ms

            self._log(f"--- Page: {page} ---")
            self._log(f"  Latest preview: {latest_ts} ({_iso(latest_ts)})")
            self._log(f"  Window: [{latest_ts}-{window_end}] ({self.window_ms / 1000:g}s)")

            page_media = [
                m for m in self.media_events
                if m.resource_path and normalize_path(m.resource_path) == page
            ]
            new_media = [m for m in page_media if latest_ts <= m.timestamp < window_end]
            if page_media:
                outside = [m for m in page_media if m not in new_media]
                self._log(
                    f"  Medialog for page: {len(page_media)} total, "
                    f"{len(new_media)} in window, {len(outside)} outside"
                )
                for m in outside[:3]:
                    self._log(f"    Outside: hash={m.media_hash} ts={m.timestamp} ({_iso(m.timestamp)})")

            old_entries = self.index.media_entries_for_page(page)
            old_hashes = list(dict.fromkeys(e.hash for e in old_entries))
            new_by_hash: Dict[str, MediaEvent] = {}
            for m in new_media:
                current = new_by_hash.get(m.media_hash)
                if current is None or m.timestamp > current.timestamp:
                    new_by_hash[m.media_hash] = m

            self._log(f"  Old (index): {len(old_hashes)} hashes {_preview(old_hashes)}")
            self._log(f"  New (medialog in window): {len(new_by_hash)} hashes {_preview(new_by_hash)}")

            if not new_media and old_entries:
                self._log("  Edge case: Page previewed with no media in window - removing old entries")
                for entry in old_entries:
                    removed += self.remove_media_maybe_add_orphan(entry, page)
                continue

            old_set = set(old_hashes)
            to_remove = [h for h in old_hashes if h not in new_by_hash]
            to_add = [h for h in new_by_hash if h not in old_set]
            unchanged = [h for h in new_by_hash if h in old_set]

            if to_remove or to_add:
                self._log(f"  Diff: remove {len(to_remove)} ({_preview(to_remove, 3)}), add {len(to_add)}")

            old_by_hash = {e.hash: e for e in old_entries}
            for media_hash in to_remove:
                removed += self.remove_media_maybe_add_orphan(old_by_hash[media_hash], page)

            for media_hash in to_add:
                self.index.add(media_entry(new_by_hash[media_hash], page, EntryStatus.REFERENCED))
                # the asset is referenced again, its orphan row no longer applies
                self.index.remove(EntryKey.media(media_hash, ''))
                added += 1

            for media_hash in unchanged:
                existing = self.index.get(EntryKey.media(media_hash, page))
                if existing is not None:
                    existing.timestamp = new_by_hash[media_hash].timestamp

        return {'added': added, 'removed': removed}

    def process_standalone_uploads(self) -> int:
        """Standalone uploads with no page reference become ``unused`` rows."""
        referenced = self.index.referenced_hashes()
        added = 0
        for media in self.media_events:
            if not media.is_standalone_upload:
                continue
            if media.media_hash in referenced or self.index.has_orphan(media.media_hash):
                continue
            self.index.add(media_entry(media, '', EntryStatus.UNUSED))
            added += 1
        return added

    # ───────────────────────────────────────────────────────────────────────────
    # Linked content rows
    # ───────────────────────────────────────────────────────────────────────────

    def process_linked_content(
        self,
        file_events: Iterable[AuditEvent],
        parsed_pages: Iterable[str],
        usage_map: UsageMap
    ) -> Dict[str, int]:
        """
        Reconcile fragment/PDF/SVG rows.

        Args:
            file_events: Non-page preview events from the audit slice
            parsed_pages: Pages whose markdown was re-parsed
            usage_map: Usage parsed from those pages

        Returns:
            {'added': n, 'removed': n}
        """
        added = 0
        removed = 0

        files_by_path = {
            path: event for path, event in latest_file_events(file_events).items()
            if is_linked_content_path(path)
        }
        deleted = deleted_linked_paths(files_by_path)

        for path in sorted(deleted):
            if self.index.remove(EntryKey.linked(path)) is not None:
                removed += 1
                self._log(f"Removed linked content (DELETE): {path}")

        candidates = list(files_by_path) + usage_map.all_paths()

        # rows that listed a re-parsed page must be recomputed, the page may
        # have dropped its reference
        parsed = set(parsed_pages)
        for entry in self.index.linked_entries():
            if any(p in parsed for p in entry.pages):
                candidates.append(entry.hash)

        for file_path in dict.fromkeys(candidates):
            if file_path in deleted:
                continue
            file_event = files_by_path.get(file_path)

            existing = self.index.linked_entry(file_path)
            if existing is not None:
                # pages not re-parsed in this slice keep their reference
                kept = [p for p in existing.pages if p not in parsed]
                linked_pages = list(dict.fromkeys(kept + usage_map.pages_for(file_path)))
                existing.page = ','.join(linked_pages)
                existing.status = linked_status(linked_pages)
                if file_event is not None:
                    existing.timestamp = file_event.timestamp
            else:
                linked_pages = usage_map.pages_for(file_path)
                self.index.add(to_linked_content_entry(
                    file_path, linked_pages, file_event, linked_status(linked_pages)
                ))
                added += 1

        return {'added': added, 'removed': removed}
