"""
Build orchestrator for the media usage index.

Two modes:
- Full: stream the complete audit and media logs, associate media with page
  previews, parse every page for linked content, overwrite the index.
- Incremental: fetch only the log slice since the last build and diff it
  into the persisted index.

Mode selection compares the build metadata with the index file's
last-modified time; any sign of an out-of-band edit forces a full build.
"""

import logging
from typing import Any, Dict, List, Optional

from mediaindex.core.associator import MediaAssociator, count_unused
from mediaindex.core.classify import (
    deleted_linked_paths, group_page_events, is_page, is_preview_event, latest_file_events,
)
from mediaindex.core.diff import IncrementalDiff
from mediaindex.core.memory import check_memory
from mediaindex.core.models import (
    AuditEvent, BuildMeta, IndexEntry, MediaEvent, MediaIndex,
)
from mediaindex.core.usage import build_content_usage_map, build_linked_content_entries
from mediaindex.indexer.context import BuildContext, now_ms
from mediaindex.services.log_stream import LogStreamClient
from mediaindex.services.markup import MarkupFetcher
from mediaindex.services.storage import SourceStore

logger = logging.getLogger(__name__)

BUILD_MODES = ('auto', 'full', 'incremental')


class IndexBuildError(Exception):
    """A build could not start or proceed."""


class IndexBuilder:
    """Drives a single build for one site."""

    def __init__(
        self,
        context: BuildContext,
        log_client: Optional[LogStreamClient] = None,
        store: Optional[SourceStore] = None,
        markup: Optional[MarkupFetcher] = None
    ):
        self.context = context
        self.config = context.config
        self.log_client = log_client or LogStreamClient(context)
        self.store = store or SourceStore(context)
        self.markup = markup or MarkupFetcher(context)

    # ═══════════════════════════════════════════════════════════════════════════
    # STATUS / MODE DECISION
    # ═══════════════════════════════════════════════════════════════════════════

    def get_index_status(self) -> Dict[str, Any]:
        """Persisted build metadata plus index file presence."""
        meta = self.store.load_build_meta()
        info = self.store.get_index_info()
        return {
            'last_refresh': meta.last_fetch_time,
            'entries_count': meta.entries_count,
            'last_build_mode': meta.last_build_mode,
            'index_exists': info['exists'],
            'index_last_modified': info['last_modified'],
        }

    def should_reindex(self) -> Dict[str, Any]:
        """
        Decide whether an incremental build is safe.

        Incremental requires a previous fetch time, an existing index, a known
        index last-modified time, and the two within the alignment tolerance.

        Returns:
            {'should_reindex': bool, 'reason': str or None}
        """
        meta = self.store.load_build_meta()
        info = self.store.get_index_info()

        if not meta.last_fetch_time:
            return {'should_reindex': False, 'reason': 'No previous fetch (meta missing lastFetchTime)'}
        if not info['exists']:
            return {'should_reindex': False, 'reason': 'Index file does not exist'}
        if info['last_modified'] is None:
            return {'should_reindex': False, 'reason': 'List API did not return lastModified for the index'}

        diff = abs(meta.last_fetch_time - info['last_modified'])
        if diff > self.config.INDEX_ALIGNMENT_TOLERANCE_MS:
            return {
                'should_reindex': False,
                'reason': (
                    f"Index lastModified ({info['last_modified']}) does not align with "
                    f"meta lastFetchTime ({meta.last_fetch_time})"
                ),
            }
        return {'should_reindex': True, 'reason': None}

    # ═══════════════════════════════════════════════════════════════════════════
    # FULL BUILD
    # ═══════════════════════════════════════════════════════════════════════════

    def build_full(self) -> List[IndexEntry]:
        """Rebuild the whole index from the complete logs."""
        ctx = self.context
        page_size = self.config.API_PAGE_SIZE
        ctx.report('starting', 'Mode: Full build (rebuilding from auditlog + medialog)', 5)

        # Phase 1: stream auditlog into page buckets and latest-file events
        ctx.report('fetching', 'Fetching auditlog (streaming)...', 10)
        page_events: List[AuditEvent] = []
        file_events: List[AuditEvent] = []

        def on_audit_chunk(chunk: List[dict]):
            valid = [AuditEvent.from_dict(raw) for raw in chunk if is_preview_event(raw)]
            if len(valid) < len(chunk):
                logger.debug(f"[auditlog chunk] raw={len(chunk)}, dropped={len(chunk) - len(valid)}")
            for event in valid:
                if is_page(event.path):
                    page_events.append(event)
                else:
                    file_events.append(event)
            total = len(page_events) + len(file_events)
            ctx.report('fetching', f"Auditlog: {total} entries...", 15)

        self.log_client.stream_log('log', ctx.org, ctx.repo, ctx.ref, None, page_size, on_audit_chunk)

        pages_by_path = group_page_events(page_events)
        files_by_path = latest_file_events(file_events)
        deleted_paths = deleted_linked_paths(files_by_path)
        logger.debug(
            f"[auditlog done] total={len(page_events) + len(file_events)}, pages={len(pages_by_path)}, "
            f"files={len(files_by_path)}, deleted={len(deleted_paths)}"
        )
        ctx.report(
            'fetching',
            f"Identified {len(page_events)} page events, {len(files_by_path)} files",
            25
        )

        # Phase 2: stream medialog through the associator
        ctx.report('fetching', 'Fetching medialog (streaming)...', 30)
        associator = MediaAssociator(pages_by_path, self.config.MEDIA_ASSOCIATION_WINDOW_MS)

        def on_media_chunk(chunk: List[dict]):
            associator.add_chunk(chunk)
            mem = check_memory(self.config.MEMORY_WARNING_RATIO)
            if mem['warning']:
                message = f"Memory: {mem['used_mb']:.0f}MB / {mem['limit_mb']:.0f}MB"
                logger.warning(message)
                ctx.report('processing', message, 35)
            else:
                ctx.report(
                    'fetching',
                    f"Medialog: {associator.stats['media_events']} entries processed...",
                    35
                )

        self.log_client.stream_log('medialog', ctx.org, ctx.repo, ctx.ref, None, page_size, on_media_chunk)
        ctx.report(
            'processing',
            f"Processed {associator.stats['media_events']} medialog, "
            f"{associator.stats['page_refs']} page refs",
            60
        )

        # Phase 3: standalone uploads and unmatched orphans
        index = associator.finalize()
        ctx.report(
            'processing',
            f"Standalone: {associator.stats['standalone']}, total: {len(index)}",
            70
        )

        # Phase 4: linked content from page markup
        ctx.report('processing', 'Building content usage map (parsing pages)...', 78)
        usage_map, failed = build_content_usage_map(
            pages_by_path.keys(),
            self.markup.fetch_page_markdown,
            self.config.MAX_CONCURRENT_FETCHES,
            on_progress=lambda message: ctx.report('processing', message, 80),
        )
        if failed:
            ctx.log(f"Could not fetch markdown for {len(failed)} pages", 'warning')

        media_count = len(index)
        for entry in build_linked_content_entries(usage_map, files_by_path, deleted_paths):
            index.add(entry)
        ctx.report(
            'processing',
            f"Added {len(index) - media_count} linked content entries (PDFs, SVGs, fragments)",
            82
        )

        self._persist(index, 'full')
        ctx.report('complete', f"Complete! {len(index)} entries indexed", 100)
        return list(index)

    # ═══════════════════════════════════════════════════════════════════════════
    # INCREMENTAL BUILD
    # ═══════════════════════════════════════════════════════════════════════════

    def build_incremental(self) -> List[IndexEntry]:
        """Merge the activity since the last build into the persisted index."""
        ctx = self.context
        meta = self.store.load_build_meta()
        last_fetch_time = meta.last_fetch_time
        if not last_fetch_time:
            raise IndexBuildError('Cannot run incremental: meta missing lastFetchTime')

        ctx.log(f"lastFetchTime: {last_fetch_time}")
        ctx.report('starting', 'Mode: Incremental re-index (since last build)', 5)

        ctx.report('loading', 'Loading existing index...', 8)
        index = MediaIndex.from_rows(self.store.load_index())

        ctx.report('fetching', 'Fetching new auditlog entries...', 15)
        audit_raw = self.log_client.fetch_log(
            'log', last_fetch_time,
            lambda entries: ctx.report('fetching', f"Fetched {len(entries)} auditlog entries...", 25)
        )
        valid = [AuditEvent.from_dict(raw) for raw in audit_raw if is_preview_event(raw)]
        pages = [e for e in valid if is_page(e.path)]
        files = [e for e in valid if not is_page(e.path)]

        ctx.report('fetching', 'Fetching new medialog entries...', 35)
        media_raw = self.log_client.fetch_log(
            'medialog', last_fetch_time,
            lambda entries: ctx.report('fetching', f"Fetched {len(entries)} medialog entries...", 45)
        )
        media_events = [MediaEvent.from_dict(raw) for raw in media_raw]

        if not pages and not media_events:
            ctx.report('complete', 'No new activity since last build - index unchanged', 100)
            return list(index)

        ctx.log(f"Auditlog: {len(audit_raw)} entries, {len(pages)} pages")
        ctx.log(f"Medialog: {len(media_events)} entries (all since lastFetchTime)")
        ctx.report(
            'processing',
            f"Processing {len(pages)} pages with {len(media_events)} medialog entries...",
            55
        )

        pages_by_path = group_page_events(pages)
        diff = IncrementalDiff(
            index, media_events, self.config.INCREMENTAL_WINDOW_MS, on_log=ctx.on_log
        )
        page_results = diff.process_page_media_updates(pages_by_path)
        added = page_results['added'] + diff.process_standalone_uploads()
        removed = page_results['removed']

        ctx.report('processing', 'Building usage map for linked content...', 83)
        parsed_pages = list(pages_by_path.keys())
        usage_map, failed = build_content_usage_map(
            parsed_pages,
            self.markup.fetch_page_markdown,
            self.config.MAX_CONCURRENT_FETCHES,
            on_progress=lambda message: ctx.report('processing', message, 84),
        )
        if failed:
            ctx.log(f"Could not fetch markdown for {len(failed)} pages", 'warning')

        # a page whose markdown could not be read keeps its linked rows as they are
        unreadable = set(failed)
        readable_pages = [p for p in parsed_pages if p not in unreadable]
        linked_results = diff.process_linked_content(files, readable_pages, usage_map)
        added += linked_results['added']
        removed += linked_results['removed']

        ctx.report(
            'processing',
            f"Incremental: +{added} added, -{removed} removed, total: {len(index)}",
            85
        )

        self._persist(index, 'incremental')
        ctx.report(
            'complete',
            f"Incremental complete! {len(index)} entries ({added} added, {removed} removed)",
            100
        )
        return list(index)

    # ═══════════════════════════════════════════════════════════════════════════
    # ENTRY POINT
    # ═══════════════════════════════════════════════════════════════════════════

    def run(self, mode: str = 'auto') -> List[IndexEntry]:
        """
        Build the index.

        Args:
            mode: 'auto' (decide from metadata), 'full' or 'incremental'
        """
        if mode not in BUILD_MODES:
            raise IndexBuildError(f"Unknown build mode: {mode}")

        self.context.report('starting', 'Checking build mode...', 0)
        if mode == 'auto':
            decision = self.should_reindex()
            if not decision['should_reindex']:
                self.context.log(f"Full build: {decision['reason']}")
                mode = 'full'
            else:
                mode = 'incremental'

        logger.info(f"Starting {mode} build for {self.context.site_path}")
        if mode == 'incremental':
            return self.build_incremental()
        return self.build_full()

    def _persist(self, index: MediaIndex, build_mode: str):
        """Write the index, then the metadata that vouches for it."""
        self.context.report('saving', f"Saving {len(index)} entries...", 90)
        self.store.save_index(index.to_rows())
        self.store.save_meta(BuildMeta(
            last_fetch_time=now_ms(),
            entries_count=len(index),
            last_build_mode=build_mode,
        ))
        logger.info(
            f"{build_mode} build saved: {len(index)} entries, "
            f"{count_unused(index)} unused"
        )
