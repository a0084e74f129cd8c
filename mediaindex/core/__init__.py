"""Core indexing engine: data model, classification, association and diffing."""

from mediaindex.core.models import (
    AuditEvent, MediaEvent, IndexEntry, EntryKey, EntryStatus,
    MediaIndex, UsageMap, BuildMeta,
)
from mediaindex.core.associator import MediaAssociator, find_matching_page_events
from mediaindex.core.usage import build_content_usage_map, build_linked_content_entries
from mediaindex.core.diff import IncrementalDiff

__all__ = [
    'AuditEvent', 'MediaEvent', 'IndexEntry', 'EntryKey', 'EntryStatus',
    'MediaIndex', 'UsageMap', 'BuildMeta',
    'MediaAssociator', 'find_matching_page_events',
    'build_content_usage_map', 'build_linked_content_entries',
    'IncrementalDiff',
]
