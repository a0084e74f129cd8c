"""
Data model for the media usage index.

Log events are read-only inputs from the platform. Index entries are the
persisted rows; MediaIndex keeps them keyed by explicit identity so the
no-duplicate invariants hold by construction:

- media asset rows are identified by (hash, page)
- linked content rows (fragments, PDFs, SVGs) are identified by path alone,
  stored in the ``hash`` column
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Set

LINKED_CONTENT_SOURCE = 'auditlog-parsed'


def _to_int(value: Any) -> int:
    """Sheet cells may round-trip numbers as strings."""
    if value is None or value == '':
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


class EntryStatus(str, Enum):
    REFERENCED = 'referenced'
    UNUSED = 'unused'
    FILE_UNUSED = 'file-unused'


# ═══════════════════════════════════════════════════════════════════════════════
# LOG EVENTS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AuditEvent:
    """A publish/preview/delete action on a site path."""
    path: str
    timestamp: int
    route: str = ''
    method: str = ''
    user: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        return cls(
            path=data.get('path') or '',
            timestamp=_to_int(data.get('timestamp')),
            route=data.get('route') or '',
            method=data.get('method') or '',
            user=data.get('user') or '',
        )


@dataclass(frozen=True)
class MediaEvent:
    """
    An asset upload/delete from the media log.

    ``resource_path`` is set when the asset was uploaded in the context of a
    page; standalone uploads carry ``original_filename`` instead.
    """
    media_hash: str
    path: str
    timestamp: int
    resource_path: Optional[str] = None
    original_filename: Optional[str] = None
    user: str = ''
    operation: str = ''
    content_type: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MediaEvent':
        return cls(
            media_hash=data.get('mediaHash') or '',
            path=data.get('path') or '',
            timestamp=_to_int(data.get('timestamp')),
            resource_path=data.get('resourcePath') or None,
            original_filename=data.get('originalFilename') or None,
            user=data.get('user') or '',
            operation=data.get('operation') or '',
            content_type=data.get('contentType') or '',
        )

    @property
    def is_delete(self) -> bool:
        return self.operation == 'delete'

    @property
    def is_standalone_upload(self) -> bool:
        return not self.resource_path and bool(self.original_filename)


# ═══════════════════════════════════════════════════════════════════════════════
# INDEX ENTRIES
# ═══════════════════════════════════════════════════════════════════════════════

class EntryKey(NamedTuple):
    """Identity of an index row."""
    kind: str
    hash: str
    page: str = ''

    @classmethod
    def media(cls, media_hash: str, page: str) -> 'EntryKey':
        return cls('media', media_hash, page or '')

    @classmethod
    def linked(cls, path: str) -> 'EntryKey':
        return cls('linked', path, '')


@dataclass
class IndexEntry:
    """One row of the persisted media index."""
    hash: str
    page: str
    url: str
    name: str
    timestamp: int
    user: str
    operation: str
    type: str
    status: EntryStatus
    source: Optional[str] = None

    @property
    def is_linked_content(self) -> bool:
        return LINKED_CONTENT_SOURCE in (self.operation, self.source)

    @property
    def key(self) -> EntryKey:
        if self.is_linked_content:
            return EntryKey.linked(self.hash)
        return EntryKey.media(self.hash, self.page)

    @property
    def pages(self) -> List[str]:
        """Referencing pages (linked content stores a comma-joined list)."""
        return [p.strip() for p in (self.page or '').split(',') if p.strip()]

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        row['status'] = EntryStatus(self.status).value
        if self.source is None:
            del row['source']
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'IndexEntry':
        status = row.get('status') or EntryStatus.REFERENCED.value
        return cls(
            hash=str(row.get('hash') or ''),
            page=str(row.get('page') or ''),
            url=str(row.get('url') or ''),
            name=str(row.get('name') or ''),
            timestamp=_to_int(row.get('timestamp')),
            user=str(row.get('user') or ''),
            operation=str(row.get('operation') or ''),
            type=str(row.get('type') or ''),
            status=EntryStatus(status),
            source=row.get('source') or None,
        )


class MediaIndex:
    """
    Insertion-ordered collection of index entries keyed by EntryKey.

    Keeps secondary lookups by hash and by page for media rows so the diff
    engine never has to scan the whole index.
    """

    def __init__(self, entries: Optional[List[IndexEntry]] = None):
        self._entries: Dict[EntryKey, IndexEntry] = {}
        self._by_hash: Dict[str, Set[EntryKey]] = {}
        self._by_page: Dict[str, Set[EntryKey]] = {}
        for entry in entries or []:
            self.add(entry)

    @classmethod
    def from_rows(cls, rows: List[Dict[str, Any]]) -> 'MediaIndex':
        return cls([IndexEntry.from_row(row) for row in rows if isinstance(row, dict)])

    def to_rows(self) -> List[Dict[str, Any]]:
        return [entry.to_row() for entry in self._entries.values()]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[IndexEntry]:
        return iter(list(self._entries.values()))

    def __contains__(self, key: EntryKey) -> bool:
        return key in self._entries

    def get(self, key: EntryKey) -> Optional[IndexEntry]:
        return self._entries.get(key)

    def add(self, entry: IndexEntry) -> bool:
        """Add an entry. Returns False if its identity is already present."""
        key = entry.key
        if key in self._entries:
            return False
        self._entries[key] = entry
        if key.kind == 'media':
            self._by_hash.setdefault(key.hash, set()).add(key)
            self._by_page.setdefault(key.page, set()).add(key)
        return True

    def upsert_newer(self, entry: IndexEntry) -> bool:
        """Insert, or replace the existing row if this one has a larger timestamp."""
        existing = self._entries.get(entry.key)
        if existing is None:
            return self.add(entry)
        if entry.timestamp > existing.timestamp:
            self._entries[entry.key] = entry
            return True
        return False

    def remove(self, key: EntryKey) -> Optional[IndexEntry]:
        entry = self._entries.pop(key, None)
        if entry is not None and key.kind == 'media':
            self._by_hash.get(key.hash, set()).discard(key)
            if not self._by_hash.get(key.hash):
                self._by_hash.pop(key.hash, None)
            self._by_page.get(key.page, set()).discard(key)
            if not self._by_page.get(key.page):
                self._by_page.pop(key.page, None)
        return entry

    def media_entries_for_page(self, page: str) -> List[IndexEntry]:
        keys = self._by_page.get(page, set())
        return [entry for key, entry in self._entries.items() if key in keys]

    def has_hash(self, media_hash: str) -> bool:
        return bool(self._by_hash.get(media_hash))

    def has_page_reference(self, media_hash: str) -> bool:
        return any(key.page for key in self._by_hash.get(media_hash, ()))

    def has_orphan(self, media_hash: str) -> bool:
        return EntryKey.media(media_hash, '') in self._entries

    def referenced_hashes(self) -> Set[str]:
        return {h for h, keys in self._by_hash.items() if any(k.page for k in keys)}

    def linked_entry(self, path: str) -> Optional[IndexEntry]:
        return self._entries.get(EntryKey.linked(path))

    def linked_entries(self) -> List[IndexEntry]:
        return [e for k, e in self._entries.items() if k.kind == 'linked']


# ═══════════════════════════════════════════════════════════════════════════════
# USAGE MAP / BUILD META
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class UsageMap:
    """referenced path -> referencing pages, split by linked content kind."""
    fragments: Dict[str, List[str]] = field(default_factory=dict)
    pdfs: Dict[str, List[str]] = field(default_factory=dict)
    svgs: Dict[str, List[str]] = field(default_factory=dict)

    def add(self, kind: str, path: str, page: str):
        pages = getattr(self, kind).setdefault(path, [])
        if page not in pages:
            pages.append(page)

    def pages_for(self, path: str) -> List[str]:
        from mediaindex.core.classify import usage_kind
        return list(getattr(self, usage_kind(path)).get(path, []))

    def all_paths(self) -> List[str]:
        paths = []
        for kind in ('pdfs', 'svgs', 'fragments'):
            paths.extend(getattr(self, kind).keys())
        return paths


@dataclass
class BuildMeta:
    """Single-row metadata sheet stored next to the index."""
    last_fetch_time: Optional[int] = None
    entries_count: int = 0
    last_build_mode: Optional[str] = None
    last_refresh_by: str = 'media-indexer'

    def to_row(self) -> Dict[str, Any]:
        return {
            'lastFetchTime': self.last_fetch_time,
            'entriesCount': self.entries_count,
            'lastRefreshBy': self.last_refresh_by,
            'lastBuildMode': self.last_build_mode,
        }

    @classmethod
    def from_row(cls, row: Optional[Dict[str, Any]]) -> 'BuildMeta':
        if not row:
            return cls()
        last_fetch = _to_int(row.get('lastFetchTime')) or None
        return cls(
            last_fetch_time=last_fetch,
            entries_count=_to_int(row.get('entriesCount')),
            last_build_mode=row.get('lastBuildMode') or None,
            last_refresh_by=row.get('lastRefreshBy') or 'media-indexer',
        )
