"""
Shared fixtures: in-memory stand-ins for the log API, the content source
and the preview host, so builds run end to end without network.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))


class FakeLogClient:
    """Serves audit/media log entries from lists, filtered by ``since``."""

    def __init__(self, auditlog=None, medialog=None):
        self.logs = {'log': list(auditlog or []), 'medialog': list(medialog or [])}
        self.calls = []

    def stream_log(self, endpoint, org, repo, ref, since, limit, on_chunk):
        self.calls.append((endpoint, since))
        entries = [
            e for e in self.logs[endpoint]
            if since is None or e.get('timestamp', 0) >= since
        ]
        for start in range(0, len(entries), limit):
            on_chunk(entries[start:start + limit])
        return len(entries)

    def fetch_log(self, endpoint, since, on_chunk=None):
        collected = []

        def collect(entries):
            collected.extend(entries)
            if on_chunk:
                on_chunk(entries)

        self.stream_log(endpoint, 'org', 'repo', 'main', since, 1000, collect)
        return collected


class FakeStore:
    """Index and metadata sheets held in memory."""

    def __init__(self, rows=None, meta=None, last_modified=None, exists=None):
        self.rows = list(rows or [])
        self.meta = meta
        self.last_modified = last_modified
        self.exists = bool(rows) if exists is None else exists
        self.saved_index = []
        self.saved_meta = []

    def load_build_meta(self):
        from mediaindex.core.models import BuildMeta
        return BuildMeta.from_row(self.meta)

    def get_index_info(self):
        return {'exists': self.exists, 'last_modified': self.last_modified}

    def load_index(self):
        return [dict(r) for r in self.rows]

    def save_index(self, rows):
        from mediaindex.indexer.context import now_ms
        self.rows = rows
        self.exists = True
        self.last_modified = now_ms()
        self.saved_index.append(rows)

    def save_meta(self, meta):
        self.meta = meta.to_row()
        self.saved_meta.append(meta)


class FakeMarkup:
    """Page path -> markdown. Unknown pages return None."""

    def __init__(self, pages=None, failing=()):
        self.pages = dict(pages or {})
        self.failing = set(failing)
        self.requested = []

    def fetch_page_markdown(self, page_path):
        self.requested.append(page_path)
        if page_path in self.failing:
            raise ConnectionError(f"cannot reach {page_path}")
        return self.pages.get(page_path)


def preview(path, timestamp, method='POST', user='editor@example.com'):
    return {'path': path, 'timestamp': timestamp, 'route': 'preview', 'method': method, 'user': user}


def upload(media_hash, timestamp, resource_path=None, original_filename=None,
           operation='ingest', content_type='image/png'):
    entry = {
        'mediaHash': media_hash,
        'path': f'https://main--testrepo--testorg.aem.page/media_{media_hash}.png',
        'timestamp': timestamp,
        'operation': operation,
        'contentType': content_type,
        'user': 'editor@example.com',
    }
    if resource_path:
        entry['resourcePath'] = resource_path
    if original_filename:
        entry['originalFilename'] = original_filename
    return entry


@pytest.fixture
def config():
    from mediaindex.config import get_config
    return get_config('testing')


@pytest.fixture
def context(config):
    from mediaindex.indexer.context import BuildContext
    return BuildContext(org='testorg', repo='testrepo', token='test-token', config=config)


@pytest.fixture
def make_builder(context):
    """Builder wired to the in-memory fakes."""
    from mediaindex.indexer.builder import IndexBuilder

    def _make(log_client=None, store=None, markup=None):
        return IndexBuilder(
            context,
            log_client=log_client or FakeLogClient(),
            store=store or FakeStore(),
            markup=markup or FakeMarkup(),
        )
    return _make
