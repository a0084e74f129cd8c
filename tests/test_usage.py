"""
Tests for the content usage map and linked content rows.

Run with: python -m pytest tests/test_usage.py -v
"""

from conftest import FakeMarkup


class TestUsageMap:
    """Parsing page markdown with a bounded worker pool."""

    def test_builds_map_from_pages(self):
        from mediaindex.core.usage import build_content_usage_map

        markup = FakeMarkup({
            '/a.md': "[doc](/docs/spec.pdf) :logo:",
            '/b.md': "[doc](/docs/spec.pdf) [nav](/fragments/nav)",
        })
        usage, failed = build_content_usage_map(['/a.md', '/b.md'], markup.fetch_page_markdown, 2)

        assert failed == []
        assert usage.pdfs == {'/docs/spec.pdf': ['/a.md', '/b.md']}
        assert usage.svgs == {'/icons/logo.svg': ['/a.md']}
        assert usage.fragments == {'/fragments/nav': ['/b.md']}

    def test_failed_fetch_is_not_fatal(self):
        from mediaindex.core.usage import build_content_usage_map

        markup = FakeMarkup({'/ok.md': "[doc](/docs/a.pdf)"}, failing={'/broken.md'})
        usage, failed = build_content_usage_map(
            ['/broken.md', '/ok.md', '/missing.md'], markup.fetch_page_markdown
        )
        assert sorted(failed) == ['/broken.md', '/missing.md']
        assert usage.pdfs == {'/docs/a.pdf': ['/ok.md']}

    def test_duplicate_pages_fetched_once(self):
        from mediaindex.core.usage import build_content_usage_map

        markup = FakeMarkup({'/a.md': ''})
        build_content_usage_map(['/a.md', '/a.md'], markup.fetch_page_markdown)
        assert markup.requested == ['/a.md']

    def test_no_pages(self):
        from mediaindex.core.usage import build_content_usage_map

        usage, failed = build_content_usage_map([], FakeMarkup().fetch_page_markdown)
        assert usage.all_paths() == []
        assert failed == []

    def test_progress_reported_per_page(self):
        from mediaindex.core.usage import build_content_usage_map

        messages = []
        build_content_usage_map(
            ['/a.md', '/b.md'], FakeMarkup().fetch_page_markdown, 1, on_progress=messages.append
        )
        assert len(messages) == 2
        assert messages[0].startswith('Parsing page 1/2')


class TestLinkedContentEntries:
    """Rows for fragments, PDFs and SVGs."""

    def test_referenced_unused_and_deleted(self):
        from mediaindex.core.models import AuditEvent, EntryStatus, UsageMap
        from mediaindex.core.usage import build_linked_content_entries

        usage = UsageMap()
        usage.add('pdfs', '/docs/spec.pdf', '/drafts/page.md')
        files = {
            '/docs/spec.pdf': AuditEvent(path='/docs/spec.pdf', timestamp=500, user='a@x'),
            '/docs/old.pdf': AuditEvent(path='/docs/old.pdf', timestamp=400),
            '/docs/gone.pdf': AuditEvent(path='/docs/gone.pdf', timestamp=600, method='DELETE'),
            '/images/pic.png': AuditEvent(path='/images/pic.png', timestamp=700),
        }

        entries = {e.hash: e for e in build_linked_content_entries(usage, files, {'/docs/gone.pdf'})}

        assert set(entries) == {'/docs/spec.pdf', '/docs/old.pdf'}
        spec_pdf = entries['/docs/spec.pdf']
        assert spec_pdf.page == '/drafts/page.md'
        assert spec_pdf.type == 'document > pdf'
        assert spec_pdf.status == EntryStatus.REFERENCED
        assert spec_pdf.timestamp == 500
        assert spec_pdf.user == 'a@x'
        assert spec_pdf.source == 'auditlog-parsed'
        assert entries['/docs/old.pdf'].status == EntryStatus.FILE_UNUSED

    def test_referenced_without_audit_event(self):
        from mediaindex.core.models import UsageMap
        from mediaindex.core.usage import build_linked_content_entries

        usage = UsageMap()
        usage.add('svgs', '/icons/logo.svg', '/a.md')
        usage.add('svgs', '/icons/logo.svg', '/b.md')
        [entry] = build_linked_content_entries(usage, {}, set())
        assert entry.page == '/a.md,/b.md'
        assert entry.timestamp == 0
        assert entry.name == 'logo.svg'
        assert entry.pages == ['/a.md', '/b.md']
