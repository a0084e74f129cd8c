"""
Tests for page-media association in full builds.

Run with: python -m pytest tests/test_associator.py -v
"""

from conftest import preview, upload


def _pages(*raw_events):
    from mediaindex.core.models import AuditEvent
    from mediaindex.core.classify import group_page_events
    return group_page_events(AuditEvent.from_dict(e) for e in raw_events)


class TestMatchingWindow:
    """page.ts <= media.ts and page.ts > media.ts - window."""

    def test_media_shortly_after_preview_matches(self):
        from mediaindex.core.associator import find_matching_page_events
        pages = _pages(preview('/drafts/page', 1000))
        matches = find_matching_page_events(pages, '/drafts/page.md', 1003)
        assert [e.timestamp for e in matches] == [1000]

    def test_media_outside_window_does_not_match(self):
        from mediaindex.core.associator import find_matching_page_events
        pages = _pages(preview('/drafts/page', 1000))
        assert find_matching_page_events(pages, '/drafts/page.md', 6001) == []

    def test_window_edges(self):
        from mediaindex.core.associator import find_matching_page_events
        pages = _pages(preview('/drafts/page', 1000))
        # same timestamp matches, exactly one window later does not
        assert len(find_matching_page_events(pages, '/drafts/page.md', 1000)) == 1
        assert find_matching_page_events(pages, '/drafts/page.md', 6000) == []

    def test_media_before_preview_does_not_match(self):
        from mediaindex.core.associator import find_matching_page_events
        pages = _pages(preview('/drafts/page', 1000))
        assert find_matching_page_events(pages, '/drafts/page.md', 999) == []

    def test_unknown_page(self):
        from mediaindex.core.associator import find_matching_page_events
        assert find_matching_page_events({}, '/nowhere.md', 1000) == []


class TestMediaAssociator:
    """Streaming association into (hash, page) rows."""

    def test_referenced_and_unmatched(self):
        from mediaindex.core.associator import associate_media
        from mediaindex.core.models import EntryKey, EntryStatus

        pages = _pages(preview('/drafts/page', 1000))
        index = associate_media(pages, [
            upload('h1', 1003, resource_path='/drafts/page.md'),
            upload('h2', 6001, resource_path='/drafts/page.md'),
        ])

        referenced = index.get(EntryKey.media('h1', '/drafts/page.md'))
        assert referenced.status == EntryStatus.REFERENCED
        assert referenced.type == 'img > png'

        # an unmatched page-context upload still shows up once, as unused
        orphan = index.get(EntryKey.media('h2', ''))
        assert orphan is not None
        assert orphan.status == EntryStatus.UNUSED
        assert len(index) == 2

    def test_unmatched_deleted_hash_is_dropped(self):
        from mediaindex.core.associator import associate_media

        pages = _pages(preview('/drafts/page', 1000))
        index = associate_media(pages, [
            upload('h2', 9000, resource_path='/drafts/page.md'),
            upload('h2', 9500, resource_path='/drafts/page.md', operation='delete'),
        ])
        assert len(index) == 0

    def test_one_row_per_hash_and_page(self):
        from mediaindex.core.associator import associate_media
        from mediaindex.core.models import EntryKey

        pages = _pages(preview('/drafts/page', 1000), preview('/drafts/page', 1002))
        index = associate_media(pages, [
            upload('h1', 1003, resource_path='/drafts/page.md'),
            upload('h1', 1004, resource_path='/drafts/page.md'),
        ])
        assert len(index) == 1
        # latest timestamp wins
        assert index.get(EntryKey.media('h1', '/drafts/page.md')).timestamp == 1004

    def test_media_on_several_pages(self):
        from mediaindex.core.associator import associate_media

        pages = _pages(preview('/a', 1000), preview('/b', 2000))
        index = associate_media(pages, [
            upload('h1', 1001, resource_path='/a.md'),
            upload('h1', 2001, resource_path='/b.md'),
        ])
        assert sorted(e.page for e in index) == ['/a.md', '/b.md']

    def test_standalone_upload_becomes_unused(self):
        from mediaindex.core.associator import associate_media, count_unused
        from mediaindex.core.models import EntryKey

        index = associate_media({}, [
            upload('h3', 100, original_filename='banner.png'),
            upload('h3', 200, original_filename='banner-v2.png'),
        ])
        assert len(index) == 1
        assert count_unused(index, 'h3') == 1
        assert index.get(EntryKey.media('h3', '')).name == 'banner-v2.png'

    def test_standalone_upload_of_referenced_hash_is_skipped(self):
        from mediaindex.core.associator import associate_media

        pages = _pages(preview('/drafts/page', 1000))
        index = associate_media(pages, [
            upload('h1', 1003, resource_path='/drafts/page.md'),
            upload('h1', 5000, original_filename='again.png'),
        ])
        assert [e.page for e in index] == ['/drafts/page.md']

    def test_chunks_accumulate(self):
        from mediaindex.core.associator import MediaAssociator

        pages = _pages(preview('/a', 1000))
        associator = MediaAssociator(pages)
        associator.add_chunk([upload('h1', 1001, resource_path='/a.md')])
        associator.add_chunk([upload('h2', 1002, resource_path='/a.md')])
        index = associator.finalize()
        assert associator.stats['media_events'] == 2
        assert associator.stats['page_refs'] == 2
        assert len(index) == 2

    def test_resource_path_without_extension(self):
        from mediaindex.core.associator import associate_media
        from mediaindex.core.models import EntryKey, EntryStatus

        index = associate_media(_pages(preview('/a', 1000)), [upload('H1', 1003, resource_path='/a')])

        row = index.get(EntryKey.media('H1', '/a.md'))
        assert row.status == EntryStatus.REFERENCED
        assert index.get(EntryKey.media('H1', '')) is None
        assert len(index) == 1
