"""
Tests for the paginated log fetcher.

Run with: python -m pytest tests/test_log_stream.py -v
"""

from unittest.mock import Mock, patch
from urllib.parse import parse_qs, urlparse

import pytest


def _response(payload, status=200):
    resp = Mock()
    resp.ok = 200 <= status < 300
    resp.status_code = status
    resp.reason = 'OK' if resp.ok else 'Error'
    resp.json.return_value = payload
    return resp


def _session(*responses):
    session = Mock()
    session.headers = {}
    session.get.side_effect = list(responses)
    return session


def _query(url):
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


class TestDuration:
    """since timestamp -> API duration string."""

    NOW = 1_700_000_000_000
    HOUR = 60 * 60 * 1000
    DAY = 24 * HOUR

    def test_missing_timestamp(self):
        from mediaindex.services.log_stream import timestamp_to_duration
        assert timestamp_to_duration(None) == '90d'
        assert timestamp_to_duration(0) == '90d'

    def test_under_a_day_in_hours(self):
        from mediaindex.services.log_stream import timestamp_to_duration
        assert timestamp_to_duration(self.NOW - 30 * 60 * 1000, self.NOW) == '1h'
        assert timestamp_to_duration(self.NOW - 3 * self.HOUR, self.NOW) == '3h'
        assert timestamp_to_duration(self.NOW - 3 * self.HOUR - 1, self.NOW) == '4h'

    def test_future_timestamp(self):
        from mediaindex.services.log_stream import timestamp_to_duration
        assert timestamp_to_duration(self.NOW + 5000, self.NOW) == '1h'

    def test_days_capped(self):
        from mediaindex.services.log_stream import timestamp_to_duration
        assert timestamp_to_duration(self.NOW - 2 * self.DAY, self.NOW) == '2d'
        assert timestamp_to_duration(self.NOW - 2 * self.DAY - 1, self.NOW) == '3d'
        assert timestamp_to_duration(self.NOW - 400 * self.DAY, self.NOW) == '90d'


class TestLogStreamClient:

    def test_urls(self, context):
        from mediaindex.services.log_stream import LogStreamClient
        client = LogStreamClient(context, session=_session())
        assert client.build_log_url('log', 'o', 'r', 'main') == 'https://admin.hlx.page/log/o/r/main'
        assert client.build_log_url('medialog', 'o', 'r', 'main') == 'https://admin.hlx.page/medialog/o/r/main/'

    def test_bearer_token(self, context):
        from mediaindex.services.log_stream import LogStreamClient
        session = _session()
        LogStreamClient(context, session=session)
        assert session.headers['Authorization'] == 'Bearer test-token'

    def test_full_history_and_next_token(self, context):
        from mediaindex.services.log_stream import LogStreamClient

        session = _session(
            _response({'entries': [{'id': 1}], 'nextToken': 'tok-2'}),
            _response({'entries': [{'id': 2}]}),
        )
        chunks = []
        total = LogStreamClient(context, session=session).stream_log(
            'log', 'o', 'r', 'main', None, 1000, chunks.append
        )

        assert total == 2
        assert chunks == [[{'id': 1}], [{'id': 2}]]
        first_url = session.get.call_args_list[0][0][0]
        second_url = session.get.call_args_list[1][0][0]
        assert _query(first_url) == {'limit': '1000', 'since': '36500d'}
        assert _query(second_url)['nextToken'] == 'tok-2'

    def test_follows_links_next_first(self, context):
        from mediaindex.services.log_stream import LogStreamClient

        session = _session(
            _response({
                'data': [{'id': 1}],
                'links': {'next': '/medialog/o/r/main/?cursor=abc'},
                'nextToken': 'ignored',
            }),
            _response({'entries': []}),
        )
        LogStreamClient(context, session=session).stream_log(
            'medialog', 'o', 'r', 'main', None, 10, lambda chunk: None
        )
        second_url = session.get.call_args_list[1][0][0]
        assert second_url == 'https://admin.hlx.page/medialog/o/r/main/?cursor=abc'

    def test_rate_limit_delay_between_pages(self, context):
        from mediaindex.services.log_stream import LogStreamClient

        context.config.RATE_LIMIT_DELAY_MS = 100
        session = _session(
            _response({'entries': [{'id': 1}], 'nextToken': 't'}),
            _response({'entries': [{'id': 2}]}),
        )
        with patch('mediaindex.services.log_stream.time.sleep') as sleep:
            LogStreamClient(context, session=session).stream_log(
                'log', 'o', 'r', 'main', None, 10, lambda chunk: None
            )
        sleep.assert_called_once_with(0.1)

    def test_error_is_fatal(self, context):
        from mediaindex.services.log_stream import LogAPIError, LogStreamClient

        session = _session(
            _response({'entries': [{'id': 1}], 'nextToken': 't'}),
            _response({}, status=503),
        )
        chunks = []
        with pytest.raises(LogAPIError) as exc:
            LogStreamClient(context, session=session).stream_log(
                'log', 'o', 'r', 'main', None, 10, chunks.append
            )
        assert '503' in str(exc.value)
        assert chunks == [[{'id': 1}]]

    def test_fetch_log_uses_context_site(self, context):
        from mediaindex.services.log_stream import LogStreamClient

        session = _session(_response({'entries': [{'id': 1}]}))
        with patch('mediaindex.services.log_stream.now_ms', return_value=10_000 + 2 * 60 * 60 * 1000):
            entries = LogStreamClient(context, session=session).fetch_log('log', 10_000)

        assert entries == [{'id': 1}]
        url = session.get.call_args_list[0][0][0]
        assert url.startswith('https://admin.hlx.page/log/testorg/testrepo/main?')
        assert _query(url)['since'] == '2h'
